"""
Veil Pedersen Commitments

C = v*G + r*H

Only the point is ever shared; value and blinding factor stay with the
owner. Commitments are additively homomorphic:
commit(v1, r1) + commit(v2, r2) == commit(v1 + v2, r1 + r2).
"""

from __future__ import annotations
import hmac
import logging
import secrets
from dataclasses import dataclass, field
from typing import Iterable, Optional

from veil.crypto.curve import CurvePoint
from veil.crypto.generators import PedersenGenerators
from veil.errors import CurveArithmeticFailure, InvalidValue, VeilError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Commitment:
    """
    Pedersen commitment with its opening.

    Attributes:
        point: Public commitment point
        value: Committed value (private)
        blinding_factor: Blinding scalar (private)
        handle: Canonical 64-byte x || y encoding of point
    """
    point: CurvePoint
    value: int = field(repr=False)
    blinding_factor: int = field(repr=False)
    handle: bytes = field(default=b"", repr=False, compare=False)


class CommitmentEngine:
    """Builds, opens and verifies Pedersen commitments."""

    def __init__(self, generators: PedersenGenerators):
        self.generators = generators
        self.curve = generators.curve

    def random_scalar(self) -> int:
        """Uniform non-zero scalar from the process CSPRNG."""
        return secrets.randbelow(self.curve.n - 1) + 1

    def commit(self, value: int, blinding_factor: Optional[int] = None) -> Commitment:
        """
        Create commitment C = value*G + blinding_factor*H.

        Args:
            value: Value to commit, in [0, order)
            blinding_factor: Blinding scalar; drawn at random if omitted

        Raises:
            InvalidValue: If value is negative or not below the group order
            CurveArithmeticFailure: If the computed point is off the curve
        """
        if not isinstance(value, int) or isinstance(value, bool):
            raise InvalidValue("Commitment value must be an integer")
        if value < 0:
            raise InvalidValue("Commitment value must be non-negative")
        if value >= self.curve.n:
            raise InvalidValue("Commitment value must be below the group order")

        if blinding_factor is None:
            blinding_factor = self.random_scalar()
        elif not isinstance(blinding_factor, int) or isinstance(blinding_factor, bool):
            raise InvalidValue("Blinding factor must be an integer")
        blinding_factor %= self.curve.n

        point = self.curve.add(
            self.generators.multiply_g(value),
            self.generators.multiply_h(blinding_factor),
        )
        if not self.curve.is_on_curve(point):
            raise CurveArithmeticFailure("Commitment point is not on the curve")

        return Commitment(
            point=point,
            value=value,
            blinding_factor=blinding_factor,
            handle=self.curve.encode_point(point),
        )

    def verify(self, commitment: Commitment, claimed_value: int, claimed_blinding: int) -> bool:
        """
        Check that commitment opens to (claimed_value, claimed_blinding).

        Compares the full encodings with hmac.compare_digest, so the time
        taken does not depend on where the points differ. Never raises.
        """
        try:
            if not self.curve.is_on_curve(commitment.point):
                return False
            expected = self.curve.encode_point(commitment.point)
            recomputed = self.commit(claimed_value, claimed_blinding)
            actual = self.curve.encode_point(recomputed.point)
        except (VeilError, AttributeError, TypeError, ValueError, OverflowError):
            return False
        return hmac.compare_digest(expected, actual)

    def opening_hash(self, commitment: Commitment) -> bytes:
        """
        Canonical public handle of a commitment: x || y, each zero-padded
        to the field byte width.
        """
        return self.curve.encode_point(commitment.point)

    def point_from_handle(self, handle: bytes) -> CurvePoint:
        """Decode a handle back to its point (raises InvalidValue)."""
        return self.curve.decode_point(handle)

    def add_points(self, points: Iterable[CurvePoint]) -> CurvePoint:
        """Homomorphic sum of commitment points."""
        return self.curve.sum_points(points)

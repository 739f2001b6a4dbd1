"""
Veil Nullifiers

N = H_s(owner || handle || nonce) * G

A nullifier is deterministic: the same (handle, owner, nonce) always yields
the same point, which is what lets the ledger detect a second spend of the
same commitment.
"""

from __future__ import annotations
import logging
import secrets
from dataclasses import dataclass

from veil.constants import (
    DOMAIN_NULLIFIER,
    DOMAIN_NULLIFIER_ID,
    NONCE_SIZE,
)
from veil.crypto.curve import CurvePoint
from veil.crypto.generators import PedersenGenerators
from veil.crypto.hash import hash_to_scalar, sha3_256, tagged_hash
from veil.errors import CurveArithmeticFailure, InvalidValue

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Nullifier:
    """
    One-time spend token.

    Attributes:
        point: Nullifier point s*G
        digest: 32-byte fixed-width public form (hash of the encoded point)
    """
    point: CurvePoint
    digest: bytes

    def to_bytes(self) -> bytes:
        return self.digest

    @property
    def hex(self) -> str:
        return self.digest.hex()

    def to_dict(self) -> dict:
        return {
            "x": format(self.point.x, "x"),
            "y": format(self.point.y, "x"),
            "digest": self.digest.hex(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Nullifier":
        return cls(
            point=CurvePoint(int(data["x"], 16), int(data["y"], 16)),
            digest=bytes.fromhex(data["digest"]),
        )


def owner_digest(owner: str) -> bytes:
    """Fixed-width (32 byte) encoding of an owner identifier."""
    if not isinstance(owner, str) or not owner:
        raise InvalidValue("Owner identifier must be a non-empty string")
    return sha3_256(owner.encode("utf-8"))


class NullifierDeriver:
    """Derives nullifiers bound to (commitment handle, owner, nonce)."""

    def __init__(self, generators: PedersenGenerators):
        self.generators = generators
        self.curve = generators.curve

    @staticmethod
    def new_nonce() -> bytes:
        """Fresh 32-byte nonce from the process CSPRNG."""
        return secrets.token_bytes(NONCE_SIZE)

    def derive(self, commitment_handle: bytes, owner: str, nonce: bytes) -> Nullifier:
        """
        Derive the nullifier for a commitment.

        Canonical input is owner digest (32) || handle (64) || nonce (32);
        every field is fixed width, so no two distinct inputs share bytes.

        Raises:
            InvalidValue: If any field has the wrong width
            CurveArithmeticFailure: If the result is off the curve
        """
        if not isinstance(commitment_handle, (bytes, bytearray)) \
                or len(commitment_handle) != self.curve.params.point_size:
            raise InvalidValue(
                f"Commitment handle must be {self.curve.params.point_size} bytes"
            )
        if not isinstance(nonce, (bytes, bytearray)) or len(nonce) != NONCE_SIZE:
            raise InvalidValue(f"Nullifier nonce must be {NONCE_SIZE} bytes")

        data = owner_digest(owner) + bytes(commitment_handle) + bytes(nonce)
        s = hash_to_scalar(DOMAIN_NULLIFIER, data, self.curve.n)

        point = self.generators.multiply_g(s)
        if point.is_infinity or not self.curve.is_on_curve(point):
            raise CurveArithmeticFailure("Nullifier point is not on the curve")

        digest = tagged_hash(DOMAIN_NULLIFIER_ID, self.curve.encode_point(point))
        return Nullifier(point=point, digest=digest)

"""
Veil Value Conservation Proofs

Every relation reduces to an excess point D that must be a multiple of H
alone:

    split:    D = C_in - sum(C_out)         (inputs equal outputs)
    equality: D = C_a - C_b                 (same hidden value)
    opening:  D = C - amount*G              (commitment hides amount)

If the values balance, D = delta*H with delta the blinding difference. A
Schnorr proof of knowledge of delta w.r.t. H then convinces the verifier
that no G component is left over; since log_H(G) is unknown, an
unbalanced D cannot be proven.

Schnorr (Fiat-Shamir):
    k <- random, R = k*H
    c = H(kind, public handles, D, R)
    s = k + c*delta
    verify: s*H == R + c*D
"""

from __future__ import annotations
import logging
import secrets
import struct
from dataclasses import dataclass
from typing import List, Sequence

from veil.constants import DOMAIN_CONSERVATION
from veil.crypto.commitment import Commitment
from veil.crypto.curve import CurvePoint
from veil.crypto.generators import PedersenGenerators
from veil.crypto.hash import scalar_from_bytes, scalar_to_bytes
from veil.crypto.proofs import ConservationKind, ConservationProof, ProofScheme
from veil.crypto.transcript import Transcript
from veil.errors import InvalidValue, ValueConservationViolated, VeilError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SchnorrPayload:
    """Schnorr proof over H: nonce commitment R and response s."""
    R: CurvePoint
    s: int

    def encode(self, curve) -> bytes:
        return curve.encode_point(self.R) + scalar_to_bytes(self.s)

    @classmethod
    def decode(cls, data: bytes, curve) -> "SchnorrPayload":
        ps = curve.params.point_size
        if len(data) != ps + 32:
            raise InvalidValue("Schnorr payload has wrong length")
        R = curve.decode_point(data[:ps])
        s = scalar_from_bytes(data[ps:])
        if s >= curve.n:
            raise InvalidValue("Schnorr response not reduced")
        return cls(R=R, s=s)


class ConservationProver:
    """Proves and verifies value relations between commitments."""

    def __init__(self, generators: PedersenGenerators):
        self.generators = generators
        self.curve = generators.curve

    # -------------------------------------------------------------------------
    # Split: input == sum(outputs)
    # -------------------------------------------------------------------------

    def prove_split(self, input_commitment: Commitment, outputs: Sequence[Commitment]) -> ConservationProof:
        """
        Prove that the input commitment's value equals the sum of the outputs'.

        Raises:
            InvalidValue: If there are no outputs
            ValueConservationViolated: If the values do not balance
        """
        if not outputs:
            raise InvalidValue("Split requires at least one output")

        total = sum(c.value for c in outputs)
        if total != input_commitment.value:
            raise ValueConservationViolated(expected=input_commitment.value, actual=total)

        order = self.curve.n
        delta = (input_commitment.blinding_factor - sum(c.blinding_factor for c in outputs)) % order
        handles = [self._handle(input_commitment.point)] + [self._handle(c.point) for c in outputs]
        D = self._split_excess(input_commitment.point, [c.point for c in outputs])
        return self._prove_excess(ConservationKind.SPLIT, handles, D, delta)

    def verify_split(
        self,
        proof: ConservationProof,
        input_handle: bytes,
        output_handles: Sequence[bytes],
    ) -> bool:
        """Verify a split proof. Never raises."""
        try:
            if not output_handles:
                return False
            C_in = self.curve.decode_point(bytes(input_handle))
            C_outs = [self.curve.decode_point(bytes(h)) for h in output_handles]
            D = self._split_excess(C_in, C_outs)
            handles = [bytes(input_handle)] + [bytes(h) for h in output_handles]
            return self._verify_excess(proof, ConservationKind.SPLIT, handles, D)
        except (VeilError, ValueError, TypeError, AttributeError) as e:
            logger.debug(f"Split proof rejected: {e}")
            return False

    # -------------------------------------------------------------------------
    # Equality: value(a) == value(b)
    # -------------------------------------------------------------------------

    def prove_equality(self, a: Commitment, b: Commitment) -> ConservationProof:
        """
        Prove two commitments hide the same value.

        Raises:
            ValueConservationViolated: If the values differ
        """
        if a.value != b.value:
            raise ValueConservationViolated(expected=a.value, actual=b.value)
        delta = (a.blinding_factor - b.blinding_factor) % self.curve.n
        D = self.curve.subtract(a.point, b.point)
        handles = [self._handle(a.point), self._handle(b.point)]
        return self._prove_excess(ConservationKind.EQUALITY, handles, D, delta)

    def verify_equality(self, proof: ConservationProof, handle_a: bytes, handle_b: bytes) -> bool:
        """Verify an equality proof. Never raises."""
        try:
            C_a = self.curve.decode_point(bytes(handle_a))
            C_b = self.curve.decode_point(bytes(handle_b))
            D = self.curve.subtract(C_a, C_b)
            return self._verify_excess(
                proof, ConservationKind.EQUALITY, [bytes(handle_a), bytes(handle_b)], D
            )
        except (VeilError, ValueError, TypeError, AttributeError) as e:
            logger.debug(f"Equality proof rejected: {e}")
            return False

    # -------------------------------------------------------------------------
    # Opening: value(C) == public amount
    # -------------------------------------------------------------------------

    def prove_opening(self, commitment: Commitment, amount: int) -> ConservationProof:
        """
        Prove a commitment hides a public amount without revealing its blinding.

        Raises:
            ValueConservationViolated: If the commitment does not hide amount
        """
        if commitment.value != amount:
            raise ValueConservationViolated(expected=amount, actual=commitment.value)
        D = self._opening_excess(commitment.point, amount)
        handles = [self._handle(commitment.point), struct.pack(">Q", amount)]
        return self._prove_excess(ConservationKind.OPENING, handles, D, commitment.blinding_factor)

    def verify_opening(self, proof: ConservationProof, handle: bytes, amount: int) -> bool:
        """Verify an opening proof. Never raises."""
        try:
            if not isinstance(amount, int) or isinstance(amount, bool) or amount < 0:
                return False
            C = self.curve.decode_point(bytes(handle))
            D = self._opening_excess(C, amount)
            handles = [bytes(handle), struct.pack(">Q", amount)]
            return self._verify_excess(proof, ConservationKind.OPENING, handles, D)
        except (VeilError, ValueError, TypeError, AttributeError, OverflowError, struct.error) as e:
            logger.debug(f"Opening proof rejected: {e}")
            return False

    # -------------------------------------------------------------------------
    # Schnorr over H
    # -------------------------------------------------------------------------

    def _handle(self, point: CurvePoint) -> bytes:
        return self.curve.encode_point(point)

    def _split_excess(self, C_in: CurvePoint, C_outs: List[CurvePoint]) -> CurvePoint:
        return self.curve.subtract(C_in, self.curve.sum_points(C_outs))

    def _opening_excess(self, C: CurvePoint, amount: int) -> CurvePoint:
        return self.curve.subtract(C, self.generators.multiply_g(amount))

    def _challenge(
        self,
        kind: ConservationKind,
        handles: Sequence[bytes],
        D: CurvePoint,
        R: CurvePoint,
    ) -> int:
        transcript = Transcript(DOMAIN_CONSERVATION, self.curve)
        transcript.append_int(b"kind", int(kind))
        transcript.append_int(b"count", len(handles))
        for handle in handles:
            transcript.append_message(b"C", handle)
        transcript.append_point(b"D", D)
        transcript.append_point(b"R", R)
        return transcript.challenge(b"c")

    def _prove_excess(
        self,
        kind: ConservationKind,
        handles: Sequence[bytes],
        D: CurvePoint,
        delta: int,
    ) -> ConservationProof:
        order = self.curve.n
        k = secrets.randbelow(order - 1) + 1
        R = self.generators.multiply_h(k)
        c = self._challenge(kind, handles, D, R)
        s = (k + c * delta) % order

        payload = SchnorrPayload(R=R, s=s).encode(self.curve)
        logger.debug(f"Conservation proof ({kind.name}) over {len(handles)} handles")
        return ConservationProof(scheme=ProofScheme.SCHNORR_EXCESS_V1, kind=kind, payload=payload)

    def _verify_excess(
        self,
        proof: ConservationProof,
        kind: ConservationKind,
        handles: Sequence[bytes],
        D: CurvePoint,
    ) -> bool:
        if not isinstance(proof, ConservationProof):
            return False
        if proof.scheme != ProofScheme.SCHNORR_EXCESS_V1 or proof.kind != kind:
            return False

        pf = SchnorrPayload.decode(proof.payload, self.curve)
        if pf.R.is_infinity:
            return False
        c = self._challenge(kind, handles, D, pf.R)

        # s*H - R - c*D == O
        check = self.curve.multi_scalar_multiply([
            (pf.s, self.generators.H),
            (self.curve.n - 1, pf.R),
            ((-c) % self.curve.n, D),
        ])
        return check.is_infinity

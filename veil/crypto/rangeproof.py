"""
Veil Range Proofs

Bulletproofs (Bünz et al. 2018, section 4.2) for a single commitment
V = v*G + gamma*H, proving 0 <= v < 2^n without revealing v or gamma.

The inner-product argument halves the vectors every round, so a proof holds
4 points, 5 scalars and 2*log2(n) points, regardless of 2^n.

Fiat-Shamir: the transcript binds the curve, n and V, then A, S, T1, T2,
(t_hat, tau_x, mu) and each (L_j, R_j) in order.

Verification folds both Bulletproof checks into multi-scalar
multiplications that must equal the point at infinity.
"""

from __future__ import annotations
import logging
import secrets
import struct
from dataclasses import dataclass
from typing import List, Sequence, Tuple

from veil.constants import DEFAULT_RANGE_BITS, DOMAIN_RANGE_PROOF, SUPPORTED_RANGE_BITS
from veil.crypto.commitment import Commitment
from veil.crypto.curve import Curve, CurvePoint, mod_inverse
from veil.crypto.generators import PedersenGenerators
from veil.crypto.hash import scalar_from_bytes, scalar_to_bytes
from veil.crypto.proofs import ProofScheme, RangeProof
from veil.crypto.transcript import Transcript
from veil.errors import InvalidValue, ValueOutOfRange, VeilError

logger = logging.getLogger(__name__)


# ==============================================================================
# Payload
# ==============================================================================

@dataclass(frozen=True)
class BulletproofPayload:
    """
    Bulletproof range proof elements.

    Layout: A | S | T1 | T2 | tau_x | mu | t_hat | rounds (1) | L_j, R_j ... | a | b
    """
    A: CurvePoint
    S: CurvePoint
    T1: CurvePoint
    T2: CurvePoint
    tau_x: int
    mu: int
    t_hat: int
    L: Tuple[CurvePoint, ...]
    R: Tuple[CurvePoint, ...]
    a: int
    b: int

    def encode(self, curve: Curve) -> bytes:
        data = bytearray()
        for point in (self.A, self.S, self.T1, self.T2):
            data.extend(curve.encode_point(point))
        for scalar in (self.tau_x, self.mu, self.t_hat):
            data.extend(scalar_to_bytes(scalar))
        data.extend(struct.pack(">B", len(self.L)))
        for L_j, R_j in zip(self.L, self.R):
            data.extend(curve.encode_point(L_j))
            data.extend(curve.encode_point(R_j))
        data.extend(scalar_to_bytes(self.a))
        data.extend(scalar_to_bytes(self.b))
        return bytes(data)

    @classmethod
    def decode(cls, data: bytes, curve: Curve) -> "BulletproofPayload":
        """
        Decode and validate a payload.

        Raises:
            InvalidValue: On truncated data, off-curve points or
                out-of-range scalars
        """
        ps = curve.params.point_size
        offset = 0

        def take(size: int) -> bytes:
            nonlocal offset
            if offset + size > len(data):
                raise InvalidValue("Bulletproof payload truncated")
            chunk = data[offset:offset + size]
            offset += size
            return chunk

        def scalar() -> int:
            value = scalar_from_bytes(take(32))
            if value >= curve.n:
                raise InvalidValue("Bulletproof scalar not reduced")
            return value

        A, S, T1, T2 = (curve.decode_point(take(ps)) for _ in range(4))
        tau_x, mu, t_hat = scalar(), scalar(), scalar()
        rounds = take(1)[0]
        L: List[CurvePoint] = []
        R: List[CurvePoint] = []
        for _ in range(rounds):
            L.append(curve.decode_point(take(ps)))
            R.append(curve.decode_point(take(ps)))
        a, b = scalar(), scalar()
        if offset != len(data):
            raise InvalidValue("Trailing bytes after Bulletproof payload")

        return cls(A, S, T1, T2, tau_x, mu, t_hat, tuple(L), tuple(R), a, b)


# ==============================================================================
# Helpers
# ==============================================================================

def _inner(a: Sequence[int], b: Sequence[int], order: int) -> int:
    return sum(x * y for x, y in zip(a, b)) % order


def _powers(base: int, n: int, order: int) -> List[int]:
    result = [1] * n
    for i in range(1, n):
        result[i] = result[i - 1] * base % order
    return result


def _check_bit_length(bit_length: int) -> None:
    if bit_length not in SUPPORTED_RANGE_BITS:
        raise InvalidValue(
            f"Unsupported range proof bit length: {bit_length}",
            {"supported": list(SUPPORTED_RANGE_BITS)}
        )


# ==============================================================================
# Prover / Verifier
# ==============================================================================

class RangeProver:
    """Bulletproof range prover and verifier."""

    def __init__(self, generators: PedersenGenerators):
        self.generators = generators
        self.curve = generators.curve

    def _transcript(self, commitment_handle: bytes, bit_length: int) -> Transcript:
        transcript = Transcript(DOMAIN_RANGE_PROOF, self.curve)
        transcript.append_int(b"n", bit_length)
        transcript.append_message(b"V", commitment_handle)
        return transcript

    def _random(self) -> int:
        return secrets.randbelow(self.curve.n - 1) + 1

    def prove(self, commitment: Commitment, bit_length: int = DEFAULT_RANGE_BITS) -> RangeProof:
        """
        Prove that commitment.value lies in [0, 2^bit_length).

        Raises:
            InvalidValue: If bit_length is unsupported
            ValueOutOfRange: If the committed value is outside the range
        """
        _check_bit_length(bit_length)
        n = bit_length
        v = commitment.value
        if not isinstance(v, int) or v < 0 or v >= (1 << n):
            raise ValueOutOfRange(n)

        curve = self.curve
        order = curve.n
        gens = self.generators
        gi, hi = gens.vector(n)

        handle = curve.encode_point(commitment.point)
        transcript = self._transcript(handle, n)

        # Bit decomposition: a_L in {0,1}^n, a_R = a_L - 1^n
        a_L = [(v >> i) & 1 for i in range(n)]
        a_R = [(bit - 1) % order for bit in a_L]

        alpha = self._random()
        A = curve.add(
            gens.multiply_h(alpha),
            curve.sum_points(gi[i] if a_L[i] else curve.negate(hi[i]) for i in range(n)),
        )

        s_L = [self._random() for _ in range(n)]
        s_R = [self._random() for _ in range(n)]
        rho = self._random()
        S = curve.multi_scalar_multiply(
            [(rho, gens.H)]
            + list(zip(s_L, gi))
            + list(zip(s_R, hi))
        )

        transcript.append_point(b"A", A)
        transcript.append_point(b"S", S)
        y = transcript.challenge(b"y")
        z = transcript.challenge(b"z")
        z2 = z * z % order

        y_n = _powers(y, n, order)
        two_n = _powers(2, n, order)

        l0 = [(a_L[i] - z) % order for i in range(n)]
        l1 = s_L
        r0 = [(y_n[i] * (a_R[i] + z) + z2 * two_n[i]) % order for i in range(n)]
        r1 = [y_n[i] * s_R[i] % order for i in range(n)]

        t1 = (_inner(l0, r1, order) + _inner(l1, r0, order)) % order
        t2 = _inner(l1, r1, order)

        tau1 = self._random()
        tau2 = self._random()
        T1 = curve.add(gens.multiply_g(t1), gens.multiply_h(tau1))
        T2 = curve.add(gens.multiply_g(t2), gens.multiply_h(tau2))

        transcript.append_point(b"T1", T1)
        transcript.append_point(b"T2", T2)
        x = transcript.challenge(b"x")

        l_vec = [(l0[i] + l1[i] * x) % order for i in range(n)]
        r_vec = [(r0[i] + r1[i] * x) % order for i in range(n)]
        t_hat = _inner(l_vec, r_vec, order)

        tau_x = (tau2 * x * x + tau1 * x + z2 * commitment.blinding_factor) % order
        mu = (alpha + rho * x) % order

        transcript.append_scalar(b"t_hat", t_hat)
        transcript.append_scalar(b"tau_x", tau_x)
        transcript.append_scalar(b"mu", mu)
        w = transcript.challenge(b"w")
        U = curve.scalar_multiply(gens.U, w)

        # H'_i = y^-i * H_i
        y_inv = mod_inverse(y, order)
        y_inv_n = _powers(y_inv, n, order)
        hi_prime = [curve.scalar_multiply(hi[i], y_inv_n[i]) for i in range(n)]

        L, R, a, b = self._prove_inner_product(transcript, gi, hi_prime, U, l_vec, r_vec)

        payload = BulletproofPayload(A, S, T1, T2, tau_x, mu, t_hat, tuple(L), tuple(R), a, b)
        proof = RangeProof(
            scheme=ProofScheme.BULLETPROOF_V1,
            bit_length=n,
            payload=payload.encode(curve),
        )
        logger.debug(f"Range proof n={n} for {handle.hex()[:16]}: {len(proof)} bytes")
        return proof

    def _prove_inner_product(
        self,
        transcript: Transcript,
        G: List[CurvePoint],
        H: List[CurvePoint],
        U: CurvePoint,
        a: List[int],
        b: List[int],
    ) -> Tuple[List[CurvePoint], List[CurvePoint], int, int]:
        curve = self.curve
        order = curve.n
        L_list: List[CurvePoint] = []
        R_list: List[CurvePoint] = []

        while len(a) > 1:
            half = len(a) // 2
            a_lo, a_hi = a[:half], a[half:]
            b_lo, b_hi = b[:half], b[half:]
            G_lo, G_hi = G[:half], G[half:]
            H_lo, H_hi = H[:half], H[half:]

            c_L = _inner(a_lo, b_hi, order)
            c_R = _inner(a_hi, b_lo, order)

            L = curve.multi_scalar_multiply(
                list(zip(a_lo, G_hi)) + list(zip(b_hi, H_lo)) + [(c_L, U)]
            )
            R = curve.multi_scalar_multiply(
                list(zip(a_hi, G_lo)) + list(zip(b_lo, H_hi)) + [(c_R, U)]
            )
            L_list.append(L)
            R_list.append(R)

            transcript.append_point(b"L", L)
            transcript.append_point(b"R", R)
            u = transcript.challenge(b"u")
            u_inv = mod_inverse(u, order)

            G = [
                curve.multi_scalar_multiply([(u_inv, G_lo[i]), (u, G_hi[i])])
                for i in range(half)
            ]
            H = [
                curve.multi_scalar_multiply([(u, H_lo[i]), (u_inv, H_hi[i])])
                for i in range(half)
            ]
            a = [(a_lo[i] * u + a_hi[i] * u_inv) % order for i in range(half)]
            b = [(b_lo[i] * u_inv + b_hi[i] * u) % order for i in range(half)]

        return L_list, R_list, a[0], b[0]

    def verify(self, proof: RangeProof, commitment_handle: bytes, bit_length: int) -> bool:
        """
        Verify a range proof against a commitment handle.

        Fails closed: malformed input of any kind yields False.
        """
        try:
            return self._verify(proof, commitment_handle, bit_length)
        except (VeilError, ValueError, TypeError, AttributeError, IndexError, struct.error) as e:
            logger.debug(f"Range proof rejected: {e}")
            return False

    def _verify(self, proof: RangeProof, commitment_handle: bytes, bit_length: int) -> bool:
        if not isinstance(proof, RangeProof):
            return False
        if proof.scheme != ProofScheme.BULLETPROOF_V1:
            return False
        if proof.bit_length != bit_length:
            return False
        _check_bit_length(bit_length)

        n = bit_length
        rounds = n.bit_length() - 1
        curve = self.curve
        order = curve.n
        gens = self.generators

        V = curve.decode_point(bytes(commitment_handle))
        pf = BulletproofPayload.decode(proof.payload, curve)
        if len(pf.L) != rounds or len(pf.R) != rounds:
            return False

        transcript = self._transcript(bytes(commitment_handle), n)
        transcript.append_point(b"A", pf.A)
        transcript.append_point(b"S", pf.S)
        y = transcript.challenge(b"y")
        z = transcript.challenge(b"z")
        transcript.append_point(b"T1", pf.T1)
        transcript.append_point(b"T2", pf.T2)
        x = transcript.challenge(b"x")
        transcript.append_scalar(b"t_hat", pf.t_hat)
        transcript.append_scalar(b"tau_x", pf.tau_x)
        transcript.append_scalar(b"mu", pf.mu)
        w = transcript.challenge(b"w")

        challenges = []
        for L_j, R_j in zip(pf.L, pf.R):
            transcript.append_point(b"L", L_j)
            transcript.append_point(b"R", R_j)
            challenges.append(transcript.challenge(b"u"))

        z2 = z * z % order
        z3 = z2 * z % order
        y_n = _powers(y, n, order)
        two_n = _powers(2, n, order)

        # delta(y, z) = (z - z^2) * <1, y^n> - z^3 * <1, 2^n>
        delta = ((z - z2) * sum(y_n) - z3 * ((1 << n) - 1)) % order

        # t_hat*G + tau_x*H == z^2*V + delta*G + x*T1 + x^2*T2
        polynomial_check = curve.multi_scalar_multiply([
            ((pf.t_hat - delta) % order, gens.G),
            (pf.tau_x, gens.H),
            (-z2 % order, V),
            (-x % order, pf.T1),
            (-x * x % order, pf.T2),
        ])
        if not polynomial_check.is_infinity:
            return False

        # Inner-product check, folded into one multi-scalar multiplication
        gi, hi = gens.vector(n)
        u_inv = [mod_inverse(u, order) for u in challenges]
        y_inv = mod_inverse(y, order)
        y_inv_n = _powers(y_inv, n, order)

        s = []
        for i in range(n):
            acc = 1
            for j in range(rounds):
                bit = (i >> (rounds - 1 - j)) & 1
                acc = acc * (challenges[j] if bit else u_inv[j]) % order
            s.append(acc)
        s_inv = [mod_inverse(v, order) for v in s]

        terms = [
            (1, pf.A),
            (x, pf.S),
            (-pf.mu % order, gens.H),
            (w * (pf.t_hat - pf.a * pf.b) % order, gens.U),
        ]
        for i in range(n):
            terms.append(((-z - pf.a * s[i]) % order, gi[i]))
            terms.append(((z + (z2 * two_n[i] - pf.b * s_inv[i]) * y_inv_n[i]) % order, hi[i]))
        for j in range(rounds):
            u2 = challenges[j] * challenges[j] % order
            terms.append((u2, pf.L[j]))
            terms.append((u_inv[j] * u_inv[j] % order, pf.R[j]))

        return curve.multi_scalar_multiply(terms).is_infinity

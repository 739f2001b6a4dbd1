"""
Veil Field and Curve Arithmetic

Short Weierstrass curves y^2 = x^3 + b over a prime field.

The public API works on affine CurvePoint values. Scalar multiplication and
multi-scalar multiplication run internally in Jacobian coordinates so that a
single modular inversion is needed per affine result.

All operations are pure functions over Python integers: no hidden state,
no randomness.
"""

from __future__ import annotations
import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from veil.constants import (
    BN254_FIELD_PRIME,
    BN254_GROUP_ORDER,
    BN254_B,
    BN254_GX,
    BN254_GY,
    SECP256K1_FIELD_PRIME,
    SECP256K1_GROUP_ORDER,
    SECP256K1_B,
    SECP256K1_GX,
    SECP256K1_GY,
)
from veil.errors import ConfigurationError, InvalidValue, NoInverseExists

logger = logging.getLogger(__name__)

# Jacobian triple (X, Y, Z); affine x = X/Z^2, y = Y/Z^3. Z == 0 is infinity.
Jacobian = Tuple[int, int, int]
_J_INFINITY: Jacobian = (1, 1, 0)


# ==============================================================================
# Modular arithmetic
# ==============================================================================

def mod_inverse(a: int, m: int) -> int:
    """
    Modular inverse via the extended Euclidean algorithm.

    Args:
        a: Value to invert (any integer, reduced modulo m)
        m: Modulus (> 1)

    Returns:
        x in [0, m) with a*x == 1 (mod m)

    Raises:
        NoInverseExists: If gcd(a, m) != 1
    """
    if m <= 1:
        raise NoInverseExists(a, m)

    old_r, r = a % m, m
    old_s, s = 1, 0
    while r != 0:
        q = old_r // r
        old_r, r = r, old_r - q * r
        old_s, s = s, old_s - q * s

    if old_r != 1:
        raise NoInverseExists(a, m)
    return old_s % m


def batch_inverse(values: Sequence[int], m: int) -> List[int]:
    """
    Invert many values with a single extended-Euclid call (Montgomery's trick).

    Raises:
        NoInverseExists: If any value is not invertible
    """
    if not values:
        return []

    prefix = [1] * len(values)
    acc = 1
    for i, v in enumerate(values):
        prefix[i] = acc
        acc = acc * v % m

    inv = mod_inverse(acc, m)
    result = [0] * len(values)
    for i in range(len(values) - 1, -1, -1):
        result[i] = inv * prefix[i] % m
        inv = inv * values[i] % m
    return result


# ==============================================================================
# Types
# ==============================================================================

@dataclass(frozen=True)
class CurvePoint:
    """
    Affine curve point, or the point at infinity when x and y are None.
    """
    x: Optional[int]
    y: Optional[int]

    @classmethod
    def infinity(cls) -> "CurvePoint":
        return INFINITY

    @property
    def is_infinity(self) -> bool:
        return self.x is None

    def __repr__(self) -> str:
        if self.is_infinity:
            return "CurvePoint(infinity)"
        return f"CurvePoint(x={hex(self.x)[:18]}..., y={hex(self.y)[:18]}...)"


INFINITY = CurvePoint(None, None)


@dataclass(frozen=True)
class CurveParams:
    """Domain parameters of a short Weierstrass curve with a = 0."""
    name: str
    p: int
    n: int
    b: int
    gx: int
    gy: int

    @property
    def byte_width(self) -> int:
        """Width in bytes of one encoded field element."""
        return (self.p.bit_length() + 7) // 8

    @property
    def point_size(self) -> int:
        """Width in bytes of one encoded point (x || y)."""
        return 2 * self.byte_width


BN254 = CurveParams(
    name="bn254",
    p=BN254_FIELD_PRIME,
    n=BN254_GROUP_ORDER,
    b=BN254_B,
    gx=BN254_GX,
    gy=BN254_GY,
)

SECP256K1 = CurveParams(
    name="secp256k1",
    p=SECP256K1_FIELD_PRIME,
    n=SECP256K1_GROUP_ORDER,
    b=SECP256K1_B,
    gx=SECP256K1_GX,
    gy=SECP256K1_GY,
)

CURVES: Dict[str, CurveParams] = {
    BN254.name: BN254,
    SECP256K1.name: SECP256K1,
}


# ==============================================================================
# Curve operations
# ==============================================================================

class Curve:
    """
    Point arithmetic over one curve.

    Instances hold only immutable domain parameters and are safe to share
    between concurrent callers.
    """

    def __init__(self, params: CurveParams):
        self.params = params
        self.p = params.p
        self.n = params.n
        self.b = params.b
        self.generator = CurvePoint(params.gx, params.gy)

    @property
    def name(self) -> str:
        return self.params.name

    # -------------------------------------------------------------------------
    # Affine API
    # -------------------------------------------------------------------------

    def is_on_curve(self, point: CurvePoint) -> bool:
        """Check y^2 == x^3 + b (mod p). Infinity is the group identity."""
        if not isinstance(point, CurvePoint):
            return False
        if point.is_infinity:
            return True
        x, y = point.x, point.y
        if not isinstance(x, int) or not isinstance(y, int):
            return False
        if not (0 <= x < self.p and 0 <= y < self.p):
            return False
        return (y * y - x * x * x - self.b) % self.p == 0

    def negate(self, point: CurvePoint) -> CurvePoint:
        if point.is_infinity:
            return point
        return CurvePoint(point.x, (-point.y) % self.p)

    def add(self, P: CurvePoint, Q: CurvePoint) -> CurvePoint:
        """Affine point addition."""
        if P.is_infinity:
            return Q
        if Q.is_infinity:
            return P

        p = self.p
        if P.x == Q.x:
            if (P.y + Q.y) % p == 0:
                # Q = -P (vertical line)
                return INFINITY
            return self.double(P)

        lam = (Q.y - P.y) * mod_inverse(Q.x - P.x, p) % p
        x3 = (lam * lam - P.x - Q.x) % p
        y3 = (lam * (P.x - x3) - P.y) % p
        return CurvePoint(x3, y3)

    def double(self, P: CurvePoint) -> CurvePoint:
        """Affine point doubling."""
        if P.is_infinity or P.y == 0:
            # Vertical tangent
            return INFINITY

        p = self.p
        lam = 3 * P.x * P.x * mod_inverse(2 * P.y, p) % p
        x3 = (lam * lam - 2 * P.x) % p
        y3 = (lam * (P.x - x3) - P.y) % p
        return CurvePoint(x3, y3)

    def subtract(self, P: CurvePoint, Q: CurvePoint) -> CurvePoint:
        return self.add(P, self.negate(Q))

    def scalar_multiply(self, P: CurvePoint, k: int) -> CurvePoint:
        """
        Compute k*P by double-and-add (most significant bit first).

        k is reduced modulo the group order; k == 0 yields infinity and
        k == 1 returns P unchanged.
        """
        k %= self.n
        if k == 0 or P.is_infinity:
            return INFINITY
        if k == 1:
            return P

        base = (P.x, P.y, 1)
        acc = _J_INFINITY
        for bit in bin(k)[2:]:
            acc = self._j_double(acc)
            if bit == "1":
                acc = self._j_add(acc, base)
        return self._to_affine(acc)

    def multi_scalar_multiply(self, pairs: Iterable[Tuple[int, CurvePoint]]) -> CurvePoint:
        """
        Compute sum(k_i * P_i) with shared doublings (Straus, window 1).
        """
        terms: List[Tuple[int, Jacobian]] = []
        max_bits = 0
        for k, P in pairs:
            k %= self.n
            if k == 0 or P.is_infinity:
                continue
            terms.append((k, (P.x, P.y, 1)))
            max_bits = max(max_bits, k.bit_length())

        if not terms:
            return INFINITY

        acc = _J_INFINITY
        for i in range(max_bits - 1, -1, -1):
            acc = self._j_double(acc)
            for k, J in terms:
                if (k >> i) & 1:
                    acc = self._j_add(acc, J)
        return self._to_affine(acc)

    def sum_points(self, points: Iterable[CurvePoint]) -> CurvePoint:
        """Sum of points, one inversion at the end."""
        acc = _J_INFINITY
        for P in points:
            if not P.is_infinity:
                acc = self._j_add(acc, (P.x, P.y, 1))
        return self._to_affine(acc)

    # -------------------------------------------------------------------------
    # Encoding
    # -------------------------------------------------------------------------

    def encode_point(self, point: CurvePoint) -> bytes:
        """Canonical x || y, each zero-padded to the field byte width."""
        width = self.params.byte_width
        if point.is_infinity:
            return bytes(2 * width)
        return point.x.to_bytes(width, "big") + point.y.to_bytes(width, "big")

    def decode_point(self, data: bytes) -> CurvePoint:
        """
        Decode a canonical point encoding.

        Raises:
            InvalidValue: If the length is wrong or the point is off the curve
        """
        width = self.params.byte_width
        if not isinstance(data, (bytes, bytearray)) or len(data) != 2 * width:
            raise InvalidValue(f"Point encoding must be {2 * width} bytes")
        if not any(data):
            return INFINITY
        point = CurvePoint(
            int.from_bytes(data[:width], "big"),
            int.from_bytes(data[width:], "big"),
        )
        if not self.is_on_curve(point):
            raise InvalidValue("Encoded point is not on the curve")
        return point

    # -------------------------------------------------------------------------
    # Jacobian internals (a = 0)
    # -------------------------------------------------------------------------

    def _j_double(self, P: Jacobian) -> Jacobian:
        X1, Y1, Z1 = P
        if Z1 == 0 or Y1 == 0:
            return _J_INFINITY
        p = self.p
        A = X1 * X1 % p
        B = Y1 * Y1 % p
        C = B * B % p
        D = 2 * ((X1 + B) * (X1 + B) - A - C) % p
        E = 3 * A % p
        F = E * E % p
        X3 = (F - 2 * D) % p
        Y3 = (E * (D - X3) - 8 * C) % p
        Z3 = 2 * Y1 * Z1 % p
        return (X3, Y3, Z3)

    def _j_add(self, P: Jacobian, Q: Jacobian) -> Jacobian:
        X1, Y1, Z1 = P
        X2, Y2, Z2 = Q
        if Z1 == 0:
            return Q
        if Z2 == 0:
            return P
        p = self.p
        Z1Z1 = Z1 * Z1 % p
        Z2Z2 = Z2 * Z2 % p
        U1 = X1 * Z2Z2 % p
        U2 = X2 * Z1Z1 % p
        S1 = Y1 * Z2 * Z2Z2 % p
        S2 = Y2 * Z1 * Z1Z1 % p
        if U1 == U2:
            if S1 != S2:
                return _J_INFINITY
            return self._j_double(P)
        H = (U2 - U1) % p
        I = 4 * H * H % p
        J = H * I % p
        r = 2 * (S2 - S1) % p
        V = U1 * I % p
        X3 = (r * r - J - 2 * V) % p
        Y3 = (r * (V - X3) - 2 * S1 * J) % p
        Z3 = ((Z1 + Z2) * (Z1 + Z2) - Z1Z1 - Z2Z2) * H % p
        return (X3, Y3, Z3)

    def _to_affine(self, P: Jacobian) -> CurvePoint:
        X, Y, Z = P
        if Z == 0:
            return INFINITY
        p = self.p
        z_inv = mod_inverse(Z, p)
        z_inv2 = z_inv * z_inv % p
        return CurvePoint(X * z_inv2 % p, Y * z_inv2 * z_inv % p)

    def _to_affine_batch(self, points: Sequence[Jacobian]) -> List[CurvePoint]:
        """Normalize many Jacobian points with one inversion."""
        finite = [i for i, P in enumerate(points) if P[2] != 0]
        inverses = batch_inverse([points[i][2] for i in finite], self.p)
        result = [INFINITY] * len(points)
        p = self.p
        for i, z_inv in zip(finite, inverses):
            X, Y, _ = points[i]
            z_inv2 = z_inv * z_inv % p
            result[i] = CurvePoint(X * z_inv2 % p, Y * z_inv2 * z_inv % p)
        return result


@lru_cache(maxsize=None)
def get_curve(name: str) -> Curve:
    """Get the Curve for a named parameter set."""
    params = CURVES.get(name)
    if params is None:
        raise ConfigurationError(f"Unknown curve: {name}", {"curves": sorted(CURVES)})
    return Curve(params)

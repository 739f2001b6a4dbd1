"""
Veil Pedersen Generators

G is the curve's standard base point. H, the inner-product generator U and
the Bulletproof vector generators are derived by try-and-increment
hash-to-curve from nothing-up-my-sleeve seeds, so nobody knows a discrete-log
relation between any two of them.
"""

from __future__ import annotations
import logging
import struct
from functools import lru_cache
from typing import List, Tuple

from veil.constants import (
    DEFAULT_CURVE,
    DEFAULT_H_GENERATOR_SEED,
    DOMAIN_HASH_TO_CURVE,
    DOMAIN_IPA_U,
    DOMAIN_VECTOR_G,
    DOMAIN_VECTOR_H,
    HASH_TO_CURVE_MAX_ATTEMPTS,
)
from veil.crypto.curve import Curve, CurvePoint, INFINITY, get_curve
from veil.crypto.hash import tagged_hash
from veil.errors import ConfigurationError, CurveArithmeticFailure

logger = logging.getLogger(__name__)


def hash_to_curve(curve: Curve, seed: bytes) -> CurvePoint:
    """
    Hash data to a curve point (try-and-increment).

    Both supported curves have p = 3 (mod 4), so a square root is
    rhs^((p+1)/4). The even root is taken to make the result canonical.
    Both curves have cofactor 1, so every point lies in the prime-order group.
    """
    p = curve.p
    if p % 4 != 3:
        raise ConfigurationError(f"hash_to_curve needs p = 3 mod 4 (curve {curve.name})")

    for counter in range(HASH_TO_CURVE_MAX_ATTEMPTS):
        digest = tagged_hash(DOMAIN_HASH_TO_CURVE, seed + struct.pack(">I", counter))
        x = int.from_bytes(digest, "big") % p
        rhs = (x * x * x + curve.b) % p
        y = pow(rhs, (p + 1) // 4, p)
        if y * y % p != rhs:
            continue
        if y & 1:
            y = p - y
        point = CurvePoint(x, y)
        if curve.is_on_curve(point) and not point.is_infinity:
            return point

    raise CurveArithmeticFailure(
        f"Hash to curve failed after {HASH_TO_CURVE_MAX_ATTEMPTS} attempts"
    )


class FixedBaseTable:
    """
    Precomputed doublings 2^i * P for fast multiplication of a fixed base.

    multiply() adds the table entries selected by the bits of k, which is
    double-and-add with the doublings done once up front.
    """

    def __init__(self, curve: Curve, base: CurvePoint):
        self.curve = curve
        self.base = base
        bits = curve.n.bit_length()

        doublings = []
        acc = (base.x, base.y, 1)
        for _ in range(bits):
            doublings.append(acc)
            acc = curve._j_double(acc)
        self._table = [(P.x, P.y, 1) for P in curve._to_affine_batch(doublings)]

    def multiply(self, k: int) -> CurvePoint:
        k %= self.curve.n
        if k == 0:
            return INFINITY
        if k == 1:
            return self.base

        acc = (1, 1, 0)
        i = 0
        while k:
            if k & 1:
                acc = self.curve._j_add(acc, self._table[i])
            k >>= 1
            i += 1
        return self.curve._to_affine(acc)


class PedersenGenerators:
    """
    Pedersen commitment generators G and H plus Bulletproof vectors.

    Vectors are derived on demand and cached per length.
    """

    def __init__(self, curve: Curve, h_seed: bytes):
        self.curve = curve
        self.h_seed = h_seed

        self.G = curve.generator
        self.H = hash_to_curve(curve, h_seed)
        if self.H == self.G or self.H == curve.negate(self.G):
            raise ConfigurationError("H generator collides with G")
        self.U = hash_to_curve(curve, DOMAIN_IPA_U + h_seed)

        self.g_table = FixedBaseTable(curve, self.G)
        self.h_table = FixedBaseTable(curve, self.H)
        self._vectors: dict = {}

        logger.debug(f"Derived Pedersen generators for {curve.name}: H.x={hex(self.H.x)[:18]}")

    @property
    def order(self) -> int:
        return self.curve.n

    def multiply_g(self, k: int) -> CurvePoint:
        """k * G"""
        return self.g_table.multiply(k)

    def multiply_h(self, k: int) -> CurvePoint:
        """k * H"""
        return self.h_table.multiply(k)

    def vector(self, n: int) -> Tuple[List[CurvePoint], List[CurvePoint]]:
        """Get n independent (G_i, H_i) generator pairs for Bulletproofs."""
        if n not in self._vectors:
            gi = [
                hash_to_curve(self.curve, DOMAIN_VECTOR_G + self.h_seed + struct.pack(">I", i))
                for i in range(n)
            ]
            hi = [
                hash_to_curve(self.curve, DOMAIN_VECTOR_H + self.h_seed + struct.pack(">I", i))
                for i in range(n)
            ]
            self._vectors[n] = (gi, hi)
        gi, hi = self._vectors[n]
        return list(gi), list(hi)


@lru_cache(maxsize=8)
def get_generators(
    curve_name: str = DEFAULT_CURVE,
    h_seed: bytes = DEFAULT_H_GENERATOR_SEED.encode(),
) -> PedersenGenerators:
    """Get (cached) generators for a curve and H seed."""
    return PedersenGenerators(get_curve(curve_name), h_seed)

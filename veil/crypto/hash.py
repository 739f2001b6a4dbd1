"""
Veil Hash Functions

SHA3-256 per NIST FIPS 202 for internal derivations, Keccak-256 for
operation data hashes shared with the ledger contract.
"""

from __future__ import annotations
import hashlib
from typing import Union

from Crypto.Hash import keccak

from veil.constants import SCALAR_SIZE

BytesLike = Union[bytes, bytearray, memoryview]


def sha3_256(data: BytesLike) -> bytes:
    """
    SHA3-256 hash function per NIST FIPS 202.

    Args:
        data: Input data to hash

    Returns:
        bytes: 32-byte hash output
    """
    return hashlib.sha3_256(data).digest()


def keccak256(data: BytesLike) -> bytes:
    """
    Keccak-256 (the pre-standard SHA3 padding used by Ethereum contracts).

    Args:
        data: Input data to hash

    Returns:
        bytes: 32-byte hash output
    """
    hasher = keccak.new(digest_bits=256)
    hasher.update(bytes(data))
    return hasher.digest()


def tagged_hash(tag: bytes, data: BytesLike) -> bytes:
    """
    Domain-separated hash using tagged hashing.

    Computes: SHA3-256(SHA3-256(tag) || SHA3-256(tag) || data)

    Args:
        tag: Domain separation tag
        data: Data to hash

    Returns:
        bytes: Tagged hash output
    """
    tag_hash = sha3_256(tag)
    return sha3_256(tag_hash + tag_hash + bytes(data))


def hash_to_scalar(tag: bytes, data: BytesLike, order: int) -> int:
    """
    Hash data to a non-zero scalar modulo the group order.

    The 256-bit digest is reduced modulo order; the (negligible) zero
    result maps to 1 so the scalar is always invertible.
    """
    s = int.from_bytes(tagged_hash(tag, data), "big") % order
    return s if s != 0 else 1


def scalar_to_bytes(value: int) -> bytes:
    """Encode a scalar as 32 bytes big-endian."""
    return value.to_bytes(SCALAR_SIZE, "big")


def scalar_from_bytes(data: bytes) -> int:
    """Decode a 32-byte big-endian scalar."""
    if len(data) != SCALAR_SIZE:
        raise ValueError(f"Scalar must be {SCALAR_SIZE} bytes, got {len(data)}")
    return int.from_bytes(data, "big")


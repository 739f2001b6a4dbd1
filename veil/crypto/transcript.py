"""
Veil Fiat-Shamir Transcript

Every message is length-prefixed and labelled, so distinct transcripts can
never serialize to the same byte stream.
"""

from __future__ import annotations
import hashlib
import struct

from veil.crypto.curve import Curve, CurvePoint
from veil.crypto.hash import scalar_to_bytes


class Transcript:
    """
    Running SHA3-256 transcript for non-interactive proofs.

    Example:
        t = Transcript(b"range", curve)
        t.append_point(b"V", V)
        y = t.challenge(b"y")
    """

    def __init__(self, domain: bytes, curve: Curve):
        self.curve = curve
        self._hasher = hashlib.sha3_256()
        self.append_message(b"domain", domain)
        self.append_message(b"curve", curve.name.encode())

    def append_message(self, label: bytes, data: bytes) -> None:
        self._hasher.update(struct.pack(">B", len(label)) + label)
        self._hasher.update(struct.pack(">I", len(data)) + data)

    def append_point(self, label: bytes, point: CurvePoint) -> None:
        self.append_message(label, self.curve.encode_point(point))

    def append_scalar(self, label: bytes, value: int) -> None:
        self.append_message(label, scalar_to_bytes(value % self.curve.n))

    def append_int(self, label: bytes, value: int) -> None:
        self.append_message(label, struct.pack(">Q", value))

    def challenge(self, label: bytes) -> int:
        """Derive a non-zero challenge scalar and fold it back into the state."""
        self.append_message(b"challenge", label)
        digest = self._hasher.copy().digest()
        self._hasher.update(digest)
        c = int.from_bytes(digest, "big") % self.curve.n
        return c if c != 0 else 1

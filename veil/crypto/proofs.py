"""
Veil Proof Envelopes

Range and conservation proofs travel as tagged variants: a scheme tag plus
an opaque payload. Verifiers dispatch on the tag, so a new proof system can
be added without touching the UTXO state machine.

Wire format (big-endian):
    RangeProof:        scheme (1) | bit_length (2) | payload
    ConservationProof: scheme (1) | kind (1)       | payload
"""

from __future__ import annotations
import struct
from dataclasses import dataclass
from enum import IntEnum

from veil.errors import InvalidValue


class ProofScheme(IntEnum):
    """Proof system identifiers."""
    BULLETPROOF_V1 = 0x01
    SCHNORR_EXCESS_V1 = 0x02


class ConservationKind(IntEnum):
    """Relation proven by a conservation proof."""
    SPLIT = 0x01
    EQUALITY = 0x02
    OPENING = 0x03


@dataclass(frozen=True)
class RangeProof:
    """Proof that one commitment hides a value in [0, 2^bit_length)."""
    scheme: ProofScheme
    bit_length: int
    payload: bytes

    def serialize(self) -> bytes:
        return struct.pack(">BH", self.scheme, self.bit_length) + self.payload

    @classmethod
    def deserialize(cls, data: bytes) -> "RangeProof":
        if len(data) < 3:
            raise InvalidValue("Range proof data too short")
        scheme_id, bit_length = struct.unpack_from(">BH", data, 0)
        try:
            scheme = ProofScheme(scheme_id)
        except ValueError:
            raise InvalidValue(f"Unknown proof scheme: {scheme_id}")
        return cls(scheme=scheme, bit_length=bit_length, payload=bytes(data[3:]))

    def __len__(self) -> int:
        return 3 + len(self.payload)


@dataclass(frozen=True)
class ConservationProof:
    """Proof of a value relation between commitments (split, equality, opening)."""
    scheme: ProofScheme
    kind: ConservationKind
    payload: bytes

    def serialize(self) -> bytes:
        return struct.pack(">BB", self.scheme, self.kind) + self.payload

    @classmethod
    def deserialize(cls, data: bytes) -> "ConservationProof":
        if len(data) < 2:
            raise InvalidValue("Conservation proof data too short")
        scheme_id, kind_id = struct.unpack_from(">BB", data, 0)
        try:
            scheme = ProofScheme(scheme_id)
            kind = ConservationKind(kind_id)
        except ValueError:
            raise InvalidValue(f"Unknown proof tag: {scheme_id}/{kind_id}")
        return cls(scheme=scheme, kind=kind, payload=bytes(data[2:]))

    def __len__(self) -> int:
        return 2 + len(self.payload)

"""
Veil Cryptographic Primitives

Curve arithmetic, Pedersen commitments, nullifiers, Bulletproof range
proofs and Schnorr value-conservation proofs.
"""

from veil.crypto.hash import sha3_256, keccak256, tagged_hash
from veil.crypto.curve import (
    Curve,
    CurvePoint,
    INFINITY,
    get_curve,
    mod_inverse,
)
from veil.crypto.generators import PedersenGenerators, get_generators, hash_to_curve
from veil.crypto.commitment import Commitment, CommitmentEngine
from veil.crypto.nullifier import Nullifier, NullifierDeriver
from veil.crypto.proofs import (
    ConservationKind,
    ConservationProof,
    ProofScheme,
    RangeProof,
)
from veil.crypto.rangeproof import RangeProver
from veil.crypto.conservation import ConservationProver

__all__ = [
    # Hash functions
    "sha3_256",
    "keccak256",
    "tagged_hash",
    # Curve
    "Curve",
    "CurvePoint",
    "INFINITY",
    "get_curve",
    "mod_inverse",
    # Generators
    "PedersenGenerators",
    "get_generators",
    "hash_to_curve",
    # Commitments / nullifiers
    "Commitment",
    "CommitmentEngine",
    "Nullifier",
    "NullifierDeriver",
    # Proofs
    "ConservationKind",
    "ConservationProof",
    "ProofScheme",
    "RangeProof",
    "RangeProver",
    "ConservationProver",
]

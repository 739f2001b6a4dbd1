"""
Veil Constants

All protocol constants defined here for single source of truth.
"""

from typing import Final, Tuple

# ==============================================================================
# CURVES
# ==============================================================================

# alt_bn128 / BN254 G1 (EIP-196), y^2 = x^3 + 3
BN254_FIELD_PRIME: Final[int] = (
    21888242871839275222246405745257275088696311157297823662689037894645226208583
)
BN254_GROUP_ORDER: Final[int] = (
    21888242871839275222246405745257275088548364400416034343698204186575808495617
)
BN254_B: Final[int] = 3
BN254_GX: Final[int] = 1
BN254_GY: Final[int] = 2

# secp256k1 (SEC 2), y^2 = x^3 + 7
SECP256K1_FIELD_PRIME: Final[int] = (
    0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEFFFFFC2F
)
SECP256K1_GROUP_ORDER: Final[int] = (
    0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141
)
SECP256K1_B: Final[int] = 7
SECP256K1_GX: Final[int] = 0x79BE667EF9DCBBAC55A06295CE870B07029BFCDB2DCE28D959F2815B16F81798
SECP256K1_GY: Final[int] = 0x483ADA7726A3C4655DA4FBFC0E1108A8FD17B448A68554199C47D08FFB10D4B8

DEFAULT_CURVE: Final[str] = "bn254"

# ==============================================================================
# GENERATORS
# ==============================================================================

# Pedersen generator H (hash-derived, nothing-up-my-sleeve)
DEFAULT_H_GENERATOR_SEED: Final[str] = "Veil Pedersen H Generator v1"

HASH_TO_CURVE_MAX_ATTEMPTS: Final[int] = 256

# ==============================================================================
# DOMAIN SEPARATION TAGS
# ==============================================================================

DOMAIN_HASH_TO_CURVE: Final[bytes] = b"Veil_HashToCurve_v1"
DOMAIN_VECTOR_G: Final[bytes] = b"Veil_BulletproofG_v1"
DOMAIN_VECTOR_H: Final[bytes] = b"Veil_BulletproofH_v1"
DOMAIN_IPA_U: Final[bytes] = b"Veil_InnerProductU_v1"
DOMAIN_NULLIFIER: Final[bytes] = b"Veil_Nullifier_v1"
DOMAIN_NULLIFIER_ID: Final[bytes] = b"Veil_NullifierId_v1"
DOMAIN_RANGE_PROOF: Final[bytes] = b"Veil_Bulletproof_v1"
DOMAIN_CONSERVATION: Final[bytes] = b"Veil_Conservation_v1"
DOMAIN_ATTESTATION: Final[bytes] = b"Veil_Attestation_v1"
DOMAIN_UTXO_ID: Final[bytes] = b"Veil_UTXOId_v1"

# ==============================================================================
# ENCODING
# ==============================================================================

SCALAR_SIZE: Final[int] = 32
NONCE_SIZE: Final[int] = 32
DIGEST_SIZE: Final[int] = 32
ED25519_SIGNATURE_SIZE: Final[int] = 64

# ==============================================================================
# RANGE PROOFS
# ==============================================================================

DEFAULT_RANGE_BITS: Final[int] = 64
SUPPORTED_RANGE_BITS: Final[Tuple[int, ...]] = (8, 16, 32, 64)

# ==============================================================================
# SUBMISSION / ATTESTATION DEFAULTS
# ==============================================================================

DEFAULT_SUBMISSION_TIMEOUT_SEC: Final[float] = 30.0
DEFAULT_ATTESTATION_MAX_AGE_SEC: Final[int] = 300
DEFAULT_ATTESTATION_MAX_SKEW_SEC: Final[int] = 30
DEFAULT_HTTP_TIMEOUT_SEC: Final[float] = 10.0

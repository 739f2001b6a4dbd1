"""
Veil - private UTXO engine

Pedersen-committed coins with nullifier-based double-spend protection,
Bulletproof range proofs and value-conservation proofs.
"""

__version__ = "1.0.0"
__author__ = "Veil Protocol"

from veil.constants import DEFAULT_CURVE, DEFAULT_RANGE_BITS

__all__ = [
    "DEFAULT_CURVE",
    "DEFAULT_RANGE_BITS",
    "__version__",
]

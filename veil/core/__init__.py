"""
Veil Core Types

UTXO records, operations and attestations.
"""

from veil.core.types import (
    EventKind,
    LedgerEvent,
    LedgerStats,
    OperationKind,
    OperationResult,
    ReconcileReport,
    UTXORecord,
    UTXOState,
    utxo_id,
)
from veil.core.attestation import (
    Attestation,
    AttestationAuthority,
    AttestationVerifier,
    HttpAttestationAuthority,
    LocalAttestationAuthority,
)

__all__ = [
    "EventKind",
    "LedgerEvent",
    "LedgerStats",
    "OperationKind",
    "OperationResult",
    "ReconcileReport",
    "UTXORecord",
    "UTXOState",
    "utxo_id",
    "Attestation",
    "AttestationAuthority",
    "AttestationVerifier",
    "HttpAttestationAuthority",
    "LocalAttestationAuthority",
]

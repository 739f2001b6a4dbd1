"""
Veil Ledger

Ledger-contract and cache boundaries plus the UTXO state machine.
"""

from veil.ledger.contract import (
    HttpLedgerContract,
    InMemoryLedgerContract,
    LedgerContract,
    Submission,
    SubmissionReceipt,
)
from veil.ledger.cache import MemoryUTXOCache, SQLiteUTXOCache, UTXOCache, cache_from_config
from veil.ledger.machine import UTXOLedger

__all__ = [
    "HttpLedgerContract",
    "InMemoryLedgerContract",
    "LedgerContract",
    "Submission",
    "SubmissionReceipt",
    "MemoryUTXOCache",
    "SQLiteUTXOCache",
    "UTXOCache",
    "cache_from_config",
    "UTXOLedger",
]

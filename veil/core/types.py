"""
Veil Core Types

UTXO records, operation kinds and results, ledger events.
"""

from __future__ import annotations
import time
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import TYPE_CHECKING, Dict, List, Optional

from veil.constants import DOMAIN_UTXO_ID
from veil.crypto.hash import tagged_hash
from veil.crypto.nullifier import Nullifier, owner_digest

if TYPE_CHECKING:
    from veil.ledger.contract import SubmissionReceipt


class OperationKind(IntEnum):
    """Ledger operations (the byte value is signed into attestations)."""
    DEPOSIT = 1
    SPLIT = 2
    TRANSFER = 3
    WITHDRAW = 4


class UTXOState(Enum):
    UNSPENT = "unspent"
    SPENT = "spent"


class EventKind(Enum):
    CREATED = "created"
    SPENT = "spent"


def utxo_id(commitment_handle: bytes, owner: str) -> str:
    """Record identifier: hex SHA3 of handle || owner digest."""
    return tagged_hash(DOMAIN_UTXO_ID, bytes(commitment_handle) + owner_digest(owner)).hex()


# ==============================================================================
# UTXO Record
# ==============================================================================

@dataclass
class UTXORecord:
    """
    One confirmed private coin.

    Public fields travel to the ledger; value, blinding factor, nullifier
    and nullifier nonce never leave the owner.

    The only mutation after creation is is_spent False -> True, once.
    """
    id: str
    commitment_handle: bytes
    owner: str
    token_id: str
    value: int = field(repr=False)
    blinding_factor: int = field(repr=False)
    nullifier: Nullifier = field(repr=False)
    nullifier_nonce: bytes = field(repr=False)
    operation: OperationKind = OperationKind.DEPOSIT
    is_spent: bool = False
    parent_id: Optional[str] = None
    created_at: float = field(default_factory=time.time)
    confirmed_at: Optional[float] = None
    spent_at: Optional[float] = None

    @property
    def state(self) -> UTXOState:
        return UTXOState.SPENT if self.is_spent else UTXOState.UNSPENT

    def mark_spent(self, at: Optional[float] = None) -> bool:
        """Flip to spent. Returns False if it already was."""
        if self.is_spent:
            return False
        self.is_spent = True
        self.spent_at = at if at is not None else time.time()
        return True

    def to_dict(self) -> dict:
        """Cache encoding: ints as decimal strings, bytes as hex."""
        return {
            "id": self.id,
            "commitment_handle": self.commitment_handle.hex(),
            "owner": self.owner,
            "token_id": self.token_id,
            "value": str(self.value),
            "blinding_factor": str(self.blinding_factor),
            "nullifier": self.nullifier.to_dict(),
            "nullifier_nonce": self.nullifier_nonce.hex(),
            "operation": self.operation.name,
            "is_spent": self.is_spent,
            "parent_id": self.parent_id,
            "created_at": self.created_at,
            "confirmed_at": self.confirmed_at,
            "spent_at": self.spent_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "UTXORecord":
        return cls(
            id=data["id"],
            commitment_handle=bytes.fromhex(data["commitment_handle"]),
            owner=data["owner"],
            token_id=data["token_id"],
            value=int(data["value"]),
            blinding_factor=int(data["blinding_factor"]),
            nullifier=Nullifier.from_dict(data["nullifier"]),
            nullifier_nonce=bytes.fromhex(data["nullifier_nonce"]),
            operation=OperationKind[data.get("operation", "DEPOSIT")],
            is_spent=bool(data.get("is_spent", False)),
            parent_id=data.get("parent_id"),
            created_at=float(data.get("created_at", 0.0)),
            confirmed_at=data.get("confirmed_at"),
            spent_at=data.get("spent_at"),
        )


# ==============================================================================
# Results / Events
# ==============================================================================

@dataclass
class OperationResult:
    """Outcome of a confirmed ledger operation."""
    kind: OperationKind
    created: List[UTXORecord] = field(default_factory=list)
    input_id: Optional[str] = None
    spent_id: Optional[str] = None
    revealed_amount: Optional[int] = None
    nullifier: Optional[Nullifier] = None
    receipt: Optional["SubmissionReceipt"] = None

    @property
    def created_ids(self) -> List[str]:
        return [r.id for r in self.created]


@dataclass(frozen=True)
class LedgerEvent:
    kind: EventKind
    utxo_id: str
    owner: str
    operation: OperationKind
    timestamp: float


@dataclass
class LedgerStats:
    """Per-owner summary."""
    total: int = 0
    unspent: int = 0
    spent: int = 0
    tokens: List[str] = field(default_factory=list)
    balance: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "unspent": self.unspent,
            "spent": self.spent,
            "tokens": list(self.tokens),
            "balance": {k: str(v) for k, v in self.balance.items()},
        }


@dataclass
class ReconcileReport:
    """Differences between local records and the ledger contract."""
    owner: str
    checked: int = 0
    marked_spent: List[str] = field(default_factory=list)
    orphaned: List[str] = field(default_factory=list)

    @property
    def consistent(self) -> bool:
        return not self.marked_spent and not self.orphaned

"""
Veil Ledger Contract Boundary

The ledger contract is the authority on which commitments exist and which
nullifiers are used. This module defines the submission format, the
abstract boundary, an in-process contract that verifies every proof with
this package's verifiers, and a JSON/HTTP gateway client.

Per-operation submission contents:
    DEPOSIT:  output + output nullifier + range proof + opening proof + amount
    SPLIT:    input + nullifier + outputs + output nullifiers + range proofs + split proof
    TRANSFER: input + nullifier + output + output nullifier + equality proof
    WITHDRAW: input + nullifier + opening proof + amount + recipient
"""

from __future__ import annotations
import logging
import struct
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, List, Optional, Set

import httpx

from veil.constants import DEFAULT_HTTP_TIMEOUT_SEC, DEFAULT_RANGE_BITS
from veil.core.attestation import Attestation, AttestationVerifier
from veil.core.types import OperationKind
from veil.crypto.conservation import ConservationProver
from veil.crypto.generators import PedersenGenerators
from veil.crypto.hash import keccak256
from veil.crypto.proofs import ConservationKind, ConservationProof, RangeProof
from veil.crypto.rangeproof import RangeProver
from veil.errors import (
    AttestationExpired,
    AttestationInvalid,
    ConfigurationError,
    InvalidValue,
    SubmissionRejected,
    SubmissionTimeout,
)

if TYPE_CHECKING:
    from veil.node.config import LedgerConfig

logger = logging.getLogger(__name__)


# ==============================================================================
# Submission / Receipt
# ==============================================================================

def _blob(data: Optional[bytes]) -> bytes:
    data = data or b""
    return struct.pack(">I", len(data)) + data


@dataclass
class Submission:
    """One operation as sent to the ledger contract."""
    kind: OperationKind
    token_id: str
    nullifier: Optional[bytes] = None
    input_handle: Optional[bytes] = None
    output_handles: List[bytes] = field(default_factory=list)
    output_nullifiers: List[bytes] = field(default_factory=list)
    range_proofs: List[RangeProof] = field(default_factory=list)
    conservation_proof: Optional[ConservationProof] = None
    amount: Optional[int] = None
    recipient: Optional[str] = None
    attestation: Optional[Attestation] = None

    def canonical_bytes(self) -> bytes:
        """
        Reproducible encoding of everything except the attestation.

        Every variable-width field is length-prefixed.
        """
        parts = [
            struct.pack(">B", int(self.kind)),
            _blob(self.token_id.encode("utf-8")),
            _blob(self.nullifier),
            _blob(self.input_handle),
            struct.pack(">I", len(self.output_handles)),
        ]
        parts.extend(_blob(h) for h in self.output_handles)
        parts.append(struct.pack(">I", len(self.output_nullifiers)))
        parts.extend(_blob(n) for n in self.output_nullifiers)
        parts.append(struct.pack(">I", len(self.range_proofs)))
        parts.extend(_blob(p.serialize()) for p in self.range_proofs)
        parts.append(_blob(self.conservation_proof.serialize() if self.conservation_proof else None))
        if self.amount is None:
            parts.append(b"\x00")
        else:
            parts.append(b"\x01" + self.amount.to_bytes(32, "big"))
        parts.append(_blob(self.recipient.encode("utf-8") if self.recipient is not None else None))
        return b"".join(parts)

    def data_hash(self) -> bytes:
        """Keccak-256 of canonical_bytes(); the value the authority attests."""
        return keccak256(self.canonical_bytes())

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.name,
            "token_id": self.token_id,
            "nullifier": self.nullifier.hex() if self.nullifier else None,
            "input_handle": self.input_handle.hex() if self.input_handle else None,
            "output_handles": [h.hex() for h in self.output_handles],
            "output_nullifiers": [n.hex() for n in self.output_nullifiers],
            "range_proofs": [p.serialize().hex() for p in self.range_proofs],
            "conservation_proof": (
                self.conservation_proof.serialize().hex() if self.conservation_proof else None
            ),
            "amount": str(self.amount) if self.amount is not None else None,
            "recipient": self.recipient,
            "attestation": self.attestation.to_dict() if self.attestation else None,
            "data_hash": self.data_hash().hex(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Submission":
        """
        Raises:
            InvalidValue: If the document is malformed
        """
        try:
            def opt_hex(key: str) -> Optional[bytes]:
                value = data.get(key)
                return bytes.fromhex(value) if value else None

            proof_hex = data.get("conservation_proof")
            attestation = data.get("attestation")
            return cls(
                kind=OperationKind[data["kind"]],
                token_id=data["token_id"],
                nullifier=opt_hex("nullifier"),
                input_handle=opt_hex("input_handle"),
                output_handles=[bytes.fromhex(h) for h in data.get("output_handles", [])],
                output_nullifiers=[bytes.fromhex(n) for n in data.get("output_nullifiers", [])],
                range_proofs=[
                    RangeProof.deserialize(bytes.fromhex(p)) for p in data.get("range_proofs", [])
                ],
                conservation_proof=(
                    ConservationProof.deserialize(bytes.fromhex(proof_hex)) if proof_hex else None
                ),
                amount=int(data["amount"]) if data.get("amount") is not None else None,
                recipient=data.get("recipient"),
                attestation=Attestation.from_dict(attestation) if attestation else None,
            )
        except (KeyError, ValueError, TypeError, AttestationInvalid) as e:
            raise InvalidValue(f"Malformed submission: {e}")


@dataclass(frozen=True)
class SubmissionReceipt:
    """Authoritative ledger answer. accepted=False is final for that submission."""
    accepted: bool
    reference: str = ""
    reason: str = ""

    def to_dict(self) -> dict:
        return {"accepted": self.accepted, "reference": self.reference, "reason": self.reason}

    @classmethod
    def from_dict(cls, data: dict) -> "SubmissionReceipt":
        return cls(
            accepted=bool(data.get("accepted", False)),
            reference=str(data.get("reference", "")),
            reason=str(data.get("reason", "")),
        )


# ==============================================================================
# Boundary
# ==============================================================================

class LedgerContract(ABC):
    """Authority over commitment existence and nullifier use."""

    @abstractmethod
    async def submit(self, submission: Submission) -> SubmissionReceipt:
        """
        Raises:
            SubmissionTimeout: If the contract does not answer in time
            SubmissionRejected: If the transport fails
        """

    @abstractmethod
    async def commitment_exists(self, handle: bytes) -> bool:
        ...

    @abstractmethod
    async def nullifier_used(self, nullifier: bytes) -> bool:
        ...


class InMemoryLedgerContract(LedgerContract):
    """
    In-process ledger contract.

    Verifies attestations (when a verifier is given), range proofs and
    conservation proofs, then applies the submission atomically. Keeps the
    commitment set, the nullifier registered for each commitment, the used
    nullifier set and per-token pool balances.
    """

    def __init__(
        self,
        generators: PedersenGenerators,
        range_bits: int = DEFAULT_RANGE_BITS,
        attestation_verifier: Optional[AttestationVerifier] = None,
    ):
        self.generators = generators
        self.range_bits = range_bits
        self.range_prover = RangeProver(generators)
        self.conservation_prover = ConservationProver(generators)
        self.attestation_verifier = attestation_verifier

        self.commitments: Dict[bytes, bytes] = {}  # handle -> registered nullifier
        self.used_nullifiers: Set[bytes] = set()
        self.used_attestation_nonces: Set[bytes] = set()
        self.pool: Dict[str, int] = {}
        self.withdrawals: List[dict] = []
        self.accepted: List[Submission] = []

    async def commitment_exists(self, handle: bytes) -> bool:
        return bytes(handle) in self.commitments

    async def nullifier_used(self, nullifier: bytes) -> bool:
        return bytes(nullifier) in self.used_nullifiers

    async def submit(self, submission: Submission) -> SubmissionReceipt:
        reason = self._check(submission)
        data_hash = submission.data_hash()
        if reason:
            logger.warning(f"Contract rejected {submission.kind.name}: {reason}")
            return SubmissionReceipt(accepted=False, reference=data_hash.hex(), reason=reason)

        self._apply(submission)
        self.accepted.append(submission)
        logger.debug(f"Contract accepted {submission.kind.name} {data_hash.hex()[:16]}")
        return SubmissionReceipt(accepted=True, reference=data_hash.hex())

    # -------------------------------------------------------------------------
    # Validation
    # -------------------------------------------------------------------------

    def _check(self, sub: Submission) -> str:
        """Empty string when acceptable, otherwise the rejection reason."""
        reason = self._check_attestation(sub)
        if reason:
            return reason

        if len(sub.output_handles) != len(sub.output_nullifiers):
            return "output nullifier count mismatch"
        if len(set(sub.output_handles)) != len(sub.output_handles):
            return "duplicate output commitment"
        for handle in sub.output_handles:
            if handle in self.commitments:
                return "output commitment already exists"
        for nullifier in sub.output_nullifiers:
            if nullifier in self.used_nullifiers:
                return "output nullifier already used"

        if sub.kind != OperationKind.DEPOSIT:
            reason = self._check_input(sub)
            if reason:
                return reason

        checks = {
            OperationKind.DEPOSIT: self._check_deposit,
            OperationKind.SPLIT: self._check_split,
            OperationKind.TRANSFER: self._check_transfer,
            OperationKind.WITHDRAW: self._check_withdraw,
        }
        return checks[sub.kind](sub)

    def _check_attestation(self, sub: Submission) -> str:
        if self.attestation_verifier is None:
            return ""
        att = sub.attestation
        if att is None:
            return "missing attestation"
        if att.nonce in self.used_attestation_nonces:
            return "attestation nonce replayed"
        try:
            self.attestation_verifier.validate(att, sub.kind, sub.data_hash(), att.nonce)
        except (AttestationInvalid, AttestationExpired) as e:
            return e.message
        return ""

    def _check_input(self, sub: Submission) -> str:
        if not sub.input_handle or not sub.nullifier:
            return "missing input"
        registered = self.commitments.get(sub.input_handle)
        if registered is None:
            return "unknown input commitment"
        if sub.nullifier in self.used_nullifiers:
            return "nullifier already used"
        if registered != sub.nullifier:
            return "nullifier does not match input commitment"
        return ""

    def _check_ranges(self, sub: Submission) -> str:
        if len(sub.range_proofs) != len(sub.output_handles):
            return "range proof count mismatch"
        for proof, handle in zip(sub.range_proofs, sub.output_handles):
            if not self.range_prover.verify(proof, handle, self.range_bits):
                return "invalid range proof"
        return ""

    def _check_deposit(self, sub: Submission) -> str:
        if len(sub.output_handles) != 1:
            return "deposit takes exactly one output"
        if sub.amount is None or sub.amount <= 0:
            return "deposit amount must be positive"
        proof = sub.conservation_proof
        if proof is None or proof.kind != ConservationKind.OPENING:
            return "missing opening proof"
        if not self.conservation_prover.verify_opening(proof, sub.output_handles[0], sub.amount):
            return "invalid opening proof"
        return self._check_ranges(sub)

    def _check_split(self, sub: Submission) -> str:
        if not sub.output_handles:
            return "split needs outputs"
        proof = sub.conservation_proof
        if proof is None or proof.kind != ConservationKind.SPLIT:
            return "missing split proof"
        if not self.conservation_prover.verify_split(proof, sub.input_handle, sub.output_handles):
            return "invalid split proof"
        return self._check_ranges(sub)

    def _check_transfer(self, sub: Submission) -> str:
        if len(sub.output_handles) != 1:
            return "transfer takes exactly one output"
        proof = sub.conservation_proof
        if proof is None or proof.kind != ConservationKind.EQUALITY:
            return "missing equality proof"
        if not self.conservation_prover.verify_equality(proof, sub.input_handle, sub.output_handles[0]):
            return "invalid equality proof"
        return ""

    def _check_withdraw(self, sub: Submission) -> str:
        if sub.output_handles:
            return "withdraw takes no outputs"
        if sub.amount is None or sub.amount <= 0:
            return "withdraw amount must be positive"
        if not sub.recipient:
            return "missing recipient"
        if self.pool.get(sub.token_id, 0) < sub.amount:
            return "insufficient pool balance"
        proof = sub.conservation_proof
        if proof is None or proof.kind != ConservationKind.OPENING:
            return "missing opening proof"
        if not self.conservation_prover.verify_opening(proof, sub.input_handle, sub.amount):
            return "invalid opening proof"
        return ""

    # -------------------------------------------------------------------------
    # Apply
    # -------------------------------------------------------------------------

    def _apply(self, sub: Submission) -> None:
        if sub.attestation is not None:
            self.used_attestation_nonces.add(sub.attestation.nonce)
        if sub.nullifier:
            self.used_nullifiers.add(sub.nullifier)
        for handle, nullifier in zip(sub.output_handles, sub.output_nullifiers):
            self.commitments[handle] = nullifier

        if sub.kind == OperationKind.DEPOSIT:
            self.pool[sub.token_id] = self.pool.get(sub.token_id, 0) + sub.amount
        elif sub.kind == OperationKind.WITHDRAW:
            self.pool[sub.token_id] -= sub.amount
            self.withdrawals.append({
                "token_id": sub.token_id,
                "amount": sub.amount,
                "recipient": sub.recipient,
            })


class HttpLedgerContract(LedgerContract):
    """
    JSON/HTTP gateway to a ledger contract.

    POST {base_url}/submissions          submission dict -> receipt dict
    GET  {base_url}/commitments/{hex}    -> {"exists": bool}
    GET  {base_url}/nullifiers/{hex}     -> {"used": bool}
    """

    def __init__(
        self,
        base_url: str,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = DEFAULT_HTTP_TIMEOUT_SEC,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = client or httpx.AsyncClient()
        self._owns_client = client is None

    @classmethod
    def from_config(
        cls,
        config: LedgerConfig,
        client: Optional[httpx.AsyncClient] = None,
    ) -> "HttpLedgerContract":
        """
        Gateway client for config.submission.contract_url.

        Raises:
            ConfigurationError: If no contract URL is configured
        """
        url = config.submission.contract_url
        if not url:
            raise ConfigurationError("submission.contract_url is not set")
        return cls(url, client=client, timeout=config.submission.http_timeout_sec)

    async def _request(self, method: str, path: str, operation: str, **kwargs) -> httpx.Response:
        try:
            return await self._client.request(
                method, f"{self.base_url}{path}", timeout=self.timeout, **kwargs
            )
        except httpx.TimeoutException:
            raise SubmissionTimeout(operation, self.timeout)
        except httpx.HTTPError as e:
            logger.warning(f"Ledger gateway {operation} failed: {e}")
            raise SubmissionRejected(operation, f"transport error: {type(e).__name__}")

    async def submit(self, submission: Submission) -> SubmissionReceipt:
        operation = submission.kind.name
        resp = await self._request("POST", "/submissions", operation, json=submission.to_dict())
        try:
            data = resp.json()
        except ValueError:
            data = None
        if isinstance(data, dict) and "accepted" in data:
            return SubmissionReceipt.from_dict(data)
        return SubmissionReceipt(accepted=False, reason=f"HTTP {resp.status_code}")

    async def commitment_exists(self, handle: bytes) -> bool:
        resp = await self._request("GET", f"/commitments/{bytes(handle).hex()}", "commitment_exists")
        if resp.status_code != 200:
            raise SubmissionRejected("commitment_exists", f"HTTP {resp.status_code}")
        return bool(resp.json().get("exists", False))

    async def nullifier_used(self, nullifier: bytes) -> bool:
        resp = await self._request("GET", f"/nullifiers/{bytes(nullifier).hex()}", "nullifier_used")
        if resp.status_code != 200:
            raise SubmissionRejected("nullifier_used", f"HTTP {resp.status_code}")
        return bool(resp.json().get("used", False))

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "HttpLedgerContract":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

"""
Veil UTXO Ledger State Machine

Per-record lifecycle: Unspent -> Spent (terminal).

Operations: deposit, split, transfer, withdraw.

Every mutating operation runs in two phases:
1. Pending: validate local state, build commitments, nullifiers and proofs.
   Nothing is mutated.
2. Confirmation: attest, submit under a timeout, and only on acceptance
   mark the input spent, insert the outputs, persist and publish events.

A failed or timed-out submission discards the pending result; the input
stays Unspent and no output exists.
"""

from __future__ import annotations
import asyncio
import contextlib
import json
import logging
import time
from typing import AsyncIterator, Callable, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from veil.core.attestation import (
    AttestationAuthority,
    AttestationVerifier,
    new_attestation_nonce,
)
from veil.core.types import (
    EventKind,
    LedgerEvent,
    LedgerStats,
    OperationKind,
    OperationResult,
    ReconcileReport,
    UTXORecord,
    utxo_id,
)
from veil.crypto.commitment import Commitment, CommitmentEngine
from veil.crypto.conservation import ConservationProver
from veil.crypto.nullifier import NullifierDeriver
from veil.crypto.rangeproof import RangeProver
from veil.errors import (
    InvalidValue,
    NullifierAlreadyUsed,
    SubmissionRejected,
    SubmissionTimeout,
    UTXOAlreadySpent,
    UTXONotFound,
    ValueConservationViolated,
    ValueOutOfRange,
)
from veil.ledger.cache import UTXOCache
from veil.ledger.contract import LedgerContract, Submission, SubmissionReceipt
from veil.node.config import LedgerConfig

logger = logging.getLogger(__name__)

EXPORT_FORMAT_VERSION = 1


class UTXOLedger:
    """
    Per-owner private UTXO ledger.

    Args:
        contract: Ledger contract boundary (authoritative)
        authority: Attestation authority
        verifier: Local attestation verifier for the authority's key; its
            freshness limits are replaced by config.submission's
        cache: Optional durable record store
        config: Ledger configuration (defaults to LedgerConfig())
        events: Optional queue receiving LedgerEvent on every confirmed change
        clock: Time source
    """

    def __init__(
        self,
        contract: LedgerContract,
        authority: AttestationAuthority,
        verifier: AttestationVerifier,
        cache: Optional[UTXOCache] = None,
        config: Optional[LedgerConfig] = None,
        events: Optional[asyncio.Queue] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config or LedgerConfig()
        self.config.require_valid()

        self.contract = contract
        self.authority = authority
        self.verifier = verifier.with_limits(
            self.config.submission.attestation_max_age_sec,
            self.config.submission.attestation_max_skew_sec,
        )
        self.cache = cache
        self.events = events
        self._clock = clock

        generators = self.config.generators()
        self.generators = generators
        self.commitments = CommitmentEngine(generators)
        self.nullifiers = NullifierDeriver(generators)
        self.range_prover = RangeProver(generators)
        self.conservation = ConservationProver(generators)
        self.range_bits = self.config.crypto.range_bits

        self._records: Dict[str, UTXORecord] = {}
        self._spent_nullifiers: Set[bytes] = set()
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}
        self._dirty_owners: Set[str] = set()

    # =========================================================================
    # Operations
    # =========================================================================

    async def deposit(
        self,
        value: int,
        token_id: str,
        owner: str,
        timeout: Optional[float] = None,
    ) -> OperationResult:
        """
        Move a public amount into a new private UTXO.

        Raises:
            InvalidValue: Bad value, token or owner
            ValueOutOfRange: Value does not fit the range proof
            AttestationInvalid, AttestationExpired, AttestationUnavailable
            SubmissionTimeout, SubmissionRejected
        """
        self._check_owner(owner)
        self._check_token(token_id)
        self._check_value(value)
        if value == 0:
            raise InvalidValue("Deposit value must be positive")

        record, commitment = self._new_output(value, owner, token_id, None, OperationKind.DEPOSIT)
        range_proof = self.range_prover.prove(commitment, self.range_bits)
        opening = self.conservation.prove_opening(commitment, value)

        submission = Submission(
            kind=OperationKind.DEPOSIT,
            token_id=token_id,
            output_handles=[record.commitment_handle],
            output_nullifiers=[record.nullifier.digest],
            range_proofs=[range_proof],
            conservation_proof=opening,
            amount=value,
        )
        receipt = await self._submit(submission, record.id, timeout)
        await self._commit(OperationKind.DEPOSIT, created=[record], spent=None)

        logger.info(f"Deposit confirmed: {record.id[:16]} ({token_id})")
        return OperationResult(
            kind=OperationKind.DEPOSIT,
            created=[record],
            revealed_amount=value,
            receipt=receipt,
        )

    async def split(
        self,
        input_id: str,
        output_values: Sequence[int],
        output_owners: Sequence[str],
        timeout: Optional[float] = None,
    ) -> OperationResult:
        """
        Consume one UTXO and create one output per (value, owner) pair.

        Raises:
            UTXONotFound, UTXOAlreadySpent, NullifierAlreadyUsed
            InvalidValue: Empty or mismatched outputs, negative value
            ValueOutOfRange: An output does not fit the range proof
            ValueConservationViolated: Outputs do not sum to the input
            SubmissionTimeout, SubmissionRejected
        """
        async with self._lock(input_id):
            record = self._spendable(input_id)

            values = list(output_values)
            owners = list(output_owners)
            if not values:
                raise InvalidValue("Split requires at least one output", {"utxo_id": input_id})
            if len(values) != len(owners):
                raise InvalidValue(
                    "Split output values and owners differ in length",
                    {"utxo_id": input_id, "values": len(values), "owners": len(owners)}
                )
            for value in values:
                self._check_value(value)
            for owner in owners:
                self._check_owner(owner)
            total = sum(values)
            if total != record.value:
                raise ValueConservationViolated(expected=record.value, actual=total, utxo_id=input_id)

            input_commitment = self._open(record)
            outputs = [
                self._new_output(value, owner, record.token_id, record.id, OperationKind.SPLIT)
                for value, owner in zip(values, owners)
            ]
            created = [r for r, _ in outputs]
            commitments = [c for _, c in outputs]

            proof = self.conservation.prove_split(input_commitment, commitments)
            range_proofs = [self.range_prover.prove(c, self.range_bits) for c in commitments]

            submission = Submission(
                kind=OperationKind.SPLIT,
                token_id=record.token_id,
                nullifier=record.nullifier.digest,
                input_handle=record.commitment_handle,
                output_handles=[r.commitment_handle for r in created],
                output_nullifiers=[r.nullifier.digest for r in created],
                range_proofs=range_proofs,
                conservation_proof=proof,
            )
            receipt = await self._submit(submission, record.id, timeout)
            await self._commit(OperationKind.SPLIT, created=created, spent=record)

        logger.info(f"Split confirmed: {record.id[:16]} -> {len(created)} outputs")
        return OperationResult(
            kind=OperationKind.SPLIT,
            created=created,
            input_id=record.id,
            spent_id=record.id,
            nullifier=record.nullifier,
            receipt=receipt,
        )

    async def transfer(
        self,
        input_id: str,
        new_owner: str,
        timeout: Optional[float] = None,
    ) -> OperationResult:
        """
        Rebind a UTXO to a new owner without changing its value.

        Raises:
            UTXONotFound, UTXOAlreadySpent, NullifierAlreadyUsed
            InvalidValue: Bad owner
            SubmissionTimeout, SubmissionRejected
        """
        async with self._lock(input_id):
            record = self._spendable(input_id)
            self._check_owner(new_owner)

            input_commitment = self._open(record)
            output, commitment = self._new_output(
                record.value, new_owner, record.token_id, record.id, OperationKind.TRANSFER
            )
            proof = self.conservation.prove_equality(input_commitment, commitment)

            submission = Submission(
                kind=OperationKind.TRANSFER,
                token_id=record.token_id,
                nullifier=record.nullifier.digest,
                input_handle=record.commitment_handle,
                output_handles=[output.commitment_handle],
                output_nullifiers=[output.nullifier.digest],
                conservation_proof=proof,
            )
            receipt = await self._submit(submission, record.id, timeout)
            await self._commit(OperationKind.TRANSFER, created=[output], spent=record)

        logger.info(f"Transfer confirmed: {record.id[:16]} -> {output.id[:16]}")
        return OperationResult(
            kind=OperationKind.TRANSFER,
            created=[output],
            input_id=record.id,
            spent_id=record.id,
            nullifier=record.nullifier,
            receipt=receipt,
        )

    async def withdraw(
        self,
        input_id: str,
        recipient: str,
        timeout: Optional[float] = None,
    ) -> OperationResult:
        """
        Spend a UTXO out of the private pool, revealing its amount.

        Raises:
            UTXONotFound, UTXOAlreadySpent, NullifierAlreadyUsed
            InvalidValue: Bad recipient or zero-valued record
            SubmissionTimeout, SubmissionRejected
        """
        async with self._lock(input_id):
            record = self._spendable(input_id)
            if not isinstance(recipient, str) or not recipient:
                raise InvalidValue("Recipient must be a non-empty string", {"utxo_id": input_id})
            if record.value == 0:
                raise InvalidValue("Nothing to withdraw from a zero-valued UTXO", {"utxo_id": input_id})

            input_commitment = self._open(record)
            proof = self.conservation.prove_opening(input_commitment, record.value)

            submission = Submission(
                kind=OperationKind.WITHDRAW,
                token_id=record.token_id,
                nullifier=record.nullifier.digest,
                input_handle=record.commitment_handle,
                conservation_proof=proof,
                amount=record.value,
                recipient=recipient,
            )
            receipt = await self._submit(submission, record.id, timeout)
            await self._commit(OperationKind.WITHDRAW, created=[], spent=record)

        logger.info(f"Withdraw confirmed: {record.id[:16]} to {recipient[:16]}")
        return OperationResult(
            kind=OperationKind.WITHDRAW,
            input_id=record.id,
            spent_id=record.id,
            revealed_amount=record.value,
            nullifier=record.nullifier,
            receipt=receipt,
        )

    # =========================================================================
    # Queries
    # =========================================================================

    def get(self, record_id: str) -> UTXORecord:
        """
        Raises:
            UTXONotFound: If no record has this id
        """
        record = self._records.get(record_id)
        if record is None:
            raise UTXONotFound(record_id)
        return record

    def records(self, owner: Optional[str] = None) -> List[UTXORecord]:
        """All records (spent included), oldest first."""
        result = [r for r in self._records.values() if owner is None or r.owner == owner]
        return sorted(result, key=lambda r: (r.created_at, r.id))

    def unspent(self, owner: str, token_id: Optional[str] = None) -> List[UTXORecord]:
        return [
            r for r in self.records(owner)
            if not r.is_spent and (token_id is None or r.token_id == token_id)
        ]

    def balance(self, owner: str, token_id: Optional[str] = None) -> int:
        return sum(r.value for r in self.unspent(owner, token_id))

    def stats(self, owner: str) -> LedgerStats:
        records = self.records(owner)
        stats = LedgerStats(total=len(records))
        for r in records:
            if r.is_spent:
                stats.spent += 1
            else:
                stats.unspent += 1
                stats.balance[r.token_id] = stats.balance.get(r.token_id, 0) + r.value
        stats.tokens = sorted({r.token_id for r in records})
        return stats

    # =========================================================================
    # Persistence / Recovery
    # =========================================================================

    async def load(self, owner: str) -> int:
        """
        Rebuild the owner's in-memory records from the cache.

        Spent is monotonic: a record spent in either copy stays spent.

        Returns:
            Number of records loaded
        """
        if self.cache is None:
            return 0
        loaded = await self.cache.load(owner)
        for record in loaded:
            self._merge(record)
        logger.info(f"Loaded {len(loaded)} records for {owner[:16]}")
        return len(loaded)

    async def reconcile(self, owner: str) -> ReconcileReport:
        """
        Compare the owner's records with the ledger contract.

        Records whose nullifier is used on chain are marked spent. Records
        whose commitment is unknown to the contract are reported as orphaned
        and kept.
        """
        report = ReconcileReport(owner=owner)
        events = []
        for record in self.records(owner):
            report.checked += 1
            # An in-flight spend of this record finishes before it is checked
            async with self._lock(record.id):
                if not record.is_spent and await self.contract.nullifier_used(record.nullifier.digest):
                    record.mark_spent(self._clock())
                    self._spent_nullifiers.add(record.nullifier.digest)
                    report.marked_spent.append(record.id)
                    events.append(self._event(EventKind.SPENT, record))
                    logger.warning(f"Reconcile: {record.id[:16]} spent on ledger, marking spent")
                if not await self.contract.commitment_exists(record.commitment_handle):
                    report.orphaned.append(record.id)
                    logger.warning(f"Reconcile: {record.id[:16]} commitment not on ledger")

        if report.marked_spent:
            await self._persist([owner])
            self._publish(events)
        return report

    def export_owner(self, owner: str) -> str:
        """JSON backup of every record of an owner (secrets included)."""
        return json.dumps({
            "version": EXPORT_FORMAT_VERSION,
            "owner": owner,
            "curve": self.config.crypto.curve,
            "exported_at": self._clock(),
            "records": [r.to_dict() for r in self.records(owner)],
        })

    async def import_owner(self, owner: str, data: str) -> int:
        """
        Restore records from export_owner() output.

        Each record is checked to open to its commitment and to carry the
        id and nullifier it would be derived with.

        Returns:
            Number of records not previously known

        Raises:
            InvalidValue: If the backup is malformed or a record fails checks
        """
        try:
            doc = json.loads(data)
            if doc.get("version") != EXPORT_FORMAT_VERSION:
                raise InvalidValue(f"Unsupported export version: {doc.get('version')}")
            if doc.get("owner") != owner:
                raise InvalidValue("Export belongs to another owner")
            if doc.get("curve", self.config.crypto.curve) != self.config.crypto.curve:
                raise InvalidValue("Export uses another curve")
            records = [UTXORecord.from_dict(item) for item in doc["records"]]
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise InvalidValue(f"Malformed export: {e}")

        for record in records:
            self._check_imported(record, owner)

        added = 0
        for record in records:
            if record.id not in self._records:
                added += 1
            self._merge(record)

        await self._persist([owner])
        logger.info(f"Imported {len(records)} records for {owner[:16]} ({added} new)")
        return added

    async def flush(self) -> None:
        """Retry persistence for owners whose last save failed."""
        await self._persist(sorted(self._dirty_owners))

    # =========================================================================
    # Internals
    # =========================================================================

    @contextlib.asynccontextmanager
    async def _lock(self, record_id: str) -> AsyncIterator[None]:
        """
        Hold the record's lock. The entry is dropped once no task holds or
        waits for it.

        Raises:
            UTXONotFound: If no record has this id
        """
        self.get(record_id)
        lock = self._locks.get(record_id)
        if lock is None:
            lock = self._locks[record_id] = asyncio.Lock()
        self._lock_users[record_id] = self._lock_users.get(record_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[record_id] -= 1
            if self._lock_users[record_id] == 0:
                del self._lock_users[record_id]
                del self._locks[record_id]

    def _spendable(self, record_id: str) -> UTXORecord:
        record = self.get(record_id)
        if record.is_spent:
            raise UTXOAlreadySpent(record_id)
        if record.nullifier.digest in self._spent_nullifiers:
            raise NullifierAlreadyUsed(record.nullifier.digest, record_id)
        return record

    def _check_value(self, value: int) -> None:
        if not isinstance(value, int) or isinstance(value, bool):
            raise InvalidValue("Value must be an integer")
        if value < 0:
            raise InvalidValue("Value must be non-negative", {"value": value})
        if value >= (1 << self.range_bits):
            raise ValueOutOfRange(self.range_bits)

    @staticmethod
    def _check_owner(owner: str) -> None:
        if not isinstance(owner, str) or not owner:
            raise InvalidValue("Owner must be a non-empty string")

    @staticmethod
    def _check_token(token_id: str) -> None:
        if not isinstance(token_id, str) or not token_id:
            raise InvalidValue("Token id must be a non-empty string")

    def _open(self, record: UTXORecord) -> Commitment:
        commitment = self.commitments.commit(record.value, record.blinding_factor)
        if commitment.handle != record.commitment_handle:
            raise InvalidValue("Record secrets do not open its commitment", {"utxo_id": record.id})
        return commitment

    def _new_output(
        self,
        value: int,
        owner: str,
        token_id: str,
        parent_id: Optional[str],
        operation: OperationKind,
    ) -> Tuple[UTXORecord, Commitment]:
        commitment = self.commitments.commit(value)
        nonce = self.nullifiers.new_nonce()
        nullifier = self.nullifiers.derive(commitment.handle, owner, nonce)
        record = UTXORecord(
            id=utxo_id(commitment.handle, owner),
            commitment_handle=commitment.handle,
            owner=owner,
            token_id=token_id,
            value=value,
            blinding_factor=commitment.blinding_factor,
            nullifier=nullifier,
            nullifier_nonce=nonce,
            operation=operation,
            parent_id=parent_id,
            created_at=self._clock(),
        )
        return record, commitment

    def _check_imported(self, record: UTXORecord, owner: str) -> None:
        if record.owner != owner:
            raise InvalidValue("Imported record belongs to another owner", {"utxo_id": record.id})
        if record.id != utxo_id(record.commitment_handle, owner):
            raise InvalidValue("Imported record id does not match", {"utxo_id": record.id})
        self._open(record)
        expected = self.nullifiers.derive(record.commitment_handle, owner, record.nullifier_nonce)
        if expected.digest != record.nullifier.digest:
            raise InvalidValue("Imported record nullifier does not match", {"utxo_id": record.id})

    def _merge(self, record: UTXORecord) -> None:
        existing = self._records.get(record.id)
        if existing is None:
            self._records[record.id] = record
            existing = record
        elif record.is_spent:
            existing.mark_spent(record.spent_at)
        if existing.is_spent:
            self._spent_nullifiers.add(existing.nullifier.digest)

    async def _submit(
        self,
        submission: Submission,
        record_id: str,
        timeout: Optional[float],
    ) -> SubmissionReceipt:
        """Attest, validate the attestation, then submit under a timeout."""
        timeout = timeout if timeout is not None else self.config.submission.timeout_sec
        operation = submission.kind.name

        data_hash = submission.data_hash()
        nonce = new_attestation_nonce()
        attestation = await self.authority.attest(submission.kind, data_hash, nonce)
        self.verifier.validate(attestation, submission.kind, data_hash, nonce)
        submission.attestation = attestation

        try:
            receipt = await asyncio.wait_for(self.contract.submit(submission), timeout)
        except asyncio.TimeoutError:
            logger.warning(f"{operation} submission for {record_id[:16]} timed out after {timeout}s")
            raise SubmissionTimeout(operation, timeout, record_id)

        if not receipt.accepted:
            logger.warning(f"{operation} for {record_id[:16]} rejected: {receipt.reason}")
            raise SubmissionRejected(operation, receipt.reason, record_id)
        return receipt

    async def _commit(
        self,
        operation: OperationKind,
        created: Iterable[UTXORecord],
        spent: Optional[UTXORecord],
    ) -> None:
        now = self._clock()
        created = list(created)
        events = []
        owners = []

        for record in created:
            record.confirmed_at = now
            self._records[record.id] = record
            events.append(self._event(EventKind.CREATED, record, operation))
            owners.append(record.owner)

        if spent is not None:
            spent.mark_spent(now)
            self._spent_nullifiers.add(spent.nullifier.digest)
            events.append(self._event(EventKind.SPENT, spent, operation))
            owners.append(spent.owner)

        await self._persist(sorted(set(owners)))
        self._publish(events)

    async def _persist(self, owners: Iterable[str]) -> None:
        if self.cache is None:
            return
        for owner in owners:
            try:
                await self.cache.save(owner, self.records(owner))
                self._dirty_owners.discard(owner)
            except Exception as e:
                # The transition is already confirmed on the ledger.
                self._dirty_owners.add(owner)
                logger.error(f"Cache save failed for {owner[:16]}: {e}")

    def _event(
        self,
        kind: EventKind,
        record: UTXORecord,
        operation: Optional[OperationKind] = None,
    ) -> LedgerEvent:
        return LedgerEvent(
            kind=kind,
            utxo_id=record.id,
            owner=record.owner,
            operation=operation if operation is not None else record.operation,
            timestamp=self._clock(),
        )

    def _publish(self, events: List[LedgerEvent]) -> None:
        if self.events is None:
            return
        for event in events:
            self.events.put_nowait(event)

"""
Veil Ledger Contract Tests
"""

import json
import secrets

import httpx
import pytest

from veil.core.types import OperationKind
from veil.ledger.contract import (
    HttpLedgerContract,
    InMemoryLedgerContract,
    Submission,
    SubmissionReceipt,
)
from veil.errors import InvalidValue, SubmissionRejected, SubmissionTimeout


# =============================================================================
# Helpers
# =============================================================================

def deposit_submission(engine, deriver, range_prover, conservation, value=100, owner="alice"):
    c = engine.commit(value)
    n = deriver.derive(c.handle, owner, deriver.new_nonce())
    sub = Submission(
        kind=OperationKind.DEPOSIT,
        token_id="T",
        output_handles=[c.handle],
        output_nullifiers=[n.digest],
        range_proofs=[range_prover.prove(c, 8)],
        conservation_proof=conservation.prove_opening(c, value),
        amount=value,
    )
    return sub, c, n


def split_submission(engine, deriver, range_prover, conservation, c_in, n_in, values, owner="alice"):
    outs = [engine.commit(v) for v in values]
    return Submission(
        kind=OperationKind.SPLIT,
        token_id="T",
        nullifier=n_in.digest,
        input_handle=c_in.handle,
        output_handles=[c.handle for c in outs],
        output_nullifiers=[deriver.derive(c.handle, owner, deriver.new_nonce()).digest for c in outs],
        range_proofs=[range_prover.prove(c, 8) for c in outs],
        conservation_proof=conservation.prove_split(c_in, outs),
    )


async def attest(authority, sub: Submission) -> Submission:
    sub.attestation = await authority.attest(sub.kind, sub.data_hash(), secrets.token_bytes(32))
    return sub


@pytest.fixture
def bare_contract(generators) -> InMemoryLedgerContract:
    """Contract that skips attestation checks."""
    return InMemoryLedgerContract(generators, range_bits=8)


# =============================================================================
# Submission
# =============================================================================

class TestSubmission:
    """Tests for submission encoding."""

    def test_data_hash_reproducible(self, engine, deriver, range_prover, conservation):
        sub, _, _ = deposit_submission(engine, deriver, range_prover, conservation)
        assert sub.data_hash() == sub.data_hash()
        assert len(sub.data_hash()) == 32

    @pytest.mark.asyncio
    async def test_data_hash_excludes_attestation(self, engine, deriver, range_prover, conservation, authority):
        sub, _, _ = deposit_submission(engine, deriver, range_prover, conservation)
        before = sub.data_hash()
        await attest(authority, sub)
        assert sub.data_hash() == before
        sub.amount = 101
        assert sub.data_hash() != before

    @pytest.mark.asyncio
    async def test_dict_round_trip(self, engine, deriver, range_prover, conservation, authority):
        sub, _, _ = deposit_submission(engine, deriver, range_prover, conservation)
        await attest(authority, sub)
        restored = Submission.from_dict(json.loads(json.dumps(sub.to_dict())))
        assert restored.data_hash() == sub.data_hash()
        assert restored.attestation == sub.attestation
        assert restored.range_proofs == sub.range_proofs

    def test_from_dict_malformed(self):
        with pytest.raises(InvalidValue):
            Submission.from_dict({"kind": "SPLIT"})
        with pytest.raises(InvalidValue):
            Submission.from_dict({"kind": "SPLIT", "token_id": "T", "nullifier": "zz"})


# =============================================================================
# In-memory contract
# =============================================================================

class TestInMemoryContract:
    """Tests for proof and nullifier checks in the in-process contract."""

    @pytest.mark.asyncio
    async def test_deposit_accepted(self, bare_contract, engine, deriver, range_prover, conservation):
        sub, c, n = deposit_submission(engine, deriver, range_prover, conservation, value=100)
        receipt = await bare_contract.submit(sub)
        assert receipt.accepted
        assert receipt.reference == sub.data_hash().hex()
        assert await bare_contract.commitment_exists(c.handle)
        assert not await bare_contract.nullifier_used(n.digest)
        assert bare_contract.pool["T"] == 100

    @pytest.mark.asyncio
    async def test_deposit_wrong_amount(self, bare_contract, engine, deriver, range_prover, conservation):
        sub, _, _ = deposit_submission(engine, deriver, range_prover, conservation, value=100)
        sub.amount = 1000
        receipt = await bare_contract.submit(sub)
        assert not receipt.accepted
        assert receipt.reason == "invalid opening proof"

    @pytest.mark.asyncio
    async def test_deposit_bad_range_proof(self, bare_contract, engine, deriver, range_prover, conservation):
        sub, _, _ = deposit_submission(engine, deriver, range_prover, conservation, value=100)
        sub.range_proofs = [range_prover.prove(engine.commit(100), 8)]
        receipt = await bare_contract.submit(sub)
        assert not receipt.accepted
        assert receipt.reason == "invalid range proof"

    @pytest.mark.asyncio
    async def test_split_and_double_spend(self, bare_contract, engine, deriver, range_prover, conservation):
        dep, c_in, n_in = deposit_submission(engine, deriver, range_prover, conservation, value=100)
        assert (await bare_contract.submit(dep)).accepted

        first = split_submission(engine, deriver, range_prover, conservation, c_in, n_in, [40, 60])
        assert (await bare_contract.submit(first)).accepted
        assert await bare_contract.nullifier_used(n_in.digest)

        second = split_submission(engine, deriver, range_prover, conservation, c_in, n_in, [50, 50])
        receipt = await bare_contract.submit(second)
        assert not receipt.accepted
        assert receipt.reason == "nullifier already used"

    @pytest.mark.asyncio
    async def test_split_wrong_nullifier(self, bare_contract, engine, deriver, range_prover, conservation):
        dep, c_in, _ = deposit_submission(engine, deriver, range_prover, conservation, value=100)
        assert (await bare_contract.submit(dep)).accepted
        other = deriver.derive(c_in.handle, "alice", deriver.new_nonce())
        sub = split_submission(engine, deriver, range_prover, conservation, c_in, other, [100])
        receipt = await bare_contract.submit(sub)
        assert not receipt.accepted
        assert receipt.reason == "nullifier does not match input commitment"

    @pytest.mark.asyncio
    async def test_split_unknown_input(self, bare_contract, engine, deriver, range_prover, conservation):
        c_in = engine.commit(100)
        n_in = deriver.derive(c_in.handle, "alice", deriver.new_nonce())
        sub = split_submission(engine, deriver, range_prover, conservation, c_in, n_in, [100])
        receipt = await bare_contract.submit(sub)
        assert not receipt.accepted
        assert receipt.reason == "unknown input commitment"

    @pytest.mark.asyncio
    async def test_withdraw(self, bare_contract, engine, deriver, range_prover, conservation):
        dep, c_in, n_in = deposit_submission(engine, deriver, range_prover, conservation, value=100)
        assert (await bare_contract.submit(dep)).accepted
        sub = Submission(
            kind=OperationKind.WITHDRAW,
            token_id="T",
            nullifier=n_in.digest,
            input_handle=c_in.handle,
            conservation_proof=conservation.prove_opening(c_in, 100),
            amount=100,
            recipient="0xabc",
        )
        assert (await bare_contract.submit(sub)).accepted
        assert bare_contract.pool["T"] == 0
        assert bare_contract.withdrawals == [{"token_id": "T", "amount": 100, "recipient": "0xabc"}]

    @pytest.mark.asyncio
    async def test_attestation_required(self, contract, engine, deriver, range_prover, conservation):
        sub, _, _ = deposit_submission(engine, deriver, range_prover, conservation)
        receipt = await contract.submit(sub)
        assert not receipt.accepted
        assert receipt.reason == "missing attestation"

    @pytest.mark.asyncio
    async def test_attested_deposit(self, contract, authority, engine, deriver, range_prover, conservation):
        sub, _, _ = deposit_submission(engine, deriver, range_prover, conservation)
        await attest(authority, sub)
        assert (await contract.submit(sub)).accepted

    @pytest.mark.asyncio
    async def test_attestation_replay(self, contract, authority, engine, deriver, range_prover, conservation):
        sub, _, _ = deposit_submission(engine, deriver, range_prover, conservation)
        await attest(authority, sub)
        assert (await contract.submit(sub)).accepted
        receipt = await contract.submit(sub)
        assert not receipt.accepted
        assert receipt.reason == "attestation nonce replayed"

    @pytest.mark.asyncio
    async def test_altered_after_attestation(self, contract, authority, engine, deriver, range_prover, conservation):
        sub, _, _ = deposit_submission(engine, deriver, range_prover, conservation)
        await attest(authority, sub)
        sub.token_id = "U"
        receipt = await contract.submit(sub)
        assert not receipt.accepted
        assert "data hash mismatch" in receipt.reason


# =============================================================================
# HTTP gateway
# =============================================================================

class TestHttpContract:
    """Tests for the JSON/HTTP ledger gateway client."""

    @pytest.mark.asyncio
    async def test_submit(self, engine, deriver, range_prover, conservation):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"accepted": True, "reference": "tx1"})

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        async with HttpLedgerContract("http://gateway", client=client) as gateway:
            sub, _, _ = deposit_submission(engine, deriver, range_prover, conservation)
            receipt = await gateway.submit(sub)
        await client.aclose()

        assert receipt == SubmissionReceipt(accepted=True, reference="tx1")
        assert seen["path"] == "/submissions"
        assert seen["body"]["kind"] == "DEPOSIT"
        assert seen["body"]["data_hash"] == sub.data_hash().hex()

    @pytest.mark.asyncio
    async def test_rejection_receipt(self, engine, deriver, range_prover, conservation):
        client = httpx.AsyncClient(transport=httpx.MockTransport(
            lambda r: httpx.Response(409, json={"accepted": False, "reason": "nullifier already used"})
        ))
        gateway = HttpLedgerContract("http://gateway", client=client)
        sub, _, _ = deposit_submission(engine, deriver, range_prover, conservation)
        receipt = await gateway.submit(sub)
        assert not receipt.accepted
        assert receipt.reason == "nullifier already used"
        await client.aclose()

    @pytest.mark.asyncio
    async def test_server_error(self, engine, deriver, range_prover, conservation):
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(502, text="bad gateway")))
        gateway = HttpLedgerContract("http://gateway", client=client)
        sub, _, _ = deposit_submission(engine, deriver, range_prover, conservation)
        receipt = await gateway.submit(sub)
        assert not receipt.accepted
        assert receipt.reason == "HTTP 502"
        await client.aclose()

    @pytest.mark.asyncio
    async def test_timeout(self, engine, deriver, range_prover, conservation):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        gateway = HttpLedgerContract("http://gateway", client=client, timeout=1.5)
        sub, _, _ = deposit_submission(engine, deriver, range_prover, conservation)
        with pytest.raises(SubmissionTimeout) as exc_info:
            await gateway.submit(sub)
        assert exc_info.value.retryable
        assert exc_info.value.details["timeout"] == 1.5
        await client.aclose()

    @pytest.mark.asyncio
    async def test_transport_error(self, engine, deriver, range_prover, conservation):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        gateway = HttpLedgerContract("http://gateway", client=client)
        sub, _, _ = deposit_submission(engine, deriver, range_prover, conservation)
        with pytest.raises(SubmissionRejected):
            await gateway.submit(sub)
        await client.aclose()

    @pytest.mark.asyncio
    async def test_queries(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.startswith("/commitments/"):
                return httpx.Response(200, json={"exists": request.url.path.endswith("aa" * 64)})
            if request.url.path.startswith("/nullifiers/"):
                return httpx.Response(200, json={"used": True})
            return httpx.Response(404)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        gateway = HttpLedgerContract("http://gateway/", client=client)
        assert await gateway.commitment_exists(b"\xaa" * 64)
        assert not await gateway.commitment_exists(b"\xbb" * 64)
        assert await gateway.nullifier_used(b"\x01" * 32)
        await client.aclose()

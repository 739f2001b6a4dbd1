"""
Veil Attestation Tests
"""

import json

import httpx
import nacl.signing
import pytest

from veil.core.attestation import (
    Attestation,
    AttestationVerifier,
    HttpAttestationAuthority,
    LocalAttestationAuthority,
    signing_message,
)
from veil.core.types import OperationKind
from veil.errors import AttestationExpired, AttestationInvalid, AttestationUnavailable

DATA_HASH = bytes(range(32))
NONCE = bytes(range(32, 64))


class TestLocalAuthority:
    """Tests for the in-process Ed25519 authority."""

    @pytest.mark.asyncio
    async def test_attest_and_validate(self, authority, verifier):
        att = await authority.attest(OperationKind.SPLIT, DATA_HASH, NONCE)
        assert len(att.signature) == 64
        verifier.validate(att, OperationKind.SPLIT, DATA_HASH, NONCE)
        assert verifier.is_valid(att, OperationKind.SPLIT, DATA_HASH, NONCE)
        assert authority.issued == 1

    @pytest.mark.asyncio
    async def test_raw_verify_key(self, authority, clock):
        att = await authority.attest(OperationKind.DEPOSIT, DATA_HASH, NONCE)
        verifier = AttestationVerifier(bytes(authority.verify_key), clock=clock)
        verifier.validate(att, OperationKind.DEPOSIT, DATA_HASH, NONCE)


class TestVerifier:
    """Tests for local attestation validation."""

    @pytest.mark.asyncio
    async def test_binding_mismatch(self, authority, verifier):
        att = await authority.attest(OperationKind.SPLIT, DATA_HASH, NONCE)
        with pytest.raises(AttestationInvalid):
            verifier.validate(att, OperationKind.TRANSFER, DATA_HASH, NONCE)
        with pytest.raises(AttestationInvalid):
            verifier.validate(att, OperationKind.SPLIT, bytes(32), NONCE)
        with pytest.raises(AttestationInvalid):
            verifier.validate(att, OperationKind.SPLIT, DATA_HASH, bytes(32))

    @pytest.mark.asyncio
    async def test_bad_signature(self, authority, verifier):
        att = await authority.attest(OperationKind.SPLIT, DATA_HASH, NONCE)
        sig = bytearray(att.signature)
        sig[0] ^= 0xFF
        forged = Attestation(att.operation, att.data_hash, att.nonce, att.timestamp, bytes(sig))
        with pytest.raises(AttestationInvalid):
            verifier.validate(forged, OperationKind.SPLIT, DATA_HASH, NONCE)
        assert not verifier.is_valid(forged, OperationKind.SPLIT, DATA_HASH, NONCE)

    @pytest.mark.asyncio
    async def test_short_signature(self, authority, verifier):
        att = await authority.attest(OperationKind.SPLIT, DATA_HASH, NONCE)
        forged = Attestation(att.operation, att.data_hash, att.nonce, att.timestamp, att.signature[:10])
        with pytest.raises(AttestationInvalid):
            verifier.validate(forged, OperationKind.SPLIT, DATA_HASH, NONCE)

    @pytest.mark.asyncio
    async def test_other_authority_key(self, clock, verifier):
        rogue = LocalAttestationAuthority(clock=clock)
        att = await rogue.attest(OperationKind.SPLIT, DATA_HASH, NONCE)
        with pytest.raises(AttestationInvalid):
            verifier.validate(att, OperationKind.SPLIT, DATA_HASH, NONCE)

    @pytest.mark.asyncio
    async def test_expired(self, authority, verifier, clock):
        att = await authority.attest(OperationKind.SPLIT, DATA_HASH, NONCE)
        clock.advance(301)
        with pytest.raises(AttestationExpired):
            verifier.validate(att, OperationKind.SPLIT, DATA_HASH, NONCE)

    @pytest.mark.asyncio
    async def test_within_age(self, authority, verifier, clock):
        att = await authority.attest(OperationKind.SPLIT, DATA_HASH, NONCE)
        clock.advance(299)
        verifier.validate(att, OperationKind.SPLIT, DATA_HASH, NONCE)

    @pytest.mark.asyncio
    async def test_future_timestamp(self, authority, verifier, clock):
        clock.advance(100)
        att = await authority.attest(OperationKind.SPLIT, DATA_HASH, NONCE)
        clock.advance(-100)
        with pytest.raises(AttestationInvalid):
            verifier.validate(att, OperationKind.SPLIT, DATA_HASH, NONCE)


class TestSerialization:
    """Tests for attestation dict encoding."""

    @pytest.mark.asyncio
    async def test_round_trip(self, authority):
        att = await authority.attest(OperationKind.WITHDRAW, DATA_HASH, NONCE)
        assert Attestation.from_dict(att.to_dict()) == att

    def test_malformed(self):
        with pytest.raises(AttestationInvalid):
            Attestation.from_dict({"operation": "SPLIT"})
        with pytest.raises(AttestationInvalid):
            Attestation.from_dict({
                "operation": "NOPE",
                "data_hash": "00",
                "nonce": "00",
                "timestamp": 0,
                "signature": "00",
            })


class TestHttpAuthority:
    """Tests for the HTTP attestation client."""

    @pytest.mark.asyncio
    async def test_attest(self, clock):
        signing_key = nacl.signing.SigningKey.generate()
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            body = json.loads(request.content)
            seen["path"] = request.url.path
            seen["body"] = body
            op = OperationKind[body["operation"]]
            data_hash = bytes.fromhex(body["data_hash"])
            nonce = bytes.fromhex(body["nonce"])
            ts = int(clock())
            sig = signing_key.sign(signing_message(op, data_hash, nonce, ts)).signature
            return httpx.Response(200, json={
                "operation": op.name,
                "data_hash": data_hash.hex(),
                "nonce": nonce.hex(),
                "timestamp": ts,
                "signature": sig.hex(),
            })

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        async with HttpAttestationAuthority("http://authority/", client=client) as remote:
            att = await remote.attest(OperationKind.SPLIT, DATA_HASH, NONCE)
        await client.aclose()

        assert seen["path"] == "/attest"
        assert seen["body"]["data_hash"] == DATA_HASH.hex()
        verifier = AttestationVerifier(signing_key.verify_key, clock=clock)
        verifier.validate(att, OperationKind.SPLIT, DATA_HASH, NONCE)

    @pytest.mark.asyncio
    async def test_http_error_status(self):
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(503)))
        remote = HttpAttestationAuthority("http://authority", client=client)
        with pytest.raises(AttestationUnavailable) as exc_info:
            await remote.attest(OperationKind.SPLIT, DATA_HASH, NONCE)
        assert exc_info.value.retryable
        await client.aclose()

    @pytest.mark.asyncio
    async def test_transport_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        remote = HttpAttestationAuthority("http://authority", client=client)
        with pytest.raises(AttestationUnavailable):
            await remote.attest(OperationKind.SPLIT, DATA_HASH, NONCE)
        await client.aclose()

    @pytest.mark.asyncio
    async def test_non_json_response(self):
        client = httpx.AsyncClient(
            transport=httpx.MockTransport(lambda r: httpx.Response(200, text="<html>"))
        )
        remote = HttpAttestationAuthority("http://authority", client=client)
        with pytest.raises(AttestationInvalid):
            await remote.attest(OperationKind.SPLIT, DATA_HASH, NONCE)
        await client.aclose()

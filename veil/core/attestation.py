"""
Veil Operation Attestations

Before a submission reaches the ledger contract, an attestation authority
signs (operation kind, data hash, nonce, timestamp) with Ed25519. The
ledger validates freshness and signature locally first, so a stale or
forged attestation never costs a network round trip to the contract.

Signed message:
    DOMAIN_ATTESTATION || kind (1) || data_hash (32) || nonce (32) || timestamp (8, big-endian)
"""

from __future__ import annotations
import logging
import secrets
import struct
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Optional, Union

import httpx
import nacl.exceptions
import nacl.signing

from veil.constants import (
    DEFAULT_ATTESTATION_MAX_AGE_SEC,
    DEFAULT_ATTESTATION_MAX_SKEW_SEC,
    DEFAULT_HTTP_TIMEOUT_SEC,
    DIGEST_SIZE,
    DOMAIN_ATTESTATION,
    ED25519_SIGNATURE_SIZE,
    NONCE_SIZE,
)
from veil.core.types import OperationKind
from veil.errors import (
    AttestationExpired,
    AttestationInvalid,
    AttestationUnavailable,
    ConfigurationError,
)

if TYPE_CHECKING:
    from veil.node.config import LedgerConfig

logger = logging.getLogger(__name__)


def new_attestation_nonce() -> bytes:
    return secrets.token_bytes(NONCE_SIZE)


@dataclass(frozen=True)
class Attestation:
    """Authority signature over one operation."""
    operation: OperationKind
    data_hash: bytes
    nonce: bytes
    timestamp: int
    signature: bytes

    def signing_message(self) -> bytes:
        return signing_message(self.operation, self.data_hash, self.nonce, self.timestamp)

    def to_dict(self) -> dict:
        return {
            "operation": self.operation.name,
            "data_hash": self.data_hash.hex(),
            "nonce": self.nonce.hex(),
            "timestamp": self.timestamp,
            "signature": self.signature.hex(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Attestation":
        """
        Raises:
            AttestationInvalid: If a field is missing or malformed
        """
        try:
            return cls(
                operation=OperationKind[data["operation"]],
                data_hash=bytes.fromhex(data["data_hash"]),
                nonce=bytes.fromhex(data["nonce"]),
                timestamp=int(data["timestamp"]),
                signature=bytes.fromhex(data["signature"]),
            )
        except (KeyError, ValueError, TypeError) as e:
            raise AttestationInvalid(f"malformed attestation ({e})")


def signing_message(operation: OperationKind, data_hash: bytes, nonce: bytes, timestamp: int) -> bytes:
    return (
        DOMAIN_ATTESTATION
        + struct.pack(">B", int(operation))
        + bytes(data_hash)
        + bytes(nonce)
        + struct.pack(">Q", timestamp)
    )


# ==============================================================================
# Authorities
# ==============================================================================

class AttestationAuthority(ABC):
    """Issues attestations for operation data hashes."""

    @abstractmethod
    async def attest(self, operation: OperationKind, data_hash: bytes, nonce: bytes) -> Attestation:
        """
        Raises:
            AttestationUnavailable: If the authority cannot be reached
        """


class LocalAttestationAuthority(AttestationAuthority):
    """In-process Ed25519 authority."""

    def __init__(
        self,
        signing_key: Optional[nacl.signing.SigningKey] = None,
        clock: Callable[[], float] = time.time,
    ):
        self._signing_key = signing_key or nacl.signing.SigningKey.generate()
        self._clock = clock
        self.issued = 0

    @property
    def verify_key(self) -> nacl.signing.VerifyKey:
        return self._signing_key.verify_key

    async def attest(self, operation: OperationKind, data_hash: bytes, nonce: bytes) -> Attestation:
        timestamp = int(self._clock())
        message = signing_message(operation, data_hash, nonce, timestamp)
        signature = self._signing_key.sign(message).signature
        self.issued += 1
        return Attestation(
            operation=operation,
            data_hash=bytes(data_hash),
            nonce=bytes(nonce),
            timestamp=timestamp,
            signature=signature,
        )


class HttpAttestationAuthority(AttestationAuthority):
    """
    Remote authority over JSON/HTTP.

    POST {base_url}/attest  {"operation", "data_hash", "nonce"} -> attestation dict
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
    ) -> "HttpAttestationAuthority":
        """
        Client for config.submission.authority_url.

        Raises:
            ConfigurationError: If no authority URL is configured
        """
        url = config.submission.authority_url
        if not url:
            raise ConfigurationError("submission.authority_url is not set")
        return cls(url, client=client, timeout=config.submission.http_timeout_sec)

    async def attest(self, operation: OperationKind, data_hash: bytes, nonce: bytes) -> Attestation:
        payload = {
            "operation": operation.name,
            "data_hash": bytes(data_hash).hex(),
            "nonce": bytes(nonce).hex(),
        }
        try:
            resp = await self._client.post(
                f"{self.base_url}/attest",
                json=payload,
                timeout=self.timeout,
            )
        except httpx.HTTPError as e:
            logger.warning(f"Attestation request failed: {e}")
            raise AttestationUnavailable(str(e) or type(e).__name__)

        if resp.status_code != 200:
            raise AttestationUnavailable(f"HTTP {resp.status_code}")

        try:
            data = resp.json()
        except ValueError:
            raise AttestationInvalid("response is not JSON")
        if not isinstance(data, dict):
            raise AttestationInvalid("response is not an object")
        return Attestation.from_dict(data)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "HttpAttestationAuthority":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()


# ==============================================================================
# Verifier
# ==============================================================================

class AttestationVerifier:
    """
    Local attestation checks run before every submission.

    Args:
        verify_key: Authority Ed25519 public key (VerifyKey or 32 raw bytes)
        max_age: Maximum attestation age in seconds
        max_skew: Tolerated clock skew for timestamps in the future
        clock: Time source
    """

    def __init__(
        self,
        verify_key: Union[nacl.signing.VerifyKey, bytes],
        max_age: float = DEFAULT_ATTESTATION_MAX_AGE_SEC,
        max_skew: float = DEFAULT_ATTESTATION_MAX_SKEW_SEC,
        clock: Callable[[], float] = time.time,
    ):
        if not isinstance(verify_key, nacl.signing.VerifyKey):
            verify_key = nacl.signing.VerifyKey(bytes(verify_key))
        self.verify_key = verify_key
        self.max_age = max_age
        self.max_skew = max_skew
        self._clock = clock

    def with_limits(self, max_age: float, max_skew: float) -> "AttestationVerifier":
        """Same key and clock, different freshness limits."""
        return AttestationVerifier(self.verify_key, max_age=max_age, max_skew=max_skew, clock=self._clock)

    def validate(
        self,
        attestation: Attestation,
        operation: OperationKind,
        data_hash: bytes,
        nonce: bytes,
    ) -> None:
        """
        Raises:
            AttestationInvalid: On binding mismatch, bad shape or bad signature
            AttestationExpired: If older than max_age
        """
        if attestation.operation != operation:
            raise AttestationInvalid("operation mismatch")
        if len(attestation.data_hash) != DIGEST_SIZE or attestation.data_hash != data_hash:
            raise AttestationInvalid("data hash mismatch")
        if len(attestation.nonce) != NONCE_SIZE or attestation.nonce != nonce:
            raise AttestationInvalid("nonce mismatch")
        if len(attestation.signature) != ED25519_SIGNATURE_SIZE:
            raise AttestationInvalid("signature has wrong length")

        now = self._clock()
        age = now - attestation.timestamp
        if age > self.max_age:
            raise AttestationExpired(age, self.max_age)
        if -age > self.max_skew:
            raise AttestationInvalid(
                "timestamp in the future",
                {"timestamp": attestation.timestamp, "now": now}
            )

        try:
            self.verify_key.verify(attestation.signing_message(), attestation.signature)
        except nacl.exceptions.BadSignatureError:
            raise AttestationInvalid("bad signature")

    def is_valid(
        self,
        attestation: Attestation,
        operation: OperationKind,
        data_hash: bytes,
        nonce: bytes,
    ) -> bool:
        try:
            self.validate(attestation, operation, data_hash, nonce)
            return True
        except (AttestationInvalid, AttestationExpired):
            return False

"""
Veil Test Fixtures
"""

import pytest

from veil.core.attestation import AttestationVerifier, LocalAttestationAuthority
from veil.crypto.commitment import CommitmentEngine
from veil.crypto.conservation import ConservationProver
from veil.crypto.curve import get_curve
from veil.crypto.generators import get_generators
from veil.crypto.nullifier import NullifierDeriver
from veil.crypto.rangeproof import RangeProver
from veil.ledger.cache import MemoryUTXOCache
from veil.ledger.contract import InMemoryLedgerContract
from veil.ledger.machine import UTXOLedger
from veil.node.config import LedgerConfig


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def curve():
    return get_curve("bn254")


@pytest.fixture
def secp_curve():
    return get_curve("secp256k1")


@pytest.fixture
def generators():
    return get_generators()


@pytest.fixture
def engine(generators) -> CommitmentEngine:
    return CommitmentEngine(generators)


@pytest.fixture
def deriver(generators) -> NullifierDeriver:
    return NullifierDeriver(generators)


@pytest.fixture
def range_prover(generators) -> RangeProver:
    return RangeProver(generators)


@pytest.fixture
def conservation(generators) -> ConservationProver:
    return ConservationProver(generators)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def authority(clock) -> LocalAttestationAuthority:
    return LocalAttestationAuthority(clock=clock)


@pytest.fixture
def verifier(authority, clock) -> AttestationVerifier:
    return AttestationVerifier(authority.verify_key, max_age=300, max_skew=30, clock=clock)


@pytest.fixture
def fast_config() -> LedgerConfig:
    """8-bit range proofs keep ledger tests quick."""
    config = LedgerConfig()
    config.crypto.range_bits = 8
    config.submission.timeout_sec = 5.0
    config.storage.persist = False
    return config


@pytest.fixture
def contract(generators, verifier) -> InMemoryLedgerContract:
    return InMemoryLedgerContract(generators, range_bits=8, attestation_verifier=verifier)


@pytest.fixture
def cache() -> MemoryUTXOCache:
    return MemoryUTXOCache()


@pytest.fixture
def ledger(contract, authority, verifier, cache, fast_config, clock) -> UTXOLedger:
    return UTXOLedger(
        contract,
        authority,
        verifier,
        cache=cache,
        config=fast_config,
        clock=clock,
    )

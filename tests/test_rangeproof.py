"""
Veil Range Proof Tests
"""

import pytest

from veil.crypto.commitment import Commitment, CommitmentEngine
from veil.crypto.generators import get_generators
from veil.crypto.proofs import ProofScheme, RangeProof
from veil.crypto.rangeproof import BulletproofPayload, RangeProver
from veil.errors import InvalidValue, ValueOutOfRange


def expected_size(bit_length: int) -> int:
    rounds = bit_length.bit_length() - 1
    return 3 + 4 * 64 + 3 * 32 + 1 + rounds * 2 * 64 + 2 * 32


class TestRangeProof8:
    """Fast tests over 8-bit ranges."""

    @pytest.mark.parametrize("value", [0, 1, 100, 255])
    def test_valid_values(self, engine, range_prover, value):
        c = engine.commit(value)
        proof = range_prover.prove(c, 8)
        assert proof.scheme == ProofScheme.BULLETPROOF_V1
        assert range_prover.verify(proof, c.handle, 8)

    def test_value_just_out_of_range(self, engine, range_prover):
        with pytest.raises(ValueOutOfRange):
            range_prover.prove(engine.commit(256), 8)

    def test_negative_value(self, engine, range_prover):
        c = engine.commit(1)
        forged = Commitment(point=c.point, value=-1, blinding_factor=c.blinding_factor)
        with pytest.raises(ValueOutOfRange):
            range_prover.prove(forged, 8)

    def test_unsupported_bit_length(self, engine, range_prover):
        with pytest.raises(InvalidValue):
            range_prover.prove(engine.commit(1), 12)

    def test_size_is_logarithmic(self, engine, range_prover):
        proof = range_prover.prove(engine.commit(7), 8)
        assert len(proof) == expected_size(8)
        assert len(proof.serialize()) == expected_size(8)

    def test_wrong_commitment(self, engine, range_prover):
        proof = range_prover.prove(engine.commit(7), 8)
        assert not range_prover.verify(proof, engine.commit(7).handle, 8)

    def test_wrong_bit_length(self, engine, range_prover):
        c = engine.commit(7)
        proof = range_prover.prove(c, 8)
        assert not range_prover.verify(proof, c.handle, 16)

    def test_serialization_round_trip(self, engine, range_prover):
        c = engine.commit(200)
        proof = range_prover.prove(c, 8)
        restored = RangeProof.deserialize(proof.serialize())
        assert restored == proof
        assert range_prover.verify(restored, c.handle, 8)

    def test_payload_decodes(self, engine, range_prover, curve):
        proof = range_prover.prove(engine.commit(9), 8)
        payload = BulletproofPayload.decode(proof.payload, curve)
        assert len(payload.L) == len(payload.R) == 3
        assert payload.encode(curve) == proof.payload

    @pytest.mark.parametrize("offset", [10, 64 * 4 + 5, 64 * 4 + 3 * 32 + 20, -5])
    def test_tampered_payload(self, engine, range_prover, offset):
        c = engine.commit(42)
        proof = range_prover.prove(c, 8)
        data = bytearray(proof.payload)
        data[offset] ^= 0x01
        tampered = RangeProof(proof.scheme, proof.bit_length, bytes(data))
        assert not range_prover.verify(tampered, c.handle, 8)

    def test_malformed_inputs_fail_closed(self, engine, range_prover):
        c = engine.commit(42)
        proof = range_prover.prove(c, 8)
        truncated = RangeProof(proof.scheme, 8, proof.payload[:-1])
        assert not range_prover.verify(truncated, c.handle, 8)
        assert not range_prover.verify(RangeProof(proof.scheme, 8, b""), c.handle, 8)
        assert not range_prover.verify(proof, b"\x00" * 10, 8)
        assert not range_prover.verify(proof, None, 8)
        assert not range_prover.verify(None, c.handle, 8)
        assert not range_prover.verify(RangeProof(proof.scheme, 12, proof.payload), c.handle, 12)

    def test_wrong_scheme_tag(self, engine, range_prover):
        c = engine.commit(42)
        proof = range_prover.prove(c, 8)
        other = RangeProof(ProofScheme.SCHNORR_EXCESS_V1, 8, proof.payload)
        assert not range_prover.verify(other, c.handle, 8)

    def test_deserialize_unknown_scheme(self):
        with pytest.raises(InvalidValue):
            RangeProof.deserialize(b"\x7f\x00\x08")
        with pytest.raises(InvalidValue):
            RangeProof.deserialize(b"\x01")

    def test_secp256k1(self):
        gens = get_generators("secp256k1")
        engine = CommitmentEngine(gens)
        prover = RangeProver(gens)
        c = engine.commit(77)
        assert prover.verify(prover.prove(c, 8), c.handle, 8)


class TestRangeProof64:
    """Boundary tests for the default 64-bit range."""

    @pytest.mark.timeout(300)
    def test_zero(self, engine, range_prover):
        c = engine.commit(0)
        proof = range_prover.prove(c, 64)
        assert range_prover.verify(proof, c.handle, 64)
        assert len(proof) == expected_size(64)

    @pytest.mark.timeout(300)
    def test_max_value(self, engine, range_prover):
        c = engine.commit(2**64 - 1)
        proof = range_prover.prove(c, 64)
        assert range_prover.verify(proof, c.handle, 64)

    def test_two_to_the_64_rejected(self, engine, range_prover):
        with pytest.raises(ValueOutOfRange):
            range_prover.prove(engine.commit(2**64), 64)

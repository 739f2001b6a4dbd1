"""
Veil Commitment Tests
"""

import pytest

from veil.crypto.commitment import Commitment
from veil.crypto.curve import CurvePoint
from veil.crypto.generators import FixedBaseTable, get_generators, hash_to_curve
from veil.errors import InvalidValue


class TestGenerators:
    """Tests for Pedersen generator derivation."""

    def test_h_on_curve_and_independent(self, generators):
        curve = generators.curve
        assert curve.is_on_curve(generators.H)
        assert generators.H != generators.G
        assert generators.H != curve.negate(generators.G)

    def test_hash_to_curve_deterministic(self, curve):
        assert hash_to_curve(curve, b"seed") == hash_to_curve(curve, b"seed")
        assert hash_to_curve(curve, b"seed") != hash_to_curve(curve, b"other")

    def test_seed_changes_h(self):
        assert get_generators(h_seed=b"alpha").H != get_generators(h_seed=b"beta").H

    def test_fixed_base_table(self, curve):
        table = FixedBaseTable(curve, curve.generator)
        for k in (0, 1, 2, 255, curve.n - 1, 2**200 + 7):
            assert table.multiply(k) == curve.scalar_multiply(curve.generator, k)

    def test_vectors_distinct(self, generators):
        gi, hi = generators.vector(8)
        assert len(gi) == len(hi) == 8
        assert len(set(gi + hi)) == 16
        assert all(generators.curve.is_on_curve(P) for P in gi + hi)

    def test_vector_copies(self, generators):
        gi, _ = generators.vector(8)
        gi.clear()
        assert len(generators.vector(8)[0]) == 8


class TestCommit:
    """Tests for commitment creation."""

    def test_commit_matches_definition(self, engine, generators):
        curve = generators.curve
        c = engine.commit(1000, 42)
        expected = curve.add(
            curve.scalar_multiply(generators.G, 1000),
            curve.scalar_multiply(generators.H, 42),
        )
        assert c.point == expected
        assert curve.is_on_curve(c.point)

    def test_handle(self, engine):
        c = engine.commit(5, 7)
        assert c.handle == engine.opening_hash(c)
        assert len(c.handle) == 64
        assert engine.point_from_handle(c.handle) == c.point

    def test_random_blinding_hides(self, engine):
        a = engine.commit(1000)
        b = engine.commit(1000)
        assert a.point != b.point

    def test_zero_value(self, engine):
        assert engine.verify(engine.commit(0, 9), 0, 9)

    def test_negative_value_rejected(self, engine):
        with pytest.raises(InvalidValue):
            engine.commit(-1)

    def test_value_at_order_rejected(self, engine, generators):
        with pytest.raises(InvalidValue):
            engine.commit(generators.order)

    def test_non_integer_rejected(self, engine):
        with pytest.raises(InvalidValue):
            engine.commit(1.5)
        with pytest.raises(InvalidValue):
            engine.commit(True)

    def test_secrets_not_in_repr(self, engine):
        c = engine.commit(123456789, 987654321)
        assert "123456789" not in repr(c)
        assert "987654321" not in repr(c)


class TestVerify:
    """Tests for commitment opening checks."""

    def test_correct_opening(self, engine):
        c = engine.commit(1000, 12345)
        assert engine.verify(c, 1000, 12345)

    def test_binding(self, engine):
        c = engine.commit(1000, 12345)
        assert not engine.verify(c, 1001, 12345)
        assert not engine.verify(c, 1000, 12346)

    def test_malformed_claims_fail_closed(self, engine):
        c = engine.commit(1000, 12345)
        assert not engine.verify(c, -5, 12345)
        assert not engine.verify(c, "1000", 12345)
        assert not engine.verify(None, 1000, 12345)

    def test_invalid_point_fails_closed(self, engine, curve):
        huge = Commitment(point=CurvePoint(2**300, 1), value=5, blinding_factor=7)
        assert not engine.verify(huge, 5, 7)
        negative = Commitment(point=CurvePoint(-1, 1), value=5, blinding_factor=7)
        assert not engine.verify(negative, 5, 7)
        off_curve = Commitment(point=CurvePoint(1, 3), value=5, blinding_factor=7)
        assert not engine.verify(off_curve, 5, 7)
        assert not curve.is_on_curve(off_curve.point)

    def test_homomorphic(self, engine):
        a = engine.commit(400, 11)
        b = engine.commit(600, 22)
        total = engine.add_points([a.point, b.point])
        assert total == engine.commit(1000, 33).point

    def test_verify_constructed_commitment(self, engine):
        c = engine.commit(77, 88)
        forged = Commitment(point=c.point, value=78, blinding_factor=88)
        assert not engine.verify(forged, 78, 88)

"""
Tests for the KK kernel.
"""

import pytest

from usad import api
from usad.config import KernelConfig
from usad.core.signature import SparseSignature
from usad.core.similarity import cosine
from usad.kernel.kk import (
    SimilarityKernel,
    agreement_cosine,
    anomaly_set,
    kk_score,
    overlap_fraction,
)

DIM = 32


def sig(mapping):
    return SparseSignature.from_mapping(mapping, DIM)


class TestAnomalySet:
    """Test selection of the query's anomaly subspace."""

    def test_largest_values_first(self):
        query = sig({1: 4.0, 2: 3.0, 3: 2.0, 4: 1.0})
        assert anomaly_set(query, 2) == (1, 2)

    def test_ties_go_to_lower_position(self):
        query = sig({7: 5.0, 2: 5.0, 3: 1.0})
        assert anomaly_set(query, 1) == (2,)

    def test_ranked_by_signed_value(self):
        """Test that strongly negative elevations rank below small positive ones."""
        query = sig({1: -10.0, 2: 3.0})
        assert anomaly_set(query, 1) == (2,)

    def test_m_larger_than_signature(self):
        assert anomaly_set(sig({1: 1.0, 5: 2.0}), 8) == (5, 1)

    def test_empty(self):
        assert anomaly_set(SparseSignature.empty(DIM), 4) == ()


class TestComponents:
    """Test overlap and agreement separately."""

    def test_partial_overlap(self):
        query = sig({1: 4.0, 2: 3.0, 3: 2.0, 4: 1.0})
        candidate = sig({1: 2.0, 7: 1.0})
        assert overlap_fraction(query, candidate, 2) == 0.5
        # restricted to {1, 2}: q = (4, 3), x = (2, 0)
        assert agreement_cosine(query, candidate, 2) == pytest.approx(0.8)

    def test_no_overlap(self):
        query = sig({1: 1.0})
        candidate = sig({2: 1.0})
        assert overlap_fraction(query, candidate, 8) == 0.0
        assert agreement_cosine(query, candidate, 8) == 0.0

    def test_empty_query(self):
        empty = SparseSignature.empty(DIM)
        assert overlap_fraction(empty, sig({1: 1.0}), 8) == 0.0
        assert agreement_cosine(empty, sig({1: 1.0}), 8) == 0.0


class TestKKScore:
    """Test the combined kernel value."""

    def test_identical_signatures(self):
        """Test that identical signatures reach the full boost."""
        s = sig({1: 3.0, 4: -1.0, 9: 2.0})
        score = kk_score(s, s)
        assert score.base == pytest.approx(1.0)
        assert score.overlap == 1.0
        assert score.agreement == pytest.approx(1.0)
        assert score.total == pytest.approx(2.0)

    def test_disjoint_signatures(self):
        score = kk_score(sig({1: 1.0, 2: 1.0}), sig({3: 1.0}))
        assert score.total == 0.0
        assert score.multiplier == 1.0

    def test_zero_base_cancels_boost(self):
        """Test that shared support with a zero dot product scores zero."""
        score = kk_score(sig({1: 1.0, 2: 1.0}), sig({1: 1.0, 2: -1.0}))
        assert score.overlap == 1.0
        assert score.base == pytest.approx(0.0, abs=1e-12)
        assert score.total == pytest.approx(0.0, abs=1e-12)

    def test_zero_weights_reduce_to_cosine(self, small_signatures):
        a, b = small_signatures
        assert kk_score(a, b, beta=0.0, gamma=0.0).total == cosine(a, b)

    def test_formula(self, small_signatures):
        a, b = small_signatures
        score = kk_score(a, b, beta=0.3, gamma=0.7, m=2)
        expected = score.base * (1.0 + 0.3 * score.overlap + 0.7 * score.agreement)
        assert score.total == pytest.approx(expected)

    def test_record(self, small_signatures):
        a, b = small_signatures
        record = kk_score(a, b).to_dict()
        assert set(record) == {"base", "overlap", "agreement", "multiplier", "total"}


class TestSimilarityKernel:
    """Test the configured kernel and the api wrapper."""

    def test_kernel_uses_config(self, small_signatures):
        a, b = small_signatures
        kernel = SimilarityKernel(KernelConfig(beta=1.0, gamma=0.0, m=1))
        assert kernel(a, b) == kk_score(a, b, beta=1.0, gamma=0.0, m=1)

    def test_api_overrides_config(self, small_signatures):
        a, b = small_signatures
        config = KernelConfig(beta=1.0, gamma=1.0, m=3)
        assert api.kk_score(a, b, beta=0.0, config=config) == kk_score(a, b, 0.0, 1.0, 3)

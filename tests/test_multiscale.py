"""
Tests for multi-scale novelty tracking.
"""

import numpy as np
import pytest

from usad.config import TrackerConfig
from usad.core.signature import SparseSignature
from usad.detection.multiscale import HistoryRing, MultiScaleAnomalyTracker, TrackerScore
from usad.errors import ConfigurationError

DIM = 256
BASE_POSITIONS = (3, 17, 40, 99, 200)
NOVEL_POSITIONS = (5, 6, 7, 8, 9)


def _regular(rng):
    values = np.array([1.0, 2.0, 3.0, 4.0, 5.0]) + rng.normal(0.0, 0.01, size=5)
    return SparseSignature(BASE_POSITIONS, tuple(values.tolist()), DIM)


def _novel():
    return SparseSignature(NOVEL_POSITIONS, (1.0, 1.0, 1.0, 1.0, 1.0), DIM)


class TestHistoryRing:
    """Test the bounded history buffer."""

    def test_evicts_oldest(self):
        ring = HistoryRing(2)
        ring.push({1: 1.0})
        ring.push({2: 1.0})
        ring.push({3: 1.0})
        assert len(ring) == 2
        assert ring.top_k_similarity({1: 1.0}, 1) == 0.0
        assert ring.top_k_similarity({3: 1.0}, 1) == pytest.approx(1.0)

    def test_empty_ring(self):
        assert HistoryRing(4).top_k_similarity({1: 1.0}, 3) == 0.0

    def test_mean_of_top_k(self):
        ring = HistoryRing(10)
        ring.push({1: 1.0})
        ring.push({1: 1.0, 2: 1.0})
        ring.push({2: 1.0})
        # similarities to {1: 1}: 1, 1/sqrt(2), 0
        assert ring.top_k_similarity({1: 1.0}, 2) == pytest.approx((1.0 + 2 ** -0.5) / 2)

    def test_invalid_capacity(self):
        with pytest.raises(ConfigurationError):
            HistoryRing(0)
        with pytest.raises(ConfigurationError):
            HistoryRing(4.5)


class TestMultiScaleAnomalyTracker:
    """Test streaming scoring across scales."""

    def test_regular_stream_then_novel_signature(self, rng):
        """Test that a disjoint signature after a steady stream scores ~1."""
        tracker = MultiScaleAnomalyTracker(scales=(8, 32, 128), knn_k=5)
        scores = [tracker.update_and_score(_regular(rng)).combined for _ in range(300)]
        final = tracker.update_and_score(_novel())

        assert final.combined == pytest.approx(1.0)
        assert all(v == pytest.approx(1.0) for v in final.per_scale.values())
        assert np.mean(scores[10:]) < 0.01
        assert final.combined > np.mean(scores[10:])

    def test_first_signature_is_novel(self):
        """Test that empty history gives maximal novelty."""
        tracker = MultiScaleAnomalyTracker(scales=(4, 16))
        result = tracker.update_and_score(_novel())
        assert result.combined == 1.0
        assert result.per_scale == {4: 1.0, 16: 1.0}

    def test_signature_not_scored_against_itself(self):
        tracker = MultiScaleAnomalyTracker(scales=(4,))
        first = tracker.update_and_score(_novel())
        second = tracker.update_and_score(_novel())
        assert first.combined == 1.0
        assert second.combined == pytest.approx(0.0, abs=1e-12)

    def test_score_does_not_record(self):
        tracker = MultiScaleAnomalyTracker(scales=(4,))
        tracker.score(_novel())
        assert tracker.count == 0
        assert len(tracker.rings[4]) == 0

    def test_short_scale_forgets_first(self, rng):
        """Test that only the long ring still remembers an old pattern."""
        tracker = MultiScaleAnomalyTracker(scales=(2, 50), knn_k=1)
        for _ in range(10):
            tracker.update_and_score(_regular(rng))
        for _ in range(5):
            tracker.update_and_score(_novel())

        result = tracker.update_and_score(_regular(rng))
        assert result.per_scale[2] == pytest.approx(1.0)
        assert result.per_scale[50] < 0.01

    def test_duplicate_scales_collapsed(self):
        tracker = MultiScaleAnomalyTracker(scales=(8, 8, 16))
        assert tracker.scales == (8, 16)
        assert set(tracker.rings) == {8, 16}

    def test_fractional_scale_rejected(self):
        with pytest.raises(ConfigurationError):
            MultiScaleAnomalyTracker(scales=(8, 2.5))

    def test_config(self):
        tracker = MultiScaleAnomalyTracker(config=TrackerConfig(scales=(3, 9), knn_k=2))
        assert tracker.scales == (3, 9)
        assert tracker.knn_k == 2

    def test_explicit_arguments_override_config(self):
        tracker = MultiScaleAnomalyTracker(knn_k=7, config=TrackerConfig(scales=(3,), knn_k=2))
        assert tracker.scales == (3,)
        assert tracker.knn_k == 7

    def test_empty_signature(self):
        tracker = MultiScaleAnomalyTracker(scales=(4,))
        tracker.update_and_score(_novel())
        result = tracker.update_and_score(SparseSignature.empty(DIM))
        assert result.combined == 1.0

    def test_reset(self, rng):
        tracker = MultiScaleAnomalyTracker(scales=(4, 8))
        tracker.score_stream(_regular(rng) for _ in range(6))
        assert tracker.count == 6
        tracker.reset()
        assert tracker.count == 0
        assert all(len(ring) == 0 for ring in tracker.rings.values())

    def test_score_record(self):
        record = TrackerScore(combined=0.5, per_scale={4: 0.25, 8: 0.75}).to_dict()
        assert record == {"combined": 0.5, "per_scale": {4: 0.25, 8: 0.75}}

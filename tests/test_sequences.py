"""
Tests for sequence transforms and sliding-window anomaly traces.
"""

import math

import numpy as np
import pytest

from usad.config import ChannelEncoderConfig, EncoderConfig, HashingConfig
from usad.core.channels import MultiChannelEncoder
from usad.core.encoder import SparseEncoder
from usad.detection.multiscale import MultiScaleAnomalyTracker
from usad.errors import ConfigurationError
from usad.sequences import (
    TracePoint,
    anomaly_trace,
    channel_anomaly_trace,
    density_normalized_gaps,
    gaps,
    normalized_gaps,
    ratios,
    riemann_counting,
    riemann_heights,
    rolling_windows,
)


class TestTransforms:
    """Test gap/ratio feature transforms."""

    def test_gaps(self):
        assert gaps([1, 4, 9, 16]).tolist() == [3.0, 5.0, 7.0]

    def test_density_normalized_gaps(self):
        # scale is sqrt(max(|a_i|, 1)): 1 for a_0 = 0, 2 for a_1 = 4
        assert density_normalized_gaps([0, 4, 9]).tolist() == [4.0, 2.5]

    def test_density_normalized_gaps_short(self):
        assert density_normalized_gaps([5]).size == 0

    def test_ratios_skip_zero_denominator(self):
        assert ratios([1, 2, 0, 5]).tolist() == [2.0, 0.0]

    def test_rolling_windows(self):
        windows = list(rolling_windows(range(5), 3))
        assert [w.tolist() for w in windows] == [[0, 1, 2], [1, 2, 3], [2, 3, 4]]

    def test_rolling_windows_step(self):
        assert len(list(rolling_windows(range(10), 4, step=3))) == 3

    def test_rolling_windows_invalid(self):
        with pytest.raises(ConfigurationError):
            list(rolling_windows(range(5), 0))


class TestRiemannHeights:
    """Test the smooth zero-height approximation."""

    def test_counting_function(self):
        assert riemann_counting(0.0) == 0.0
        t = 2.0 * math.pi * math.e
        assert riemann_counting(t) == pytest.approx(0.875)

    def test_heights_invert_counting(self):
        heights = riemann_heights(50)
        for k, h in enumerate(heights, start=1):
            assert riemann_counting(h) == pytest.approx(k, abs=1e-6)

    def test_heights_increase(self):
        assert np.all(np.diff(riemann_heights(100)) > 0)

    def test_invalid_count(self):
        with pytest.raises(ConfigurationError):
            riemann_heights(0)

    def test_normalized_gaps_unit_mean(self):
        """Test that unfolded spacings average about one."""
        spacing = normalized_gaps(riemann_heights(200))
        assert spacing.size > 0
        assert float(np.mean(spacing)) == pytest.approx(1.0, abs=0.1)

    def test_normalized_gaps_drop_non_positive(self):
        # log(1 / 2pi) < 0 makes the first spacing negative
        assert normalized_gaps([1.0, 10.0, 20.0, 30.0]).size == 2


class TestAnomalyTrace:
    """Test sliding-window traces through encoder and tracker."""

    @pytest.fixture
    def encoder(self):
        return SparseEncoder(EncoderConfig(k=4, hashing=HashingConfig(dimension=256)))

    def test_trace_length_and_indices(self, encoder, rng):
        series = rng.normal(size=44)
        tracker = MultiScaleAnomalyTracker(scales=(4, 16))
        trace = anomaly_trace(series, window=32, encoder=encoder, tracker=tracker)
        assert len(trace) == 12
        assert [p.index for p in trace] == list(range(32, 44))
        assert trace[0].score == 1.0
        assert tracker.count == 12

    def test_trace_signatures_match_encoder(self, encoder, rng):
        series = rng.normal(size=40)
        trace = anomaly_trace(series, window=32, encoder=encoder,
                              tracker=MultiScaleAnomalyTracker(scales=(4,)))
        assert trace[3].signature == encoder.encode(series[3:35])

    def test_series_too_short(self, encoder):
        with pytest.raises(ConfigurationError):
            anomaly_trace(np.zeros(33), window=32, encoder=encoder)

    def test_trace_record(self, encoder, rng):
        trace = anomaly_trace(rng.normal(size=40), window=32, encoder=encoder,
                              tracker=MultiScaleAnomalyTracker(scales=(4,)))
        point = trace[-1]
        assert isinstance(point, TracePoint)
        record = point.to_dict()
        assert record["index"] == 39
        assert set(record["per_scale"]) == {4}


class TestChannelAnomalyTrace:
    """Test traces built on the multi-channel window encoder."""

    def test_trace_uses_channel_encoder(self, rng):
        series = rng.exponential(size=40)
        trace = channel_anomaly_trace(series, window=32, scales=(4, 8), dimension=512,
                                      top_k=16, knn_k=2, salt=b"gaps")
        encoder = MultiChannelEncoder(ChannelEncoderConfig(
            dimension=512, max_positions=16, salt=b"gaps"))

        assert len(trace) == 8
        assert trace[0].score == 1.0
        assert set(trace[0].per_scale) == {4, 8}
        assert trace[2].signature == encoder.encode(series[2:34])
        assert all(p.signature.nnz <= 16 for p in trace)

    def test_repeated_window_is_familiar(self):
        """Test that a window identical to an earlier one scores 0 novelty."""
        period = np.array([0.5, 1.5, 0.8, 1.2, 2.0, 0.3, 1.1, 0.9])
        series = np.tile(period, 6)
        trace = channel_anomaly_trace(series, window=8, scales=(16,), knn_k=1)
        # the window ending at 16 repeats the one ending at 8
        assert trace[8].index == 16
        assert trace[8].score == pytest.approx(0.0, abs=1e-9)

    def test_series_too_short(self):
        with pytest.raises(ConfigurationError):
            channel_anomaly_trace(np.ones(10), window=16)

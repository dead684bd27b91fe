"""
Tests for the caller-facing entry points.
"""

import numpy as np
import pytest

from conftest import ANOMALY_INDICES
from usad import api
from usad.config import DetectorConfig, EncoderConfig, HashingConfig, TrackerConfig, UsadConfig
from usad.detection.conformal import ConformalAnomalyDetector
from usad.detection.multiscale import MultiScaleAnomalyTracker


@pytest.fixture
def engine(detector_config):
    return api.Engine(UsadConfig(detector=detector_config, tracker=TrackerConfig(scales=(4, 16))))


class TestFunctions:
    """Test module-level helpers."""

    def test_encode_is_pure(self, rng):
        vector = rng.normal(size=64)
        config = EncoderConfig(k=8, hashing=HashingConfig(dimension=512))
        assert api.encode(vector, config) == api.encode(vector.copy(), config)
        assert api.encode(vector, config).dimension == 512

    def test_create_detector(self):
        detector = api.create_detector(DetectorConfig(alpha=0.2))
        assert isinstance(detector, ConformalAnomalyDetector)
        assert detector.alpha == 0.2
        assert not detector.is_calibrated

    def test_create_tracker(self):
        tracker = api.create_tracker(TrackerConfig(scales=(2, 4), knn_k=1))
        assert isinstance(tracker, MultiScaleAnomalyTracker)
        assert tracker.scales == (2, 4)

    def test_kk_score_defaults(self, small_signatures):
        a, b = small_signatures
        score = api.kk_score(a, b)
        assert score.total == pytest.approx(
            score.base * (1.0 + 0.5 * score.overlap + 0.5 * score.agreement))


class TestEngine:
    """Test the configured engine."""

    def test_components_share_encoder(self, engine):
        assert engine.encoder is engine.detector.encoder
        assert engine.tracker.scales == (4, 16)

    def test_calibrate_and_predict(self, engine, normal_samples):
        threshold = engine.calibrate(normal_samples)
        assert threshold == engine.detector.threshold

        anomaly = np.random.default_rng(99).normal(size=128)
        anomaly[ANOMALY_INDICES] += 8.0
        result = engine.predict(anomaly)
        assert result["is_anomaly"] is True
        assert result["threshold"] == threshold

    def test_update_if_normal(self, engine, normal_samples):
        engine.calibrate(normal_samples)
        best = int(np.argmin(engine.detector.calibration_scores))
        assert engine.update_if_normal(normal_samples[best])
        assert engine.detector.pool_size == 101

    def test_track(self, engine, normal_samples):
        first = engine.track(normal_samples[0])
        second = engine.track(normal_samples[0])
        assert first["combined"] == 1.0
        assert second["combined"] == pytest.approx(0.0, abs=1e-9)
        assert set(first["per_scale"]) == {4, 16}

    def test_compare_and_kk(self, engine, normal_samples):
        a = engine.encode(normal_samples[0])
        assert engine.compare(a, a) == pytest.approx(1.0)
        assert engine.kk_score(a, a).total == pytest.approx(2.0)

    def test_default_engine_reads_environment(self, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("HOME", str(tmp_path))
        monkeypatch.delenv("USAD_CONFIG", raising=False)
        monkeypatch.setenv("USAD_KNN", "3")
        engine = api.Engine()
        assert engine.detector.knn == 3

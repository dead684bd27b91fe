"""Conformal and multi-scale anomaly detection over sparse signatures."""

from .conformal import ConformalAnomalyDetector, Prediction, conformal_quantile, knn_mean
from .multiscale import HistoryRing, MultiScaleAnomalyTracker, TrackerScore
from .diagnostics import CoverageReport, coverage_report, empirical_violation_rate

__all__ = [
    'ConformalAnomalyDetector',
    'Prediction',
    'conformal_quantile',
    'knn_mean',
    'HistoryRing',
    'MultiScaleAnomalyTracker',
    'TrackerScore',
    'CoverageReport',
    'coverage_report',
    'empirical_violation_rate',
]

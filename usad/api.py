"""
Entry points used by surrounding services.

Callers pass plain numeric vectors and read back signatures and scores;
everything returned here converts to plain records with ``to_dict()``.
"""

import logging
from typing import Any, Dict, Optional, Sequence

from .config import DetectorConfig, EncoderConfig, KernelConfig, TrackerConfig, UsadConfig
from .core.encoder import SparseEncoder
from .core.signature import SparseSignature
from .core.similarity import cosine
from .detection.conformal import ConformalAnomalyDetector
from .detection.multiscale import MultiScaleAnomalyTracker
from .kernel.kk import KKScore, kk_score as _kk_score
from .utils.logging_setup import log_operation

logger = logging.getLogger(__name__)


def encode(vector: Sequence[float], config: Optional[EncoderConfig] = None) -> SparseSignature:
    """Encode one raw vector; pure function of ``vector`` and ``config``."""
    return SparseEncoder(config).encode(vector)


def compare(sig1: SparseSignature, sig2: SparseSignature) -> float:
    """Cosine similarity of two signatures."""
    return cosine(sig1, sig2)


def kk_score(sig1: SparseSignature, sig2: SparseSignature,
             beta: Optional[float] = None, gamma: Optional[float] = None,
             m: Optional[int] = None, config: Optional[KernelConfig] = None) -> KKScore:
    """KK kernel score; explicit weights override ``config``."""
    cfg = config or KernelConfig()
    return _kk_score(sig1, sig2,
                     cfg.beta if beta is None else beta,
                     cfg.gamma if gamma is None else gamma,
                     cfg.m if m is None else m,
                     cfg.eps)


def create_detector(config: Optional[DetectorConfig] = None) -> ConformalAnomalyDetector:
    return ConformalAnomalyDetector(config or DetectorConfig())


def create_tracker(config: Optional[TrackerConfig] = None) -> MultiScaleAnomalyTracker:
    return MultiScaleAnomalyTracker(config=config or TrackerConfig())


class Engine:
    """
    One configured set of encoder, detector, tracker and kernel weights.

    Built from a ``UsadConfig`` (or ``UsadConfig.load_or_default()``), so a
    service can configure everything from one YAML file.
    """

    def __init__(self, config: Optional[UsadConfig] = None):
        self.config = config or UsadConfig.load_or_default()
        self.detector = create_detector(self.config.detector)
        self.encoder = self.detector.encoder
        self.tracker = create_tracker(self.config.tracker)

    def encode(self, vector: Sequence[float]) -> SparseSignature:
        return self.encoder.encode(vector)

    def compare(self, sig1: SparseSignature, sig2: SparseSignature) -> float:
        return compare(sig1, sig2)

    def kk_score(self, sig1: SparseSignature, sig2: SparseSignature) -> KKScore:
        return kk_score(sig1, sig2, config=self.config.kernel)

    def calibrate(self, vectors) -> float:
        encoder = self.config.encoder
        log_operation(logger, "calibrate", dimension=encoder.dimension, k=encoder.k,
                      alpha=self.config.detector.alpha, knn=self.config.detector.knn)
        return self.detector.calibrate(vectors)

    def predict(self, vector: Sequence[float]) -> Dict[str, Any]:
        return self.detector.predict(vector).to_dict()

    def update_if_normal(self, vector: Sequence[float]) -> bool:
        return self.detector.update_if_normal(vector)

    def track(self, vector: Sequence[float]) -> Dict[str, Any]:
        """Encode ``vector`` and feed it to the multi-scale tracker."""
        return self.tracker.update_and_score(self.encode(vector)).to_dict()

"""
Conformal anomaly detection over sparse signatures (USAD).

Nonconformity of a point is the mean cosine distance to its kNN nearest
calibration signatures. The threshold is the conformal quantile of the
leave-one-out calibration scores, which gives

    P(score(test) > threshold) <= alpha

for any finite calibration size, assuming only that calibration and test
points are exchangeable.

A detector instance is not thread-safe: callers sharing one across threads
must serialize ``calibrate``/``predict``/``update_if_normal``.
"""

import heapq
import logging
import math
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence

from ..config import DetectorConfig, EncoderConfig, HashingConfig
from ..core.encoder import SparseEncoder
from ..core.signature import SparseSignature
from ..core.similarity import distances_to, pairwise_distances
from ..errors import ConfigurationError, NotCalibratedError, require_open_unit

logger = logging.getLogger(__name__)


def conformal_quantile(scores: Sequence[float], alpha: float) -> float:
    """
    Finite-sample conformal threshold.

    Sorts ``scores`` and returns the element at rank
    ``clamp(ceil((n + 1) * (1 - alpha)) - 1, 0, n - 1)``.

    Args:
        scores: Calibration nonconformity scores
        alpha: Target error rate in (0, 1)

    Returns:
        The threshold score

    Raises:
        ConfigurationError: If ``alpha`` is outside (0, 1) or ``scores`` is empty
    """
    require_open_unit("alpha", alpha)
    n = len(scores)
    if n == 0:
        raise ConfigurationError("need at least one calibration score",
                                 parameter="scores", value=[])
    rank = int(math.ceil((n + 1) * (1.0 - alpha))) - 1
    rank = min(n - 1, max(0, rank))
    return float(sorted(scores)[rank])


def knn_mean(distances: Iterable[float], k: int) -> float:
    """Mean of the ``k`` smallest distances (all of them if fewer); 0.0 if none."""
    nearest = heapq.nsmallest(k, distances)
    if not nearest:
        return 0.0
    return math.fsum(nearest) / len(nearest)


@dataclass(frozen=True)
class Prediction:
    """Outcome of scoring one point against a calibrated detector."""

    is_anomaly: bool
    score: float
    threshold: float

    def to_dict(self) -> Dict[str, Any]:
        return {"is_anomaly": self.is_anomaly, "score": self.score, "threshold": self.threshold}


class ConformalAnomalyDetector:
    """
    Universal sparse anomaly detector with a conformal threshold.

    States: uncalibrated until ``calibrate`` succeeds, calibrated afterwards.
    Re-calibrating discards the previous pool and threshold.
    """

    def __init__(self, config: Optional[DetectorConfig] = None, *,
                 dim: Optional[int] = None,
                 k: Optional[int] = None,
                 alpha: Optional[float] = None,
                 knn: Optional[int] = None,
                 clip_quantile: Optional[float] = 0.95):
        """
        Initialize the detector.

        Either pass a full ``DetectorConfig`` or the individual keyword
        arguments; keywords are ignored when ``config`` is given.

        Args:
            config: Detector configuration
            dim: Signature dimension (default 4096)
            k: Features kept per signature (default 16)
            alpha: Target false-alarm rate (default 0.1)
            knn: Neighbours averaged for nonconformity (default 25)
            clip_quantile: Elevation damping quantile
        """
        if config is None:
            config = DetectorConfig(
                alpha=0.1 if alpha is None else alpha,
                knn=25 if knn is None else knn,
                encoder=EncoderConfig(
                    k=16 if k is None else k,
                    clip_quantile=clip_quantile,
                    hashing=HashingConfig(dimension=4096 if dim is None else dim),
                ),
            )
        self.config = config
        self.alpha = config.alpha
        self.knn = config.knn
        self.encoder = SparseEncoder(config.encoder)

        self._signatures: List[SparseSignature] = []
        self._scores: List[float] = []
        self._threshold: Optional[float] = None

    # --- state ---

    @property
    def is_calibrated(self) -> bool:
        return self._threshold is not None

    @property
    def threshold(self) -> float:
        if self._threshold is None:
            raise NotCalibratedError("threshold is not set; call calibrate() first",
                                     operation="threshold")
        return self._threshold

    @property
    def pool_size(self) -> int:
        return len(self._signatures)

    @property
    def calibration_scores(self) -> List[float]:
        return list(self._scores)

    @property
    def signatures(self) -> List[SparseSignature]:
        return list(self._signatures)

    # --- operations ---

    def encode(self, x) -> SparseSignature:
        return self.encoder.encode(x)

    def calibrate(self, samples: Iterable) -> float:
        """
        Rebuild the calibration pool from ``samples`` and set the threshold.

        Each pool member is scored by its leave-one-out kNN mean distance to
        the other members.

        Args:
            samples: Non-empty collection of raw vectors

        Returns:
            The new threshold

        Raises:
            ConfigurationError: If ``samples`` is empty
        """
        signatures = [self.encode(x) for x in samples]
        n = len(signatures)
        if n == 0:
            raise ConfigurationError("need at least one calibration vector",
                                     parameter="samples", value=[])

        dist = pairwise_distances(signatures)
        scores = []
        for i in range(n):
            others = (dist[i, j] for j in range(n) if j != i)
            scores.append(knn_mean(others, self.knn))

        self._signatures = signatures
        self._scores = scores
        self._threshold = conformal_quantile(scores, self.alpha)

        logger.info("Calibrated on %d samples (alpha=%.3f, knn=%d): threshold=%.6f",
                    n, self.alpha, self.knn, self._threshold)
        return self._threshold

    def _require_calibrated(self, operation: str) -> None:
        if not self.is_calibrated:
            raise NotCalibratedError(operation=operation)

    def signature_nonconformity(self, signature: SparseSignature) -> float:
        """kNN mean distance of an already-encoded signature to the pool."""
        self._require_calibrated("nonconformity")
        return knn_mean(distances_to(signature, self._signatures), self.knn)

    def nonconformity(self, x) -> float:
        """
        Mean distance from ``x`` to its kNN nearest pool members.

        ``x`` is not a pool member, so nothing is left out.
        """
        self._require_calibrated("nonconformity")
        return self.signature_nonconformity(self.encode(x))

    def predict(self, x) -> Prediction:
        """Score ``x``; it is anomalous when its score exceeds the threshold."""
        self._require_calibrated("predict")
        score = self.nonconformity(x)
        threshold = self.threshold
        return Prediction(is_anomaly=score > threshold, score=score, threshold=threshold)

    def p_value(self, x) -> float:
        """Conformal p-value ``(1 + #{s_i >= score(x)}) / (n + 1)``."""
        self._require_calibrated("p_value")
        score = self.nonconformity(x)
        greater = sum(1 for s in self._scores if s >= score)
        return (greater + 1) / (len(self._scores) + 1)

    def update_if_normal(self, x) -> bool:
        """
        Absorb ``x`` into the pool when it is not anomalous.

        The new member's score is its kNN distance to the pool before
        insertion; existing scores are not recomputed. This keeps an update
        at O(n) distance evaluations instead of a full leave-one-out rebuild.

        Returns:
            True if the point was absorbed
        """
        self._require_calibrated("update_if_normal")
        signature = self.encode(x)
        score = self.signature_nonconformity(signature)
        if score > self.threshold:
            return False

        self._signatures.append(signature)
        self._scores.append(score)
        previous = self._threshold
        self._threshold = conformal_quantile(self._scores, self.alpha)
        logger.debug("Absorbed point (score=%.6f); pool=%d threshold %.6f -> %.6f",
                     score, len(self._signatures), previous, self._threshold)
        return True

    def state(self) -> Dict[str, Any]:
        """Snapshot of the calibration pool as plain records."""
        return {
            "alpha": self.alpha,
            "knn": self.knn,
            "threshold": self._threshold,
            "scores": list(self._scores),
            "signatures": [s.to_dict() for s in self._signatures],
        }

"""
Feature transforms for integer/real sequences and sliding-window anomaly traces.

Callers hand the core plain numeric vectors; these helpers turn a raw
sequence into such vectors (gaps, ratios, windows) and run a windowed
sequence through an encoder and a multi-scale tracker.
"""

import logging
import math
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple, Union

import numpy as np

from .config import ChannelEncoderConfig, TrackerConfig
from .core.channels import MultiChannelEncoder
from .core.encoder import SparseEncoder
from .core.signature import SparseSignature
from .detection.multiscale import MultiScaleAnomalyTracker
from .errors import ConfigurationError, require_positive_int

logger = logging.getLogger(__name__)

TAU = 2.0 * math.pi


def gaps(sequence: Sequence[float]) -> np.ndarray:
    """First differences ``a[i+1] - a[i]``."""
    return np.diff(np.asarray(sequence, dtype=np.float64))


def density_normalized_gaps(sequence: Sequence[float]) -> np.ndarray:
    """Gaps scaled by local density: ``(a[i+1] - a[i]) / sqrt(max(|a[i]|, 1))``."""
    arr = np.asarray(sequence, dtype=np.float64)
    if arr.size < 2:
        return np.zeros(0, dtype=np.float64)
    return np.diff(arr) / np.sqrt(np.maximum(np.abs(arr[:-1]), 1.0))


def ratios(sequence: Sequence[float]) -> np.ndarray:
    """Consecutive ratios ``a[i+1] / a[i]``, skipping zero denominators."""
    arr = np.asarray(sequence, dtype=np.float64)
    if arr.size < 2:
        return np.zeros(0, dtype=np.float64)
    num, den = arr[1:], arr[:-1]
    mask = den != 0
    return num[mask] / den[mask]


def rolling_windows(series: Sequence[float], window: int, step: int = 1) -> Iterator[np.ndarray]:
    """Yield ``series[i - window:i]`` for ``i = window, window + step, ...``."""
    window = require_positive_int("window", window)
    step = require_positive_int("step", step)
    arr = np.asarray(series, dtype=np.float64)
    for end in range(window, arr.size + 1, step):
        yield arr[end - window:end]


# --- Riemann zero heights (smooth approximation) ---

def riemann_counting(t: float) -> float:
    """Smooth part of the zero-counting function ``N(T) ~ x log x - x + 7/8``, ``x = T/2pi``."""
    if t <= 0.0:
        return 0.0
    x = t / TAU
    return x * math.log(x) - x + 0.875


def _invert_counting(k: int, iters: int = 12) -> float:
    if k < 1:
        return 0.0
    x0 = max(2.5, k / max(1.0, math.log(max(k, 3.0))))
    t = TAU * x0
    for _ in range(iters):
        x = max(1e-9, t / TAU)
        f = x * math.log(x) - x + 0.875 - k
        df = (1.0 / TAU) * max(1e-12, math.log(x))
        t -= f / df
        if t <= 0:
            t = 1.0
    return t


def riemann_heights(count: int) -> np.ndarray:
    """Approximate heights of the first ``count`` zeros by Newton inversion of N(T) = k."""
    count = require_positive_int("count", count)
    return np.array([_invert_counting(k) for k in range(1, count + 1)], dtype=np.float64)


def normalized_gaps(heights: Sequence[float]) -> np.ndarray:
    """Unfolded spacings ``(g[i] - g[i-1]) * log(g[i-1] / 2pi) / 2pi``; non-positive values dropped."""
    g = np.asarray(heights, dtype=np.float64)
    if g.size < 2:
        return np.zeros(0, dtype=np.float64)
    with np.errstate(divide="ignore", invalid="ignore"):
        spacing = np.diff(g) * np.log(g[:-1] / TAU) / TAU
    return spacing[np.isfinite(spacing) & (spacing > 0)]


# --- traces ---

@dataclass(frozen=True)
class TracePoint:
    """Tracker output for the window ending (exclusive) at ``index``."""

    index: int
    score: float
    per_scale: Dict[int, float]
    signature: SparseSignature

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "score": self.score,
            "per_scale": dict(self.per_scale),
            "signature": self.signature.to_dict(),
        }


def anomaly_trace(series: Sequence[float], window: int = 256,
                  encoder: Optional[Union[SparseEncoder, MultiChannelEncoder]] = None,
                  tracker: Optional[MultiScaleAnomalyTracker] = None) -> List[TracePoint]:
    """
    Encode every sliding window of ``series`` and score it with a tracker.

    Args:
        series: Numeric sequence (e.g. normalized gaps)
        window: Window length
        encoder: Encoder for windows (a default ``SparseEncoder`` if None)
        tracker: Tracker receiving the window signatures (fresh default if None)

    Returns:
        One TracePoint per window, in order

    Raises:
        ConfigurationError: If the series is shorter than ``window + 2``
    """
    window = require_positive_int("window", window)
    arr = np.asarray(series, dtype=np.float64)
    if arr.size < window + 2:
        raise ConfigurationError(
            f"series too short: need at least window + 2 = {window + 2} values, got {arr.size}",
            parameter="window", value=window)

    encoder = encoder or SparseEncoder()
    tracker = tracker or MultiScaleAnomalyTracker()

    trace = []
    for end in range(window, arr.size):
        signature = encoder.encode(arr[end - window:end])
        result = tracker.update_and_score(signature)
        trace.append(TracePoint(index=end, score=result.combined,
                                per_scale=result.per_scale, signature=signature))

    logger.debug("Trace of %d windows (window=%d)", len(trace), window)
    return trace


def channel_anomaly_trace(series: Sequence[float], window: int = 256,
                          scales: Tuple[int, ...] = (64, 256, 1024),
                          dimension: int = 4096, top_k: int = 128, knn_k: int = 5,
                          salt: bytes = b"rh_sparse_demo") -> List[TracePoint]:
    """
    ``anomaly_trace`` with a ``MultiChannelEncoder`` and a fresh tracker.

    Suited to gap sequences, where a window's shape (spread, outliers and
    jumps) matters more than which individual entries stand out.
    """
    encoder = MultiChannelEncoder(ChannelEncoderConfig(
        dimension=dimension, max_positions=top_k, salt=salt))
    tracker = MultiScaleAnomalyTracker(config=TrackerConfig(scales=tuple(scales), knn_k=knn_k))
    return anomaly_trace(series, window=window, encoder=encoder, tracker=tracker)

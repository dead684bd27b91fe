"""
Median/MAD robust standardization.

The robust z-score replaces mean and standard deviation with the median and
the median absolute deviation, so a handful of extreme features cannot mask
themselves by inflating the scale estimate.
"""

import logging
from dataclasses import dataclass
from typing import Sequence, Union

import numpy as np

logger = logging.getLogger(__name__)

# Makes MAD a consistent estimator of the standard deviation under normality
MAD_SCALE = 1.4826
MAD_EPSILON = 1e-12

ArrayLike = Union[Sequence[float], np.ndarray]


def sanitize(vector: ArrayLike) -> np.ndarray:
    """
    Convert ``vector`` to a float64 array with NaN/Inf replaced by 0.

    Args:
        vector: Raw numeric vector

    Returns:
        New one-dimensional float64 array
    """
    arr = np.array(vector, dtype=np.float64).ravel()
    bad = ~np.isfinite(arr)
    if bad.any():
        logger.debug("Sanitized %d non-finite entries to 0", int(bad.sum()))
        arr[bad] = 0.0
    return arr


def median(arr: np.ndarray) -> float:
    """Median; even-length arrays average the two central order statistics."""
    if arr.size == 0:
        return 0.0
    return float(np.median(arr))


@dataclass(frozen=True)
class RobustStats:
    """Location/scale summary of one vector."""

    median: float
    mad: float
    eps: float = MAD_EPSILON

    @property
    def scale(self) -> float:
        return MAD_SCALE * (self.mad + self.eps)

    @classmethod
    def fit(cls, vector: ArrayLike, eps: float = MAD_EPSILON) -> "RobustStats":
        arr = sanitize(vector)
        med = median(arr)
        mad = median(np.abs(arr - med))
        return cls(median=med, mad=mad, eps=eps)

    def standardize(self, vector: ArrayLike) -> np.ndarray:
        """Robust z-scores of ``vector`` under this location/scale."""
        return (sanitize(vector) - self.median) / self.scale


def robust_z(vector: ArrayLike, eps: float = MAD_EPSILON) -> np.ndarray:
    """
    Robust standard scores ``(x - median) / (1.4826 * (MAD + eps))``.

    NaN/Inf entries are treated as 0. A constant vector yields all zeros.

    Args:
        vector: Raw numeric vector
        eps: Guard against a zero MAD

    Returns:
        Array of robust z-scores, same length as ``vector``
    """
    arr = sanitize(vector)
    stats = RobustStats.fit(arr, eps=eps)
    return (arr - stats.median) / stats.scale

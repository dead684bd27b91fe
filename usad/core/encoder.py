"""
Sparse signature encoder.

Pipeline for one raw vector:

1. robust z-scores (median/MAD)
2. optional elevation damping: subtract the clip-quantile of ``|z|`` and
   zero anything below it, so only clearly deviant features stay active
3. keep the top-k features by ``|elevation|``
4. hash each kept feature to a slot; on collision ask the collision policy
   for another slot, otherwise winner-take-more on the primary slot
5. emit positions in ascending order with aligned values
"""

import logging
import math
from typing import Dict, List, Optional, Sequence, Union

import numpy as np

from ..config import EncoderConfig
from .collision import CollisionPolicy, get_policy
from .hashing import DeterministicHasher
from .robust_stats import robust_z
from .signature import SparseSignature

logger = logging.getLogger(__name__)


def clip_threshold(abs_z: np.ndarray, quantile: float) -> float:
    """
    Damping threshold: the order statistic at rank ``ceil(n*q) - 1`` of ``|z|``.

    Args:
        abs_z: Absolute z-scores
        quantile: Clip quantile in (0, 1)

    Returns:
        Threshold value (0.0 for an empty array)
    """
    n = abs_z.size
    if n == 0:
        return 0.0
    rank = min(n - 1, max(0, int(math.ceil(n * quantile)) - 1))
    return float(np.sort(abs_z)[rank])


def elevations(vector: Union[Sequence[float], np.ndarray],
               clip_quantile: Optional[float] = 0.95) -> np.ndarray:
    """Signed elevations of every feature of ``vector``."""
    z = robust_z(vector)
    if clip_quantile is None or not (0.0 < clip_quantile < 1.0):
        return z
    abs_z = np.abs(z)
    q = clip_threshold(abs_z, clip_quantile)
    return np.sign(z) * np.maximum(abs_z - q, 0.0)


def top_k_indices(elev: np.ndarray, k: int) -> np.ndarray:
    """Indices of the ``k`` largest ``|elev|``; ties keep index order."""
    order = np.argsort(-np.abs(elev), kind="stable")
    return order[:k] if k < order.size else order


class SparseEncoder:
    """
    Deterministic encoder from raw vectors to ``SparseSignature``.

    The encoder holds no mutable state besides the hasher's slot memo, so a
    single instance can encode independent vectors in any order.
    """

    def __init__(self, config: Optional[EncoderConfig] = None,
                 policy: Optional[CollisionPolicy] = None):
        """
        Initialize the encoder.

        Args:
            config: Encoder configuration (defaults if None)
            policy: Collision policy overriding ``config.hashing.policy``
        """
        self.config = config or EncoderConfig()
        hashing = self.config.hashing
        self.hasher = DeterministicHasher.from_config(hashing)
        self.policy = policy or get_policy(hashing.policy, hashing.max_probes)
        self.k = self.config.effective_k()

    @property
    def dimension(self) -> int:
        return self.hasher.dimension

    def elevations(self, vector) -> np.ndarray:
        return elevations(vector, self.config.clip_quantile)

    def _wins(self, index: int, value: float, incumbent_index: int,
              incumbent_value: float) -> bool:
        """Winner-take-more: larger magnitude wins, equal magnitudes go to the tie hash."""
        mag, inc_mag = abs(value), abs(incumbent_value)
        if mag != inc_mag:
            return mag > inc_mag
        return (self.hasher.tie_break(index, value)
                > self.hasher.tie_break(incumbent_index, incumbent_value))

    def encode(self, vector) -> SparseSignature:
        """
        Encode one raw vector.

        Args:
            vector: Dense numeric vector; NaN/Inf entries are treated as 0

        Returns:
            SparseSignature with at most k positions
        """
        elev = self.elevations(vector)
        if elev.size == 0 or not np.any(elev):
            return SparseSignature.empty(self.dimension)

        # slot -> (feature index, value)
        slots: Dict[int, tuple] = {}
        dropped = 0

        for index in top_k_indices(elev, self.k).tolist():
            value = float(elev[index])
            if value == 0.0:
                continue

            primary = self.hasher.primary(index)
            if primary not in slots:
                slots[primary] = (index, value)
                continue

            alternative = self.policy.resolve(index, primary, slots, self.hasher)
            if alternative is not None:
                slots[alternative] = (index, value)
                continue

            incumbent_index, incumbent_value = slots[primary]
            if self._wins(index, value, incumbent_index, incumbent_value):
                slots[primary] = (index, value)
            dropped += 1

        if dropped:
            logger.debug("Dropped %d features to collisions (dim=%d, k=%d)",
                         dropped, self.dimension, self.k)

        positions = sorted(slots)
        return SparseSignature(tuple(positions),
                               tuple(slots[p][1] for p in positions),
                               self.dimension)

    __call__ = encode

    def encode_many(self, vectors) -> List[SparseSignature]:
        return [self.encode(v) for v in vectors]


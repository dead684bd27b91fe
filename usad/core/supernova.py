"""
Context-aware sparse encoder for numeric feature vectors.

Where ``SparseEncoder`` standardizes a vector against itself, this encoder
scores each feature against caller supplied context statistics (per-feature
mean, std, median, MAD and the previous observation). Four channels feed a
weighted elevation:

- ``|z|`` against mean/std
- ``|rel_delta|``, the change from the previous observation in std units
- ``|q|`` against median/MAD
- an anomaly flag, 1 when ``|z|`` exceeds ``anom_z_threshold``

The sum is clipped, squashed with ``tanh`` and rescaled. Optional regime tags
(named scalars such as ``{"volatility": 0.7}``) add one candidate each.
Every candidate gets a slot from a keyed hash of its index and value; a taken
slot is rehashed with a counter a bounded number of times.
"""

import logging
import math
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Sequence, Set, Tuple, Union

import numpy as np

from ..config import SupernovaConfig
from .hashing import float_bytes, keyed_digest
from .robust_stats import sanitize
from .signature import SparseSignature

logger = logging.getLogger(__name__)

ArrayLike = Union[Sequence[float], np.ndarray]

REHASH_PURPOSE = "collision_rehash"


def hash_floats(values: Sequence[float], purpose: str, salt: bytes) -> int:
    """Keyed 64-bit hash of a purpose tag followed by float64 values."""
    data = purpose.encode("utf-8") + b"".join(float_bytes(v) for v in values)
    return keyed_digest(data, salt)


@dataclass(frozen=True, eq=False)
class ContextStats:
    """
    Per-feature reference statistics for one observation.

    Any field left as None takes a neutral default when resolved: mean and
    median 0, std and MAD 1, and ``prev`` equal to the observation itself
    (so ``rel_delta`` is 0).
    """

    mean: Optional[np.ndarray] = None
    std: Optional[np.ndarray] = None
    median: Optional[np.ndarray] = None
    mad: Optional[np.ndarray] = None
    prev: Optional[np.ndarray] = None

    @classmethod
    def fit(cls, history: ArrayLike) -> "ContextStats":
        """
        Estimate statistics from past observations.

        Args:
            history: Array of shape (n, d), oldest row first

        Returns:
            ContextStats with ``prev`` set to the last row
        """
        rows = np.atleast_2d(np.asarray(history, dtype=np.float64))
        if rows.shape[0] == 0:
            raise ValueError("history must contain at least one observation")
        rows = np.where(np.isfinite(rows), rows, 0.0)
        median = np.median(rows, axis=0)
        return cls(
            mean=rows.mean(axis=0),
            std=rows.std(axis=0),
            median=median,
            mad=np.median(np.abs(rows - median), axis=0),
            prev=rows[-1].copy(),
        )

    def resolve(self, arr: np.ndarray, epsilon: float) -> Tuple[np.ndarray, ...]:
        """Return ``(mean, std, median, mad, prev)`` aligned with ``arr``."""
        n = arr.size

        def pick(name: str, default: np.ndarray) -> np.ndarray:
            value = getattr(self, name)
            if value is None:
                return default
            value = sanitize(value)
            if value.size != n:
                raise ValueError(f"context {name} has {value.size} entries, expected {n}")
            return value

        mean = pick("mean", np.zeros(n))
        std = np.maximum(pick("std", np.ones(n)), epsilon)
        median = pick("median", np.zeros(n))
        mad = np.maximum(pick("mad", np.ones(n)), epsilon)
        prev = pick("prev", arr)
        return mean, std, median, mad, prev


class SupernovaEncoder:
    """Encode one observation against its context into a ``SparseSignature``."""

    def __init__(self, config: Optional[SupernovaConfig] = None):
        self.config = config or SupernovaConfig()

    @property
    def dimension(self) -> int:
        return self.config.dimension

    def raw_elevations(self, vector: ArrayLike,
                       stats: Optional[ContextStats] = None) -> np.ndarray:
        """Weighted channel sum per feature, before shaping."""
        cfg = self.config
        arr = sanitize(vector)
        mean, std, median, mad, prev = (stats or ContextStats()).resolve(arr, cfg.epsilon)

        z = (arr - mean) / std
        rel_delta = (arr - prev) / std
        quantile = (arr - median) / mad
        flags = (np.abs(z) > cfg.anom_z_threshold).astype(np.float64)

        return (cfg.w_z * np.abs(z)
                + cfg.w_rel_delta * np.abs(rel_delta)
                + cfg.w_quantile * np.abs(quantile)
                + cfg.w_anom_flag * flags)

    def shape(self, raw: np.ndarray) -> np.ndarray:
        """Clip, squash with tanh and rescale into ``[0, scale_after_tanh)``."""
        cfg = self.config
        clipped = np.clip(raw, -cfg.clip_before_tanh, cfg.clip_before_tanh)
        return np.abs(np.tanh(clipped)) * cfg.scale_after_tanh

    def _place(self, values: List[float], purpose: str, taken: Set[int]) -> Tuple[int, bool]:
        """Slot for one candidate; the flag reports an unresolved collision."""
        cfg = self.config
        slot = hash_floats(values, purpose, cfg.salt) % cfg.dimension
        if slot not in taken:
            return slot, False
        for counter in range(1, cfg.max_rehash):
            candidate = hash_floats(values + [float(counter)], REHASH_PURPOSE, cfg.salt) % cfg.dimension
            if candidate not in taken:
                return candidate, False
        return slot, True

    def encode(self, vector: ArrayLike, stats: Optional[ContextStats] = None,
               regime_tags: Optional[Mapping[str, float]] = None) -> SparseSignature:
        """
        Encode one observation.

        Args:
            vector: Dense observation; NaN/Inf entries are treated as 0
            stats: Context statistics (neutral defaults if None)
            regime_tags: Named scalars describing the current regime

        Returns:
            SparseSignature with at most ``config.effective_k(len(vector))``
            positions and elevations rounded to 6 decimals
        """
        cfg = self.config
        arr = sanitize(vector)
        shaped = self.shape(self.raw_elevations(arr, stats))

        # (slot, elevation, tie); larger tie wins among equal elevations
        candidates: List[Tuple[int, float, int]] = []
        taken: Set[int] = set()
        unresolved = 0

        for i, (value, elevation) in enumerate(zip(arr.tolist(), shaped.tolist())):
            slot, clash = self._place([float(i), value], f"feat_{i}", taken)
            taken.add(slot)
            unresolved += clash
            candidates.append((slot, elevation, i))

        for key in sorted(regime_tags or {}):
            value = float(regime_tags[key])
            if not math.isfinite(value):
                value = 0.0
            slot, clash = self._place([value], f"regime_{key}", taken)
            taken.add(slot)
            unresolved += clash
            candidates.append((slot, abs(math.tanh(value)) * cfg.scale_after_tanh, 0))

        if unresolved:
            logger.debug("%d candidates kept a colliding slot (dim=%d)", unresolved, cfg.dimension)

        candidates.sort(key=lambda c: (-c[1], -c[2]))
        k = cfg.effective_k(arr.size)

        chosen: Dict[int, float] = {}
        for slot, elevation, _ in candidates:
            if len(chosen) >= k:
                break
            elevation = round(elevation, 6)
            # a colliding slot keeps the first (highest) candidate
            if elevation <= 0.0 or slot in chosen:
                continue
            chosen[slot] = elevation

        return SparseSignature.from_mapping(chosen, cfg.dimension)

    __call__ = encode

    def encode_stream(self, observations: ArrayLike, warmup: int = 1,
                      regime_tags: Optional[Sequence[Mapping[str, float]]] = None
                      ) -> List[SparseSignature]:
        """
        Encode each row against statistics of all earlier rows.

        The first ``warmup`` rows only seed the history and are not encoded.
        """
        rows = np.atleast_2d(np.asarray(observations, dtype=np.float64))
        if warmup < 1:
            raise ValueError(f"warmup must be at least 1, got {warmup}")
        signatures = []
        for t in range(warmup, rows.shape[0]):
            tags = regime_tags[t] if regime_tags is not None else None
            signatures.append(self.encode(rows[t], ContextStats.fit(rows[:t]), tags))
        return signatures

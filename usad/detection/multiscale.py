"""
Multi-scale novelty tracking over a stream of signatures.

One bounded history ring per scale. Each incoming signature is scored
against every ring (1 - mean of its top-k cosine similarities) and only then
pushed, so a signature never contributes to its own score. Short rings react
to local disturbances that a long ring averages away.
"""

import heapq
import logging
from collections import deque
from dataclasses import dataclass
from typing import Any, Deque, Dict, Iterable, List, Mapping, Optional, Sequence

from ..config import TrackerConfig
from ..core.signature import SparseSignature
from ..core.similarity import mapping_cosine
from ..errors import require_positive_int

logger = logging.getLogger(__name__)


class HistoryRing:
    """FIFO of ``position -> value`` mappings bounded at ``capacity``."""

    __slots__ = ("capacity", "buffer")

    def __init__(self, capacity: int):
        self.capacity = require_positive_int("capacity", capacity)
        self.buffer: Deque[Dict[int, float]] = deque(maxlen=self.capacity)

    def __len__(self) -> int:
        return len(self.buffer)

    def push(self, mapping: Dict[int, float]) -> None:
        """Append, evicting the oldest entry when full."""
        self.buffer.append(mapping)

    def top_k_similarity(self, query: Mapping[int, float], k: int) -> float:
        """Mean of the ``k`` largest cosine similarities to ``query``; 0.0 when empty."""
        if not self.buffer:
            return 0.0
        sims = heapq.nlargest(k, (mapping_cosine(query, entry) for entry in self.buffer))
        return sum(sims) / len(sims)

    def clear(self) -> None:
        self.buffer.clear()


@dataclass(frozen=True)
class TrackerScore:
    """Combined and per-scale novelty of one signature."""

    combined: float
    per_scale: Dict[int, float]

    def to_dict(self) -> Dict[str, Any]:
        return {"combined": self.combined, "per_scale": dict(self.per_scale)}


class MultiScaleAnomalyTracker:
    """
    Streaming novelty scorer with one history ring per scale.

    Not thread-safe: ``update_and_score`` scores then mutates, and concurrent
    calls on one instance must be serialized by the caller.
    """

    def __init__(self, scales: Optional[Sequence[int]] = None, knn_k: Optional[int] = None,
                 config: Optional[TrackerConfig] = None):
        """
        Initialize the tracker.

        Args:
            scales: Ring capacities, e.g. (64, 256, 1024)
            knn_k: Number of most-similar history entries averaged per ring
            config: Tracker configuration; explicit arguments override it
        """
        config = config or TrackerConfig()
        if scales is not None or knn_k is not None:
            config = TrackerConfig(
                scales=tuple(scales) if scales is not None else config.scales,
                knn_k=knn_k if knn_k is not None else config.knn_k,
            )
        self.config = config
        self.knn_k = config.knn_k
        # duplicate scales would be scored twice into the combined mean
        self.scales = tuple(dict.fromkeys(config.scales))
        self.rings: Dict[int, HistoryRing] = {s: HistoryRing(s) for s in self.scales}
        self.count = 0

    @staticmethod
    def to_mapping(signature: SparseSignature) -> Dict[int, float]:
        return signature.to_mapping()

    def score(self, signature: SparseSignature) -> TrackerScore:
        """Score without recording the signature in history."""
        query = self.to_mapping(signature)
        per_scale = {
            scale: 1.0 - ring.top_k_similarity(query, self.knn_k)
            for scale, ring in self.rings.items()
        }
        combined = sum(per_scale.values()) / len(per_scale)
        return TrackerScore(combined=combined, per_scale=per_scale)

    def update_and_score(self, signature: SparseSignature) -> TrackerScore:
        """Score ``signature`` against history, then push it onto every ring."""
        result = self.score(signature)
        query = self.to_mapping(signature)
        for ring in self.rings.values():
            ring.push(query)
        self.count += 1
        return result

    def score_stream(self, signatures: Iterable[SparseSignature]) -> List[TrackerScore]:
        return [self.update_and_score(sig) for sig in signatures]

    def reset(self) -> None:
        """Empty every ring."""
        for ring in self.rings.values():
            ring.clear()
        self.count = 0
        logger.debug("Tracker reset (scales=%s)", self.scales)

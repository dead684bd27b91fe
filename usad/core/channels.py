"""
Multi-channel window encoder for numeric sequences.

A window of a sequence (typically normalized gaps) is described by three
channels, each squashed into ``[0, 1)`` with ``tanh(|.|)``:

- ``z``: deviation from the window mean in std units
- ``q``: deviation from the window median in mean-absolute-deviation units
- ``dz``: first difference in std units, scaled by ``dz_weight``

Every nonzero channel entry is hashed on ``(channel, index, value)`` to a
bucket. Entries sharing a bucket merge by max, and the ``max_positions``
largest buckets form the signature.
"""

import logging
from typing import Dict, Optional, Sequence, Union

import numpy as np

from ..config import ChannelEncoderConfig
from .hashing import keyed_digest
from .robust_stats import sanitize
from .signature import SparseSignature

logger = logging.getLogger(__name__)

CHANNELS = ("z", "q", "dz")


def channel_values(window: Union[Sequence[float], np.ndarray], dz_weight: float = 0.8,
                   epsilon: float = 1e-9) -> Dict[str, np.ndarray]:
    """
    Per-channel elevations of one window.

    The median is the upper middle order statistic and the dispersion for
    ``q`` is the mean absolute deviation from it.
    """
    arr = sanitize(window)
    if arr.size == 0:
        return {tag: np.zeros(0) for tag in CHANNELS}

    std = float(arr.std()) + epsilon
    med = float(np.sort(arr)[arr.size // 2])
    mad = float(np.mean(np.abs(arr - med))) + epsilon
    dz = np.concatenate((arr[:1], np.diff(arr)))

    return {
        "z": np.tanh(np.abs((arr - arr.mean()) / std)),
        "q": np.tanh(np.abs((arr - med) / mad)),
        "dz": np.tanh(np.abs(dz / std)) * dz_weight,
    }


class MultiChannelEncoder:
    """Encode sequence windows into ``SparseSignature`` via merged channel buckets."""

    def __init__(self, config: Optional[ChannelEncoderConfig] = None):
        self.config = config or ChannelEncoderConfig()

    @property
    def dimension(self) -> int:
        return self.config.dimension

    def position(self, index: int, tag: str, value: float) -> int:
        """Bucket of one channel entry; the value takes part at 6 decimals."""
        key = f"{tag}|{index}|{value:.6f}".encode("ascii")
        return keyed_digest(key, self.config.salt) % self.config.dimension

    def encode(self, window) -> SparseSignature:
        """
        Encode one window.

        Returns:
            SparseSignature with at most ``max_positions`` positions; empty
            for an empty or all-zero window
        """
        cfg = self.config
        buckets: Dict[int, float] = {}
        for tag, values in channel_values(window, cfg.dz_weight, cfg.epsilon).items():
            for i, v in enumerate(values.tolist()):
                if v <= 0.0:
                    continue
                slot = self.position(i, tag, v)
                if v > buckets.get(slot, 0.0):
                    buckets[slot] = v

        if len(buckets) > cfg.max_positions:
            # stable sort: equal values keep first-seen order
            kept = sorted(buckets.items(), key=lambda item: -item[1])[:cfg.max_positions]
            logger.debug("Kept %d of %d buckets", cfg.max_positions, len(buckets))
            buckets = dict(kept)

        return SparseSignature.from_mapping(buckets, cfg.dimension)

    __call__ = encode

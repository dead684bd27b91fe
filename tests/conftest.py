"""
Shared fixtures for the usad test suite.
"""

import numpy as np
import pytest

from usad.config import DetectorConfig, EncoderConfig, HashingConfig
from usad.core.signature import SparseSignature

# Features that carry a shared "normal" pattern in the synthetic data set
TEMPLATE_INDICES = [10, 20, 30, 40, 60, 70, 80, 100, 110, 125]
ANOMALY_INDICES = [3, 17, 51, 90, 117]


@pytest.fixture
def rng():
    return np.random.default_rng(1234)


@pytest.fixture
def normal_samples():
    """100 length-128 vectors: unit Gaussian noise plus a fixed template bump."""
    gen = np.random.default_rng(7)
    samples = gen.normal(0.0, 1.0, size=(100, 128))
    samples[:, TEMPLATE_INDICES] += 5.0
    return samples


@pytest.fixture
def detector_config():
    return DetectorConfig(
        alpha=0.1,
        knn=25,
        encoder=EncoderConfig(k=16, clip_quantile=0.95, hashing=HashingConfig(dimension=4096)),
    )


@pytest.fixture
def small_signatures():
    a = SparseSignature((1, 4, 9), (1.0, 2.0, 3.0), 16)
    b = SparseSignature((4, 9, 12), (2.0, -1.0, 5.0), 16)
    return a, b

"""usad - deterministic sparse signatures and conformal anomaly detection."""

__version__ = "0.1.0"

from .config import (
    ChannelEncoderConfig,
    DetectorConfig,
    EncoderConfig,
    HashingConfig,
    KernelConfig,
    SupernovaConfig,
    TrackerConfig,
    UsadConfig,
)
from .errors import ConfigurationError, NotCalibratedError, UsadError
from .core.channels import MultiChannelEncoder
from .core.encoder import SparseEncoder
from .core.supernova import ContextStats, SupernovaEncoder
from .core.signature import SparseSignature
from .core.similarity import cosine, distance
from .detection.conformal import ConformalAnomalyDetector, Prediction, conformal_quantile
from .detection.multiscale import MultiScaleAnomalyTracker, TrackerScore
from .kernel.kk import KKScore, SimilarityKernel
from .api import Engine, compare, encode, kk_score

__all__ = [
    "__version__",
    # configuration
    "UsadConfig",
    "HashingConfig",
    "EncoderConfig",
    "DetectorConfig",
    "TrackerConfig",
    "KernelConfig",
    "SupernovaConfig",
    "ChannelEncoderConfig",
    # errors
    "UsadError",
    "ConfigurationError",
    "NotCalibratedError",
    # core
    "SparseSignature",
    "SparseEncoder",
    "SupernovaEncoder",
    "ContextStats",
    "MultiChannelEncoder",
    "cosine",
    "distance",
    # detection
    "ConformalAnomalyDetector",
    "Prediction",
    "conformal_quantile",
    "MultiScaleAnomalyTracker",
    "TrackerScore",
    # kernel
    "SimilarityKernel",
    "KKScore",
    # facade
    "Engine",
    "encode",
    "compare",
    "kk_score",
]

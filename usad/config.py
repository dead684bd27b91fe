"""
Configuration system for sparse signature encoding and anomaly detection.

This module defines the configuration structures threaded through the
encoder, the conformal detector, the multi-scale tracker and the KK kernel.
Salts are explicit configuration values; there is no process-wide hashing
state.
"""

import math
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import yaml

from .errors import ConfigurationError, require_open_unit, require_positive_int

DEFAULT_SALT1 = b"USAD_salt_1"
DEFAULT_SALT2 = b"USAD_salt_2"
DEFAULT_TIE_SALT = b"USAD_tie"

COLLISION_POLICIES = ("double_hash", "coprime_probe", "rehash", "none")

# blake2b accepts keys of at most 64 bytes
MAX_SALT_BYTES = 64

# salts that are not clean UTF-8 are serialized as hex behind this prefix
HEX_SALT_PREFIX = "hex:"


def _as_salt(name: str, value: Union[str, bytes, bytearray]) -> bytes:
    if isinstance(value, str):
        if value.startswith(HEX_SALT_PREFIX):
            try:
                value = bytes.fromhex(value[len(HEX_SALT_PREFIX):])
            except ValueError as e:
                raise ConfigurationError(f"{name} is not valid hex: {e}",
                                         parameter=name, value=value) from e
        else:
            value = value.encode("utf-8")
    if not isinstance(value, (bytes, bytearray)):
        raise ConfigurationError(f"{name} must be bytes or str, got {type(value).__name__}",
                                 parameter=name, value=value)
    value = bytes(value)
    if not 0 < len(value) <= MAX_SALT_BYTES:
        raise ConfigurationError(
            f"{name} must be 1..{MAX_SALT_BYTES} bytes, got {len(value)}",
            parameter=name, value=value)
    return value


def _salt_text(value: bytes) -> str:
    """Text form of a salt that reads back to the same bytes through ``_as_salt``."""
    try:
        text = value.decode("utf-8")
    except UnicodeDecodeError:
        text = None
    if text is None or text.startswith(HEX_SALT_PREFIX):
        return HEX_SALT_PREFIX + value.hex()
    return text


@dataclass
class HashingConfig:
    """
    Keyed hashing parameters for bucket placement.

    ``salt1`` gives the primary slot, ``salt2`` the fallback slot of the
    double-hash policy, and ``tie_salt`` keys the value hash used to break
    equal-magnitude collisions.
    """

    dimension: int = 4096
    salt1: bytes = DEFAULT_SALT1
    salt2: bytes = DEFAULT_SALT2
    tie_salt: bytes = DEFAULT_TIE_SALT
    policy: str = "double_hash"
    max_probes: int = 16

    def __post_init__(self):
        self.dimension = require_positive_int("dimension", self.dimension)
        self.salt1 = _as_salt("salt1", self.salt1)
        self.salt2 = _as_salt("salt2", self.salt2)
        self.tie_salt = _as_salt("tie_salt", self.tie_salt)
        if self.policy not in COLLISION_POLICIES:
            raise ConfigurationError(
                f"policy must be one of {', '.join(COLLISION_POLICIES)}, got {self.policy!r}",
                parameter="policy", value=self.policy)
        self.max_probes = require_positive_int("max_probes", self.max_probes)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "dimension": self.dimension,
            "salt1": _salt_text(self.salt1),
            "salt2": _salt_text(self.salt2),
            "tie_salt": _salt_text(self.tie_salt),
            "policy": self.policy,
            "max_probes": self.max_probes,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "HashingConfig":
        """Create from dictionary representation."""
        return cls(
            dimension=data.get("dimension", 4096),
            salt1=data.get("salt1", DEFAULT_SALT1),
            salt2=data.get("salt2", DEFAULT_SALT2),
            tie_salt=data.get("tie_salt", DEFAULT_TIE_SALT),
            policy=data.get("policy", "double_hash"),
            max_probes=data.get("max_probes", 16),
        )


@dataclass
class EncoderConfig:
    """
    Parameters for sparse signature encoding.

    ``clip_quantile`` enables elevation damping when it lies in (0, 1); any
    other value (including None) disables it. ``density_window`` optionally
    bounds k to a fraction range of the dimension.
    """

    k: int = 16
    clip_quantile: Optional[float] = 0.95
    density_window: Optional[Tuple[float, float]] = None
    hashing: HashingConfig = field(default_factory=HashingConfig)

    def __post_init__(self):
        self.k = require_positive_int("k", self.k)
        if self.density_window is not None:
            if len(self.density_window) != 2:
                raise ConfigurationError("density_window must be a (min, max) pair",
                                         parameter="density_window", value=self.density_window)
            d_min, d_max = (float(v) for v in self.density_window)
            if not (0.0 <= d_min <= d_max <= 1.0):
                raise ConfigurationError(
                    f"density_window must satisfy 0 <= min <= max <= 1, got {self.density_window}",
                    parameter="density_window", value=self.density_window)
            self.density_window = (d_min, d_max)

    @property
    def dimension(self) -> int:
        return self.hashing.dimension

    @property
    def damping_enabled(self) -> bool:
        q = self.clip_quantile
        return q is not None and 0.0 < q < 1.0

    def effective_k(self) -> int:
        """Return k after applying the density window, if any."""
        if self.density_window is None:
            return self.k
        d_min, d_max = self.density_window
        dim = self.hashing.dimension
        k_min = max(1, int(math.floor(dim * d_min)))
        k_max = max(1, int(math.ceil(dim * d_max)))
        return max(k_min, min(self.k, k_max))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "k": self.k,
            "clip_quantile": self.clip_quantile,
            "density_window": list(self.density_window) if self.density_window else None,
            "hashing": self.hashing.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EncoderConfig":
        """Create from dictionary representation."""
        window = data.get("density_window")
        return cls(
            k=data.get("k", 16),
            clip_quantile=data.get("clip_quantile", 0.95),
            density_window=tuple(window) if window else None,
            hashing=HashingConfig.from_dict(data.get("hashing") or {}),
        )


@dataclass
class DetectorConfig:
    """Parameters for the conformal anomaly detector."""

    alpha: float = 0.1
    knn: int = 25
    encoder: EncoderConfig = field(default_factory=EncoderConfig)

    def __post_init__(self):
        require_open_unit("alpha", self.alpha)
        self.knn = require_positive_int("knn", self.knn)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {"alpha": self.alpha, "knn": self.knn, "encoder": self.encoder.to_dict()}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DetectorConfig":
        """Create from dictionary representation."""
        return cls(
            alpha=data.get("alpha", 0.1),
            knn=data.get("knn", 25),
            encoder=EncoderConfig.from_dict(data.get("encoder") or {}),
        )


@dataclass
class TrackerConfig:
    """History ring capacities (one per scale) and neighbour count."""

    scales: Tuple[int, ...] = (64, 256, 1024)
    knn_k: int = 5

    def __post_init__(self):
        self.scales = tuple(self.scales)
        if not self.scales:
            raise ConfigurationError("at least one scale is required",
                                     parameter="scales", value=self.scales)
        self.scales = tuple(require_positive_int("scales", scale) for scale in self.scales)
        self.knn_k = require_positive_int("knn_k", self.knn_k)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {"scales": list(self.scales), "knn_k": self.knn_k}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TrackerConfig":
        """Create from dictionary representation."""
        return cls(
            scales=tuple(data.get("scales", (64, 256, 1024))),
            knn_k=data.get("knn_k", 5),
        )


@dataclass
class SupernovaConfig:
    """
    Parameters for the context-aware feature encoder.

    Elevations are a weighted sum of four channels computed against caller
    supplied context statistics, then squashed through ``tanh`` and rescaled.
    ``density_window`` together with ``max_positions`` bounds the number of
    emitted positions.
    """

    dimension: int = 2048
    max_positions: int = 64
    density_window: Tuple[float, float] = (0.01, 0.08)
    salt: bytes = b"supernova_data_v1"
    w_z: float = 1.0
    w_rel_delta: float = 0.8
    w_quantile: float = 0.6
    w_anom_flag: float = 0.7
    anom_z_threshold: float = 2.2
    epsilon: float = 1e-9
    clip_before_tanh: float = 6.0
    scale_after_tanh: float = 4.0
    max_rehash: int = 16

    def __post_init__(self):
        self.dimension = require_positive_int("dimension", self.dimension)
        self.max_positions = require_positive_int("max_positions", self.max_positions)
        self.max_rehash = require_positive_int("max_rehash", self.max_rehash)
        if len(self.density_window) != 2:
            raise ConfigurationError("density_window must be a (min, max) pair",
                                     parameter="density_window", value=self.density_window)
        d_min, d_max = (float(v) for v in self.density_window)
        if not (0.0 <= d_min <= d_max <= 1.0):
            raise ConfigurationError(
                f"density_window must satisfy 0 <= min <= max <= 1, got {self.density_window}",
                parameter="density_window", value=self.density_window)
        self.density_window = (d_min, d_max)
        self.salt = _as_salt("salt", self.salt)
        for name in ("epsilon", "clip_before_tanh", "scale_after_tanh"):
            value = getattr(self, name)
            if not value > 0:
                raise ConfigurationError(f"{name} must be positive, got {value!r}",
                                         parameter=name, value=value)

    def effective_k(self, n_features: int) -> int:
        """Positions emitted for ``n_features`` inputs: ``min(k_max, max_positions, n)``, at least 1."""
        d_max = self.density_window[1]
        k_max = int(math.ceil(self.dimension * min(d_max, self.max_positions / self.dimension)))
        return max(1, min(k_max, self.max_positions, n_features))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "dimension": self.dimension,
            "max_positions": self.max_positions,
            "density_window": list(self.density_window),
            "salt": _salt_text(self.salt),
            "w_z": self.w_z,
            "w_rel_delta": self.w_rel_delta,
            "w_quantile": self.w_quantile,
            "w_anom_flag": self.w_anom_flag,
            "anom_z_threshold": self.anom_z_threshold,
            "epsilon": self.epsilon,
            "clip_before_tanh": self.clip_before_tanh,
            "scale_after_tanh": self.scale_after_tanh,
            "max_rehash": self.max_rehash,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SupernovaConfig":
        """Create from dictionary representation."""
        data = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        if "density_window" in data:
            data["density_window"] = tuple(data["density_window"])
        return cls(**data)


@dataclass
class ChannelEncoderConfig:
    """
    Parameters for the multi-channel window encoder.

    Each window contributes ``z``, ``q`` and ``dz`` channels; ``dz_weight``
    scales the first-difference channel before the per-bucket max merge.
    """

    dimension: int = 4096
    max_positions: int = 128
    salt: bytes = b"rh_sparse"
    dz_weight: float = 0.8
    epsilon: float = 1e-9

    def __post_init__(self):
        self.dimension = require_positive_int("dimension", self.dimension)
        self.max_positions = require_positive_int("max_positions", self.max_positions)
        self.salt = _as_salt("salt", self.salt)
        if not self.dz_weight > 0:
            raise ConfigurationError(f"dz_weight must be positive, got {self.dz_weight!r}",
                                     parameter="dz_weight", value=self.dz_weight)
        if not self.epsilon > 0:
            raise ConfigurationError(f"epsilon must be positive, got {self.epsilon!r}",
                                     parameter="epsilon", value=self.epsilon)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "dimension": self.dimension,
            "max_positions": self.max_positions,
            "salt": _salt_text(self.salt),
            "dz_weight": self.dz_weight,
            "epsilon": self.epsilon,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChannelEncoderConfig":
        """Create from dictionary representation."""
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})


@dataclass
class KernelConfig:
    """Weights of the KK kernel boost and anomaly subspace size."""

    beta: float = 0.5
    gamma: float = 0.5
    m: int = 8
    eps: float = 1e-12

    def __post_init__(self):
        self.m = require_positive_int("m", self.m)
        if self.eps <= 0:
            raise ConfigurationError(f"eps must be positive, got {self.eps}",
                                     parameter="eps", value=self.eps)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {"beta": self.beta, "gamma": self.gamma, "m": self.m, "eps": self.eps}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "KernelConfig":
        """Create from dictionary representation."""
        return cls(
            beta=data.get("beta", 0.5),
            gamma=data.get("gamma", 0.5),
            m=data.get("m", 8),
            eps=data.get("eps", 1e-12),
        )


@dataclass
class UsadConfig:
    """Top-level configuration aggregating every component."""

    detector: DetectorConfig = field(default_factory=DetectorConfig)
    tracker: TrackerConfig = field(default_factory=TrackerConfig)
    kernel: KernelConfig = field(default_factory=KernelConfig)

    @property
    def encoder(self) -> EncoderConfig:
        return self.detector.encoder

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "detector": self.detector.to_dict(),
            "tracker": self.tracker.to_dict(),
            "kernel": self.kernel.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UsadConfig":
        """Create from dictionary representation."""
        return cls(
            detector=DetectorConfig.from_dict(data.get("detector") or {}),
            tracker=TrackerConfig.from_dict(data.get("tracker") or {}),
            kernel=KernelConfig.from_dict(data.get("kernel") or {}),
        )

    def save_to_file(self, file_path: Union[str, Path]) -> None:
        """Save configuration to YAML file."""
        file_path = Path(file_path)
        file_path.parent.mkdir(parents=True, exist_ok=True)

        with open(file_path, "w") as f:
            yaml.dump(self.to_dict(), f, default_flow_style=False, sort_keys=False)

    @classmethod
    def load_from_file(cls, file_path: Union[str, Path]) -> "UsadConfig":
        """Load configuration from YAML file."""
        file_path = Path(file_path)

        if not file_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {file_path}")

        with open(file_path, "r") as f:
            data = yaml.safe_load(f)

        return cls.from_dict(data or {})

    @classmethod
    def get_default_config_path(cls) -> Path:
        """Get the default configuration file path."""
        current_dir_config = Path(".usad.yml")
        if current_dir_config.exists():
            return current_dir_config
        return Path.home() / ".usad.yml"

    @classmethod
    def load_or_default(cls, config_path: Optional[Union[str, Path]] = None) -> "UsadConfig":
        """
        Load configuration from file or return default if not found.

        ``USAD_CONFIG`` takes precedence over the default locations, and
        ``USAD_*`` parameter overrides are applied last.

        Args:
            config_path: Optional path to configuration file

        Returns:
            UsadConfig instance
        """
        if config_path is None:
            env_path = os.getenv("USAD_CONFIG")
            config_path = Path(env_path) if env_path else cls.get_default_config_path()

        config_path = Path(config_path)
        config = cls.load_from_file(config_path) if config_path.exists() else cls()
        return apply_environment_overrides(config)


# env var -> (dotted key in UsadConfig.to_dict(), type)
ENV_OVERRIDES: Dict[str, Tuple[str, type]] = {
    "USAD_DIMENSION": ("detector.encoder.hashing.dimension", int),
    "USAD_K": ("detector.encoder.k", int),
    "USAD_CLIP_QUANTILE": ("detector.encoder.clip_quantile", float),
    "USAD_ALPHA": ("detector.alpha", float),
    "USAD_KNN": ("detector.knn", int),
    "USAD_KNN_K": ("tracker.knn_k", int),
    "USAD_BETA": ("kernel.beta", float),
    "USAD_GAMMA": ("kernel.gamma", float),
    "USAD_M": ("kernel.m", int),
}


def get_environment_overrides() -> Dict[str, Union[int, float]]:
    """Collect ``USAD_*`` overrides from the environment."""
    overrides = {}
    for env_var, (config_key, config_type) in ENV_OVERRIDES.items():
        env_value = os.getenv(env_var)
        if env_value is None:
            continue
        try:
            overrides[config_key] = config_type(env_value)
        except ValueError as e:
            raise ConfigurationError(
                f"Invalid environment variable {env_var}={env_value}: {e}",
                parameter=env_var, value=env_value) from e
    return overrides


def apply_environment_overrides(config: UsadConfig) -> UsadConfig:
    """Return a copy of ``config`` with environment overrides applied."""
    overrides = get_environment_overrides()
    if not overrides:
        return config

    config_dict = config.to_dict()
    for key, value in overrides.items():
        parts = key.split(".")
        current = config_dict
        for part in parts[:-1]:
            current = current.setdefault(part, {})
        current[parts[-1]] = value

    return UsadConfig.from_dict(config_dict)


def validate_config(config: UsadConfig) -> List[str]:
    """Return advisory warnings for a configuration that is valid but unusual."""
    issues = []
    encoder = config.encoder
    dim = encoder.dimension

    if encoder.effective_k() > dim:
        issues.append(f"k={encoder.effective_k()} exceeds dimension={dim}; collisions are certain")
    elif encoder.effective_k() * 8 > dim:
        issues.append("k is more than 1/8 of the dimension; expect frequent collisions")

    if config.detector.knn > 100:
        issues.append("knn > 100 makes every score a near-global average")

    if config.kernel.m > encoder.effective_k():
        issues.append("kernel m exceeds encoder k; the anomaly subspace is the whole signature")

    if encoder.hashing.salt1 == encoder.hashing.salt2:
        issues.append("salt1 == salt2; the double-hash fallback always hits the same slot")

    return issues

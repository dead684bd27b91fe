"""
Sparse signature core: robust standardization, keyed hashing, encoding and
merge-join similarity.
"""

from .robust_stats import RobustStats, robust_z, sanitize
from .hashing import DeterministicHasher, hash_index, hash_value, position
from .signature import SparseSignature
from .collision import (
    CollisionPolicy,
    CoprimeProbePolicy,
    DoubleHashPolicy,
    NoFallbackPolicy,
    RehashPolicy,
    get_policy,
)
from .encoder import SparseEncoder, elevations
from .supernova import ContextStats, SupernovaEncoder
from .channels import MultiChannelEncoder, channel_values
from .similarity import cosine, distance, mapping_cosine

__all__ = [
    'RobustStats',
    'robust_z',
    'sanitize',
    'DeterministicHasher',
    'hash_index',
    'hash_value',
    'position',
    'SparseSignature',
    'CollisionPolicy',
    'NoFallbackPolicy',
    'DoubleHashPolicy',
    'CoprimeProbePolicy',
    'RehashPolicy',
    'get_policy',
    'SparseEncoder',
    'elevations',
    'ContextStats',
    'SupernovaEncoder',
    'MultiChannelEncoder',
    'channel_values',
    'cosine',
    'distance',
    'mapping_cosine',
]

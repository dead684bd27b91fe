"""
Keyed deterministic hashing of feature indices into a fixed dimension.

Byte layout (fixed so that independent implementations agree):

- index input: 8-byte little-endian unsigned integer
- value input: IEEE-754 float64, little-endian
- digest: standard keyed BLAKE2b (RFC 7693, via hashlib) with a 16-byte
  output; the first 8 bytes read little-endian form the 64-bit hash

The hash only spreads features uniformly over buckets; it is not used for
authentication.
"""

import hashlib
import math
import struct
from typing import Dict, Iterator, Tuple

from ..config import DEFAULT_SALT1, DEFAULT_SALT2, DEFAULT_TIE_SALT, HashingConfig
from ..errors import ConfigurationError

DIGEST_SIZE = 16
UINT64_MASK = 0xFFFFFFFFFFFFFFFF

_FLOAT64_LE = struct.Struct("<d")


def index_bytes(i: int) -> bytes:
    """8-byte little-endian encoding of a feature index."""
    if i < 0:
        raise ConfigurationError(f"feature index must be non-negative, got {i}",
                                 parameter="index", value=i)
    return (i & UINT64_MASK).to_bytes(8, "little")


def float_bytes(value: float) -> bytes:
    """IEEE-754 little-endian float64 bytes. -0.0 is folded into 0.0."""
    value = float(value)
    if value == 0.0:
        value = 0.0
    return _FLOAT64_LE.pack(value)


def keyed_digest(data: bytes, salt: bytes) -> int:
    """Low 64 bits (little-endian) of the 128-bit keyed blake2b digest."""
    digest = hashlib.blake2b(data, digest_size=DIGEST_SIZE, key=salt).digest()
    return int.from_bytes(digest[:8], "little")


def hash_index(i: int, salt: bytes) -> int:
    """Keyed 64-bit hash of a feature index."""
    return keyed_digest(index_bytes(i), salt)


def hash_value(i: int, value: float, salt: bytes) -> int:
    """Keyed 64-bit hash of a ``(index, value)`` pair."""
    return keyed_digest(index_bytes(i) + float_bytes(value), salt)


def position(i: int, dim: int, salt: bytes) -> int:
    """Bucket of feature ``i`` in ``[0, dim)``."""
    if dim <= 0:
        raise ConfigurationError(f"dimension must be positive, got {dim}",
                                 parameter="dimension", value=dim)
    return hash_index(i, salt) % dim


class DeterministicHasher:
    """
    Bucket placement and tie-breaking for one hashing configuration.

    Primary and secondary slots are memoized per index; the hashes are pure
    functions of ``(salt, index)`` so the cache never changes results.
    """

    __slots__ = ("dimension", "salt1", "salt2", "tie_salt", "_cache")

    def __init__(self, dimension: int = 4096,
                 salt1: bytes = DEFAULT_SALT1,
                 salt2: bytes = DEFAULT_SALT2,
                 tie_salt: bytes = DEFAULT_TIE_SALT) -> None:
        if dimension <= 0:
            raise ConfigurationError(f"dimension must be positive, got {dimension}",
                                     parameter="dimension", value=dimension)
        self.dimension = int(dimension)
        self.salt1 = bytes(salt1)
        self.salt2 = bytes(salt2)
        self.tie_salt = bytes(tie_salt)
        self._cache: Dict[int, Tuple[int, int]] = {}

    @classmethod
    def from_config(cls, config: HashingConfig) -> "DeterministicHasher":
        return cls(config.dimension, config.salt1, config.salt2, config.tie_salt)

    def _slots(self, i: int) -> Tuple[int, int]:
        slots = self._cache.get(i)
        if slots is None:
            slots = (position(i, self.dimension, self.salt1),
                     position(i, self.dimension, self.salt2))
            self._cache[i] = slots
        return slots

    def primary(self, i: int) -> int:
        return self._slots(i)[0]

    def secondary(self, i: int) -> int:
        return self._slots(i)[1]

    def tie_break(self, i: int, value: float) -> int:
        """Auxiliary hash deciding equal-magnitude collisions."""
        return hash_value(i, value, self.tie_salt)

    def rehash(self, i: int, counter: int) -> int:
        """Slot for the ``counter``-th rehash attempt of feature ``i``."""
        data = index_bytes(i) + index_bytes(counter)
        return keyed_digest(data, self.tie_salt) % self.dimension

    def coprime_step(self, i: int) -> int:
        """Probe stride in ``[1, dim)`` that is coprime to the dimension."""
        if self.dimension == 1:
            return 1
        step = 1 + hash_index(i, self.salt2) % (self.dimension - 1)
        while math.gcd(step, self.dimension) != 1:
            step = step % (self.dimension - 1) + 1
        return step

    def probe_sequence(self, i: int, count: int) -> Iterator[int]:
        """Linear probe slots after the primary one, stepping by ``coprime_step``."""
        start = self.primary(i)
        step = self.coprime_step(i)
        for j in range(1, count + 1):
            yield (start + j * step) % self.dimension

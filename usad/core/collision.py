"""
Pluggable collision policies for sparse encoding.

When a feature's primary slot is already claimed, a policy proposes an
alternative free slot. If it cannot find one the encoder falls back to
winner-take-more on the primary slot, so every policy keeps the same
signature invariants.
"""

from abc import ABC, abstractmethod
from typing import Container, Dict, Optional, Type

from ..errors import ConfigurationError
from .hashing import DeterministicHasher


class CollisionPolicy(ABC):
    """Strategy for finding a free slot after a primary-slot collision."""

    name: str = "abstract"

    def __init__(self, max_probes: int = 16):
        self.max_probes = max_probes

    @abstractmethod
    def resolve(self, index: int, primary: int, occupied: Container[int],
                hasher: DeterministicHasher) -> Optional[int]:
        """
        Return a free slot for feature ``index`` or None.

        Args:
            index: Original feature index
            primary: The feature's (occupied) primary slot
            occupied: Slots already claimed
            hasher: Hasher bound to the encoding dimension and salts
        """

    def __repr__(self) -> str:
        return f"{type(self).__name__}(max_probes={self.max_probes})"


class NoFallbackPolicy(CollisionPolicy):
    """Go straight to winner-take-more on the primary slot."""

    name = "none"

    def resolve(self, index, primary, occupied, hasher):
        return None


class DoubleHashPolicy(CollisionPolicy):
    """Try the slot given by the second salt."""

    name = "double_hash"

    def resolve(self, index, primary, occupied, hasher):
        secondary = hasher.secondary(index)
        if secondary not in occupied:
            return secondary
        return None


class CoprimeProbePolicy(CollisionPolicy):
    """Linear probing with a per-feature stride coprime to the dimension."""

    name = "coprime_probe"

    def resolve(self, index, primary, occupied, hasher):
        for slot in hasher.probe_sequence(index, self.max_probes):
            if slot not in occupied:
                return slot
        return None


class RehashPolicy(CollisionPolicy):
    """Bounded rehash of ``(index, counter)`` for counter in ``1..max_probes-1``."""

    name = "rehash"

    def resolve(self, index, primary, occupied, hasher):
        for counter in range(1, self.max_probes):
            slot = hasher.rehash(index, counter)
            if slot not in occupied:
                return slot
        return None


_POLICIES: Dict[str, Type[CollisionPolicy]] = {
    cls.name: cls
    for cls in (NoFallbackPolicy, DoubleHashPolicy, CoprimeProbePolicy, RehashPolicy)
}


def get_policy(name: str, max_probes: int = 16) -> CollisionPolicy:
    """Instantiate the collision policy registered under ``name``."""
    try:
        return _POLICIES[name](max_probes=max_probes)
    except KeyError:
        raise ConfigurationError(
            f"unknown collision policy {name!r}; choose from {sorted(_POLICIES)}",
            parameter="policy", value=name) from None

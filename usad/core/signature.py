"""
Sparse signature: a fixed-dimension vector stored as its nonzero positions.
"""

import math
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Mapping, Tuple

import numpy as np

from ..errors import ConfigurationError


def l2_norm(values: Iterable[float]) -> float:
    return math.sqrt(math.fsum(v * v for v in values))


@dataclass(frozen=True)
class SparseSignature:
    """
    Immutable sparse vector with strictly ascending positions.

    Attributes:
        positions: Strictly ascending bucket indices in ``[0, dimension)``
        values: Elevations aligned with ``positions``
        dimension: Size of the dense space
        norm: L2 norm of ``values`` (derived, never passed in)
    """

    positions: Tuple[int, ...]
    values: Tuple[float, ...]
    dimension: int
    norm: float = field(init=False, compare=False)

    def __post_init__(self):
        positions = tuple(int(p) for p in self.positions)
        values = tuple(float(v) for v in self.values)

        if self.dimension <= 0:
            raise ConfigurationError(f"dimension must be positive, got {self.dimension}",
                                     parameter="dimension", value=self.dimension)
        if len(positions) != len(values):
            raise ValueError(
                f"positions and values differ in length ({len(positions)} != {len(values)})")
        for prev, cur in zip(positions, positions[1:]):
            if cur <= prev:
                raise ValueError("positions must be strictly ascending")
        if positions and (positions[0] < 0 or positions[-1] >= self.dimension):
            raise ValueError(f"positions must lie in [0, {self.dimension})")

        object.__setattr__(self, "positions", positions)
        object.__setattr__(self, "values", values)
        object.__setattr__(self, "dimension", int(self.dimension))
        object.__setattr__(self, "norm", l2_norm(values))

    @classmethod
    def empty(cls, dimension: int) -> "SparseSignature":
        return cls((), (), dimension)

    @classmethod
    def from_mapping(cls, mapping: Mapping[int, float], dimension: int) -> "SparseSignature":
        """Build from an unordered ``position -> value`` mapping."""
        items = sorted(mapping.items())
        return cls(tuple(p for p, _ in items), tuple(v for _, v in items), dimension)

    @property
    def nnz(self) -> int:
        return len(self.positions)

    @property
    def sparsity(self) -> float:
        """Fraction of the dimension that is occupied."""
        return len(self.positions) / self.dimension

    def __len__(self) -> int:
        return len(self.positions)

    def __bool__(self) -> bool:
        return bool(self.positions)

    def to_mapping(self) -> Dict[int, float]:
        return dict(zip(self.positions, self.values))

    def to_dense(self) -> np.ndarray:
        dense = np.zeros(self.dimension, dtype=np.float64)
        if self.positions:
            dense[list(self.positions)] = self.values
        return dense

    def scaled(self, factor: float) -> "SparseSignature":
        """New signature with every value multiplied by ``factor``."""
        return SparseSignature(self.positions, tuple(v * factor for v in self.values),
                               self.dimension)

    def to_dict(self) -> Dict[str, Any]:
        """Plain record for callers that serialize signatures."""
        return {
            "positions": list(self.positions),
            "values": list(self.values),
            "dimension": self.dimension,
            "norm": self.norm,
            "sparsity": self.sparsity,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SparseSignature":
        """Inverse of ``to_dict``; derived fields are recomputed."""
        return cls(tuple(data["positions"]), tuple(data["values"]), data["dimension"])

"""
Cosine similarity between sparse signatures.

Both position arrays are ascending, so the dot product is a single linear
merge: advance the smaller cursor until the positions meet.
"""

import math
from typing import List, Mapping, Sequence

import numpy as np

from .signature import SparseSignature

EPS = 1e-12


def sparse_dot(a: SparseSignature, b: SparseSignature) -> float:
    """Dot product over matching positions, O(|a| + |b|)."""
    pa, va = a.positions, a.values
    pb, vb = b.positions, b.values
    i = j = 0
    dot = 0.0
    while i < len(pa) and j < len(pb):
        if pa[i] == pb[j]:
            dot += va[i] * vb[j]
            i += 1
            j += 1
        elif pa[i] < pb[j]:
            i += 1
        else:
            j += 1
    return dot


def cosine(a: SparseSignature, b: SparseSignature, eps: float = EPS) -> float:
    """
    Cosine similarity ``dot / ((|a| + eps) * (|b| + eps))``.

    Returns 0.0 when either signature has zero norm.
    """
    if a.norm == 0.0 or b.norm == 0.0:
        return 0.0
    return sparse_dot(a, b) / ((a.norm + eps) * (b.norm + eps))


def distance(a: SparseSignature, b: SparseSignature, eps: float = EPS) -> float:
    """Cosine distance ``1 - cosine``, in [0, 2]."""
    return 1.0 - cosine(a, b, eps)


def mapping_cosine(a: Mapping[int, float], b: Mapping[int, float]) -> float:
    """Cosine between two ``position -> value`` mappings; 0.0 if either is empty."""
    if not a or not b:
        return 0.0
    if len(b) < len(a):
        a, b = b, a
    dot = math.fsum(v * b[p] for p, v in a.items() if p in b)
    na = math.sqrt(math.fsum(v * v for v in a.values()))
    nb = math.sqrt(math.fsum(v * v for v in b.values()))
    if na == 0.0 or nb == 0.0:
        return 0.0
    return dot / (na * nb)


def distances_to(query: SparseSignature, pool: Sequence[SparseSignature]) -> List[float]:
    """Distance from ``query`` to every member of ``pool``, in pool order."""
    return [distance(query, member) for member in pool]


def pairwise_distances(pool: Sequence[SparseSignature]) -> np.ndarray:
    """Symmetric distance matrix of ``pool`` with a zero diagonal."""
    n = len(pool)
    out = np.zeros((n, n), dtype=np.float64)
    for i in range(n):
        for j in range(i + 1, n):
            d = distance(pool[i], pool[j])
            out[i, j] = d
            out[j, i] = d
    return out

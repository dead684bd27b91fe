"""
KK kernel: cosine similarity boosted by agreement on the query's anomaly subspace.

    total = base * (1 + beta * overlap + gamma * agreement)

where ``base`` is the sparse cosine, ``overlap`` the fraction of the query's
top-M elevation positions present in the candidate, and ``agreement`` the
cosine restricted to those positions.
"""

import math
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from ..config import KernelConfig
from ..core.signature import SparseSignature
from ..core.similarity import cosine


@dataclass(frozen=True)
class KKScore:
    """Components of one KK kernel evaluation."""

    base: float
    overlap: float
    agreement: float
    multiplier: float
    total: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "base": self.base,
            "overlap": self.overlap,
            "agreement": self.agreement,
            "multiplier": self.multiplier,
            "total": self.total,
        }


def anomaly_set(query: SparseSignature, m: int) -> Tuple[int, ...]:
    """
    The ``m`` positions of ``query`` with the largest elevation.

    Ties go to the lower position.
    """
    ranked = sorted(zip(query.positions, query.values), key=lambda pv: (-pv[1], pv[0]))
    return tuple(p for p, _ in ranked[:max(0, m)])


def overlap_fraction(query: SparseSignature, candidate: SparseSignature, m: int) -> float:
    """``|A_Q ∩ positions(X)| / |A_Q|``; 0.0 when the anomaly set is empty."""
    subspace = anomaly_set(query, m)
    if not subspace:
        return 0.0
    present = set(candidate.positions)
    return sum(1 for p in subspace if p in present) / len(subspace)


def agreement_cosine(query: SparseSignature, candidate: SparseSignature, m: int,
                     eps: float = 1e-12) -> float:
    """Cosine over the coordinates of ``A_Q`` only, zero-filled where absent."""
    subspace = anomaly_set(query, m)
    if not subspace:
        return 0.0
    q_map = query.to_mapping()
    x_map = candidate.to_mapping()
    dot = nq = nx = 0.0
    for p in subspace:
        q = q_map.get(p, 0.0)
        x = x_map.get(p, 0.0)
        dot += q * x
        nq += q * q
        nx += x * x
    if dot == 0.0:
        return 0.0
    return dot / (math.sqrt(nq) * math.sqrt(nx) + eps)


def kk_score(query: SparseSignature, candidate: SparseSignature,
             beta: float = 0.5, gamma: float = 0.5, m: int = 8,
             eps: float = 1e-12) -> KKScore:
    """
    Evaluate the KK kernel for one query/candidate pair.

    Args:
        query: Query signature Q
        candidate: Candidate signature X
        beta: Weight of the overlap fraction
        gamma: Weight of the anomaly-subspace agreement
        m: Size of the anomaly subspace
        eps: Denominator guard

    Returns:
        KKScore with every component
    """
    base = cosine(query, candidate, eps)
    overlap = overlap_fraction(query, candidate, m)
    agreement = agreement_cosine(query, candidate, m, eps)
    multiplier = 1.0 + beta * overlap + gamma * agreement
    return KKScore(base=base, overlap=overlap, agreement=agreement,
                   multiplier=multiplier, total=base * multiplier)


class SimilarityKernel:
    """KK kernel bound to one set of weights."""

    def __init__(self, config: Optional[KernelConfig] = None):
        self.config = config or KernelConfig()

    def score(self, query: SparseSignature, candidate: SparseSignature) -> KKScore:
        cfg = self.config
        return kk_score(query, candidate, cfg.beta, cfg.gamma, cfg.m, cfg.eps)

    __call__ = score

"""
Candidate ranking with the KK kernel, rank fusion and retrieval metrics.

Rankings are lists of ``(item_id, score)`` sorted by descending score.
"""

import math
from collections import defaultdict
from typing import Dict, Hashable, List, Optional, Sequence, Set, Tuple

import numpy as np

from ..core.signature import SparseSignature
from .kk import KKScore, kk_score

Ranking = List[Tuple[Hashable, float]]

NORMALIZATIONS = ("zscore", "minmax")


def rank_candidates(query: SparseSignature, candidates: Sequence[SparseSignature],
                    beta: float = 0.5, gamma: float = 0.5, m: int = 8,
                    top_n: Optional[int] = None) -> List[Tuple[int, KKScore]]:
    """
    Rank ``candidates`` by KK total score against ``query``.

    Ties keep candidate order.

    Returns:
        ``(candidate_index, KKScore)`` pairs, best first
    """
    scored = [(i, kk_score(query, c, beta, gamma, m)) for i, c in enumerate(candidates)]
    scored.sort(key=lambda item: -item[1].total)
    return scored[:top_n] if top_n is not None else scored


def _sorted(scores: Dict[Hashable, float]) -> Ranking:
    return sorted(scores.items(), key=lambda item: -item[1])


def reciprocal_rank(ranking: Ranking, relevant: Set[Hashable], k: Optional[int] = None) -> float:
    """1 / rank of the first relevant item (within the top ``k``), else 0."""
    limit = len(ranking) if k is None else min(k, len(ranking))
    for rank, (item, _) in enumerate(ranking[:limit], start=1):
        if item in relevant:
            return 1.0 / rank
    return 0.0


def mean_reciprocal_rank(rankings: Sequence[Ranking], relevant: Sequence[Set[Hashable]]) -> float:
    """Mean reciprocal rank over queries; 0.0 for no queries."""
    if not rankings:
        return 0.0
    return sum(reciprocal_rank(r, rel) for r, rel in zip(rankings, relevant)) / len(rankings)


def ndcg_at_k(ranking: Ranking, relevant: Set[Hashable], k: int = 10) -> float:
    """Binary-relevance NDCG over the top ``k``."""
    dcg = sum(1.0 / math.log2(i + 2) for i, (item, _) in enumerate(ranking[:k]) if item in relevant)
    ideal = sum(1.0 / math.log2(i + 2) for i in range(min(k, len(relevant))))
    return dcg / ideal if ideal > 0 else 0.0


def map_at_k(ranking: Ranking, relevant: Set[Hashable], k: int = 10) -> float:
    """Average precision over the top ``k``."""
    hits = 0
    precision_sum = 0.0
    for i, (item, _) in enumerate(ranking[:k]):
        if item in relevant:
            hits += 1
            precision_sum += hits / (i + 1)
    if not hits:
        return 0.0
    return precision_sum / min(k, len(relevant))


def reciprocal_rank_fusion(rankings: Sequence[Ranking], k: int = 60) -> Ranking:
    """
    Reciprocal Rank Fusion: ``sum_m 1 / (k + rank_m(item))``.

    Items missing from a model's ranking contribute nothing for that model.
    """
    fused: Dict[Hashable, float] = defaultdict(float)
    for ranking in rankings:
        for rank, (item, _) in enumerate(_sorted(dict(ranking)), start=1):
            fused[item] += 1.0 / (k + rank)
    return _sorted(fused)


def borda_fusion(rankings: Sequence[Ranking]) -> Ranking:
    """Borda count: each model awards ``N - rank`` points, N the number of distinct items."""
    items = {item for ranking in rankings for item, _ in ranking}
    n = len(items)
    fused: Dict[Hashable, float] = {item: 0.0 for item in items}
    for ranking in rankings:
        ordered = _sorted(dict(ranking))
        ranks = {item: rank for rank, (item, _) in enumerate(ordered, start=1)}
        for item in items:
            # unranked items share the worst rank
            fused[item] += n - ranks.get(item, n)
    return _sorted(fused)


def score_table(rankings: Sequence[Ranking]) -> Tuple[List[Hashable], np.ndarray]:
    """
    Dense ``items x models`` score matrix.

    Items are listed in order of first appearance; an item a model did not
    score is NaN in that model's column.
    """
    items: Dict[Hashable, int] = {}
    for ranking in rankings:
        for item, _ in ranking:
            items.setdefault(item, len(items))
    matrix = np.full((len(items), len(rankings)), np.nan)
    for m, ranking in enumerate(rankings):
        for item, score in ranking:
            matrix[items[item], m] = score
    return list(items), matrix


def normalize_matrix(matrix: np.ndarray, mode: str = "zscore") -> np.ndarray:
    """
    Normalize each column over its finite entries.

    ``zscore`` uses the population standard deviation and ``minmax`` maps
    onto ``[0, 1]``; a zero spread is replaced by 1. Non-finite entries stay NaN.
    """
    if mode not in NORMALIZATIONS:
        raise ValueError(f"mode must be one of {NORMALIZATIONS}, got {mode!r}")
    matrix = np.asarray(matrix, dtype=np.float64)
    out = np.full(matrix.shape, np.nan)
    for m in range(matrix.shape[1] if matrix.ndim == 2 else 0):
        column = matrix[:, m]
        finite = np.isfinite(column)
        if not finite.any():
            continue
        values = column[finite]
        if mode == "minmax":
            low = values.min()
            spread = (values.max() - low) or 1.0
            out[finite, m] = (values - low) / spread
        else:
            spread = values.std() or 1.0
            out[finite, m] = (values - values.mean()) / spread
    return out


def linear_fusion(rankings: Sequence[Ranking], weights: Optional[Sequence[float]] = None,
                  norm: str = "zscore") -> Ranking:
    """
    Weighted sum of normalized model scores.

    Args:
        rankings: One ranking per model
        weights: Per-model weights (uniform ``1/M`` if None)
        norm: Column normalization, ``zscore`` or ``minmax``

    Returns:
        Fused ranking; a model that did not score an item adds nothing for it
    """
    items, matrix = score_table(rankings)
    if not items:
        return []
    m = matrix.shape[1]
    if weights is None:
        w = np.full(m, 1.0 / m)
    else:
        w = np.asarray(weights, dtype=np.float64)
        if w.shape != (m,):
            raise ValueError(f"expected {m} weights, got {len(weights)}")
    normalized = np.nan_to_num(normalize_matrix(matrix, norm), nan=0.0)
    scores = normalized @ w
    return _sorted(dict(zip(items, scores.tolist())))


def comb_mnz_fusion(rankings: Sequence[Ranking], norm: str = "minmax") -> Ranking:
    """CombMNZ: sum of positive normalized scores times the number of models scoring the item above 0."""
    items, matrix = score_table(rankings)
    if not items:
        return []
    normalized = np.nan_to_num(normalize_matrix(matrix, norm), nan=0.0)
    positive = np.maximum(normalized, 0.0)
    scores = (positive > 0).sum(axis=1) * positive.sum(axis=1)
    return _sorted(dict(zip(items, scores.tolist())))


FUSION_METHODS = ("best_single", "rrf", "linear", "borda", "comb_mnz")


def evaluate_fusion_suite(per_query: Sequence[Sequence[Ranking]],
                          relevant: Sequence[Set[Hashable]],
                          k: int = 10) -> Dict[str, Dict[str, float]]:
    """
    Compare fusion methods against the best single model per query.

    ``best_single`` is, for each query, the model with the highest reciprocal
    rank within the top ``k`` (the first such model on ties), so it is an
    oracle baseline.

    Args:
        per_query: For each query, one ranking per model
        relevant: For each query, the relevant item ids
        k: Cutoff for every metric

    Returns:
        ``{method: {"mrr": ..., "ndcg": ..., "map": ...}}`` averaged over queries
    """
    totals = {name: {"mrr": 0.0, "ndcg": 0.0, "map": 0.0} for name in FUSION_METHODS}
    n = len(per_query)
    if n == 0:
        return totals

    for q, models in enumerate(per_query):
        rel = relevant[q] if q < len(relevant) else set()
        singles = [_sorted(dict(ranking)) for ranking in models]
        best = max(singles, key=lambda r: reciprocal_rank(r, rel, k), default=[])
        candidates = {
            "best_single": best,
            "rrf": reciprocal_rank_fusion(models),
            "linear": linear_fusion(models),
            "borda": borda_fusion(models),
            "comb_mnz": comb_mnz_fusion(models),
        }
        for name, ranking in candidates.items():
            totals[name]["mrr"] += reciprocal_rank(ranking, rel, k) / n
            totals[name]["ndcg"] += ndcg_at_k(ranking, rel, k) / n
            totals[name]["map"] += map_at_k(ranking, rel, k) / n
    return totals

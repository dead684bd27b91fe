"""KK similarity kernel and ranking utilities."""

from .kk import KKScore, SimilarityKernel, agreement_cosine, anomaly_set, kk_score, overlap_fraction
from .ranking import (
    borda_fusion,
    comb_mnz_fusion,
    evaluate_fusion_suite,
    linear_fusion,
    map_at_k,
    mean_reciprocal_rank,
    ndcg_at_k,
    normalize_matrix,
    rank_candidates,
    reciprocal_rank_fusion,
    score_table,
)

__all__ = [
    'KKScore',
    'SimilarityKernel',
    'anomaly_set',
    'overlap_fraction',
    'agreement_cosine',
    'kk_score',
    'rank_candidates',
    'mean_reciprocal_rank',
    'ndcg_at_k',
    'map_at_k',
    'reciprocal_rank_fusion',
    'borda_fusion',
    'linear_fusion',
    'comb_mnz_fusion',
    'score_table',
    'normalize_matrix',
    'evaluate_fusion_suite',
]

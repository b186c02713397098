"""
Scoring helpers for the retrieval pipeline

Pure functions over RetrievalResult lists: similarity, temporal and value
weighting, and MMR diversity. Every adjusted score is clamped to [0, 1].
"""

import math
from typing import List, Optional, Sequence

import numpy as np

from ..core.models import RetrievalResult, now_ms

MS_PER_DAY = 86_400_000
MAX_RECENCY_BOOST = 0.25


def clamp01(value: float) -> float:
    if not math.isfinite(value):
        return 0.0
    return min(1.0, max(0.0, value))


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine of two vectors; 0.0 for empty, zero-length or mismatched input"""
    if a is None or b is None or len(a) == 0 or len(a) != len(b):
        return 0.0

    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    norm = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if norm == 0.0:
        return 0.0
    return float(np.dot(va, vb) / norm)


def age_days(timestamp: int, now: Optional[int] = None) -> float:
    now = now_ms() if now is None else now
    return max(0.0, (now - timestamp) / MS_PER_DAY)


def apply_recency_boost(
    results: List[RetrievalResult],
    half_life_days: float,
    weight: float,
    now: Optional[int] = None
) -> List[RetrievalResult]:
    """Add exp(-age/half_life) * weight, the weight capped at 0.25"""
    if half_life_days <= 0 or weight <= 0:
        return results

    weight = min(weight, MAX_RECENCY_BOOST)
    boosted = []
    for result in results:
        boost = math.exp(-age_days(result.entry.timestamp, now) / half_life_days) * weight
        boosted.append(result.with_score(clamp01(result.score + boost)))
    return boosted


def apply_importance_weight(results: List[RetrievalResult], base_weight: float = 0.7) -> List[RetrievalResult]:
    """Scale by base + (1 - base) * importance; importance 1.0 leaves the score unchanged"""
    return [
        result.with_score(clamp01(result.score * (base_weight + (1.0 - base_weight) * result.entry.importance)))
        for result in results
    ]


def apply_length_normalization(results: List[RetrievalResult], anchor: int = 500) -> List[RetrievalResult]:
    """Dampen entries longer than the anchor length; shorter ones are untouched"""
    if anchor <= 0:
        return results

    normalized = []
    for result in results:
        ratio = max(len(result.entry.text) / anchor, 1.0)
        normalized.append(result.with_score(clamp01(result.score / (1.0 + 0.5 * math.log2(ratio)))))
    return normalized


def apply_time_decay(
    results: List[RetrievalResult],
    half_life_days: float,
    now: Optional[int] = None
) -> List[RetrievalResult]:
    """Multiply by 0.5 + 0.5 * exp(-age/half_life), so old entries keep at least half"""
    if half_life_days <= 0:
        return results

    return [
        result.with_score(clamp01(
            result.score * (0.5 + 0.5 * math.exp(-age_days(result.entry.timestamp, now) / half_life_days))
        ))
        for result in results
    ]


def apply_mmr_diversity(results: List[RetrievalResult], diversity_penalty: float = 0.2) -> List[RetrievalResult]:
    """
    Greedy Maximal Marginal Relevance ordering.

    Each step picks the candidate maximizing
    score - diversity_penalty * max cosine to already selected entries and
    assigns it that value (floored at 0). Near-duplicates sink but are kept.
    """
    if len(results) <= 1 or diversity_penalty <= 0:
        return list(results)

    candidates = list(results)
    selected: List[RetrievalResult] = []

    while candidates:
        best_index = 0
        best_value = -math.inf

        for i, candidate in enumerate(candidates):
            max_similarity = max(
                (cosine_similarity(candidate.entry.vector, chosen.entry.vector) for chosen in selected),
                default=0.0
            )
            value = candidate.score - diversity_penalty * max(max_similarity, 0.0)
            if value > best_value:
                best_value = value
                best_index = i

        chosen = candidates.pop(best_index)
        selected.append(chosen.with_score(max(0.0, best_value)))

    return selected

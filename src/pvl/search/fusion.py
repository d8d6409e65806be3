"""Rank fusion of the keyword and vector result lists."""

from collections import defaultdict
from enum import Enum

from ..models import ItemId

RRF_K = 60


class FusionStrategy(str, Enum):
    RRF = "rrf"
    WEIGHTED_SUM = "weighted_sum"


def rrf_score(rank: int, k: int = RRF_K) -> float:
    """Reciprocal rank contribution of a 1-based ``rank``."""
    return 1.0 / (k + rank)


def rrf_fuse(rankings: list[list[ItemId]], k: int = RRF_K) -> list[tuple[ItemId, float]]:
    """Reciprocal Rank Fusion.

    Every list contributes ``1 / (k + rank)`` to each id it contains, rank
    starting at 1. Output is sorted by fused score, ties by the id's string
    form.
    """
    scores: dict[ItemId, float] = defaultdict(float)
    for ranking in rankings:
        for rank, item_id in enumerate(ranking, start=1):
            scores[item_id] += rrf_score(rank, k)
    return _ranked(scores)


def weighted_sum_fuse(
    result_lists: list[list[tuple[ItemId, float]]],
    weights: list[float],
) -> list[tuple[ItemId, float]]:
    """Weighted sum of min-max normalized scores.

    An id missing from a list gets 0 from that list. When every score in a
    list is equal they all normalize to 1.
    """
    if len(result_lists) != len(weights):
        raise ValueError("Need one weight per result list")
    scores: dict[ItemId, float] = defaultdict(float)
    for results, weight in zip(result_lists, weights):
        if not results:
            continue
        values = [score for _, score in results]
        lo, hi = min(values), max(values)
        span = hi - lo
        for item_id, score in results:
            normalized = (score - lo) / span if span > 0 else 1.0
            scores[item_id] += weight * normalized
    return _ranked(scores)


def fuse(
    strategy: FusionStrategy,
    keyword_results: list[tuple[ItemId, float]],
    vector_results: list[tuple[ItemId, float]],
    rrf_k: int = RRF_K,
    keyword_weight: float = 0.5,
    vector_weight: float = 0.5,
) -> list[tuple[ItemId, float]]:
    strategy = FusionStrategy(strategy)
    if strategy is FusionStrategy.RRF:
        return rrf_fuse([[i for i, _ in keyword_results], [i for i, _ in vector_results]], k=rrf_k)
    return weighted_sum_fuse([keyword_results, vector_results], [keyword_weight, vector_weight])


def _ranked(scores: dict[ItemId, float]) -> list[tuple[ItemId, float]]:
    return sorted(scores.items(), key=lambda kv: (-kv[1], str(kv[0])))

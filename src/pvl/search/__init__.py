"""Hybrid keyword and vector search."""

from .engine import HybridSearchEngine
from .filters import apply_filters
from .fusion import FusionStrategy, rrf_fuse, weighted_sum_fuse
from .keyword import keyword_search

__all__ = [
    "FusionStrategy",
    "HybridSearchEngine",
    "apply_filters",
    "keyword_search",
    "rrf_fuse",
    "weighted_sum_fuse",
]

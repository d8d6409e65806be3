"""Approximate nearest-neighbour index."""

from .hnsw import HNSWIndex, id_sort_key
from .lock import ReadWriteLock

__all__ = ["HNSWIndex", "ReadWriteLock", "id_sort_key"]

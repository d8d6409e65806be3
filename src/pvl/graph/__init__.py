"""kNN similarity graph over indexed items."""

from .builder import GraphBuilder

__all__ = ["GraphBuilder"]

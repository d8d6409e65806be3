"""Community detection and cluster management."""

from .engine import ClusterEngine
from .labels import make_label
from .leiden import LeidenResult, leiden, modularity

__all__ = ["ClusterEngine", "LeidenResult", "leiden", "make_label", "modularity"]

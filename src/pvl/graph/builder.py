"""Weighted kNN graph construction from the vector index."""

import logging
from typing import Callable

import networkx as nx

from ..errors import DimensionMismatchError, TaskCancelled
from ..index import HNSWIndex, id_sort_key
from ..models import Item, ItemId
from ..storage import ItemStore

logger = logging.getLogger(__name__)


class GraphBuilder:
    """Builds an undirected kNN similarity graph over indexed items.

    Nodes are item ids with embeddings. Each item contributes an edge to each
    of its ``k`` nearest neighbours; an edge found from both ends is stored
    once with the larger weight.
    """

    def __init__(self, index: HNSWIndex, store: ItemStore | None = None, k: int = 10):
        self.index = index
        self.store = store
        self.k = k

    def build_graph(
        self,
        items: list[Item],
        k: int | None = None,
        should_stop: Callable[[], bool] | None = None,
    ) -> nx.Graph:
        """Build the kNN graph for ``items``.

        Args:
            items: Candidate items. Items without an embedding are left out.
            k: Neighbours per item (defaults to the builder's ``k``).
            should_stop: Polled between items; when it returns True the build
                stops with :class:`~pvl.errors.TaskCancelled`.

        Returns:
            A ``networkx.Graph`` with a ``weight`` attribute on every edge.
        """
        k = k or self.k
        graph = nx.Graph()
        known = {item.id for item in items if item.has_embedding}
        graph.add_nodes_from(sorted(known, key=id_sort_key))

        for item in items:
            if not item.has_embedding:
                continue
            if should_stop is not None and should_stop():
                raise TaskCancelled()
            self._connect(graph, item, k, known)

        logger.debug(f"Built kNN graph: {graph.number_of_nodes()} nodes, {graph.number_of_edges()} edges")
        return graph

    def add_node(self, graph: nx.Graph, item: Item, k: int | None = None) -> nx.Graph:
        """Insert one item and its edges into an existing graph."""
        if not item.has_embedding:
            return graph
        known = set(graph.nodes)
        known.add(item.id)
        graph.add_node(item.id)
        self._connect(graph, item, k or self.k, known)
        return graph

    def remove_node(self, graph: nx.Graph, item_id: ItemId) -> nx.Graph:
        if graph.has_node(item_id):
            graph.remove_node(item_id)
        return graph

    def _connect(self, graph: nx.Graph, item: Item, k: int, known: set) -> None:
        try:
            neighbours = self.index.query(item.embedding, k + 1)
        except DimensionMismatchError as e:
            logger.warning(f"Skipping item {item.id!r}: {e}")
            return
        added = 0
        for neighbour_id, similarity in neighbours:
            if neighbour_id == item.id:
                continue
            if added >= k:
                break
            if neighbour_id not in known:
                if self.store is not None and self.store.get_item(neighbour_id) is None:
                    logger.warning(f"Skipping stale index entry {neighbour_id!r} (not in item store)")
                continue
            added += 1
            # Modularity needs non-negative weights.
            if similarity <= 0:
                continue
            if graph.has_edge(item.id, neighbour_id):
                if similarity > graph[item.id][neighbour_id]["weight"]:
                    graph[item.id][neighbour_id]["weight"] = similarity
            else:
                graph.add_edge(item.id, neighbour_id, weight=similarity)


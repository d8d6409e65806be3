"""Tests for kNN graph construction."""

import numpy as np
import pytest

from pvl.errors import TaskCancelled
from pvl.graph import GraphBuilder
from pvl.index import HNSWIndex
from pvl.models import Item
from pvl.storage import InMemoryItemStore


def _make_items(groups=2, per_group=5, dim=8, seed=0):
    rng = np.random.default_rng(seed)
    items = []
    for g in range(groups):
        for i in range(per_group):
            vector = np.eye(dim)[g] + 0.05 * rng.normal(size=dim)
            items.append(Item(id=f"g{g}-{i}", title=f"group {g} item {i}", embedding=vector.tolist()))
    return items


def _setup(items, dim=8):
    store = InMemoryItemStore(items)
    index = HNSWIndex(dim=dim)
    for item in items:
        if item.has_embedding:
            index.insert(item.id, item.embedding)
    return store, index


def test_build_graph_connects_nearest_neighbours():
    items = _make_items()
    store, index = _setup(items)
    graph = GraphBuilder(index, store).build_graph(items, k=4)

    assert set(graph.nodes) == {item.id for item in items}
    for u, v, data in graph.edges(data=True):
        assert u != v
        assert data["weight"] > 0
        # Groups are orthogonal, so every edge stays inside its group.
        assert u.split("-")[0] == v.split("-")[0]
    for item in items:
        assert graph.degree(item.id) >= 4


def test_items_without_embedding_excluded():
    items = _make_items()
    items.append(Item(id="bare", title="no vector yet"))
    store, index = _setup(items)
    graph = GraphBuilder(index, store).build_graph(items, k=3)
    assert "bare" not in graph


def test_stale_index_entries_skipped():
    items = _make_items(groups=1)
    store, index = _setup(items)
    index.insert("ghost", items[0].embedding)
    graph = GraphBuilder(index, store).build_graph(items, k=3)
    assert "ghost" not in graph
    assert graph.number_of_nodes() == len(items)


def test_edge_weights_are_similarities():
    items = _make_items()
    store, index = _setup(items)
    graph = GraphBuilder(index, store).build_graph(items, k=2)
    u, v = next(iter(graph.edges))
    a = np.asarray(store.get_item(u).embedding)
    b = np.asarray(store.get_item(v).embedding)
    expected = a @ b / (np.linalg.norm(a) * np.linalg.norm(b))
    assert graph[u][v]["weight"] == pytest.approx(expected, abs=1e-5)


def test_add_and_remove_node():
    items = _make_items()
    store, index = _setup(items[:-1])
    builder = GraphBuilder(index, store, k=3)
    graph = builder.build_graph(items[:-1])

    newcomer = items[-1]
    store.add_item(newcomer)
    index.insert(newcomer.id, newcomer.embedding)
    builder.add_node(graph, newcomer)
    assert newcomer.id in graph
    assert graph.degree(newcomer.id) == 3

    builder.remove_node(graph, newcomer.id)
    assert newcomer.id not in graph
    builder.remove_node(graph, "unknown")


def test_build_graph_cancellation():
    items = _make_items()
    store, index = _setup(items)
    with pytest.raises(TaskCancelled):
        GraphBuilder(index, store).build_graph(items, should_stop=lambda: True)

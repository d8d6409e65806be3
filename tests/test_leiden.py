"""Tests for Leiden community detection."""

import networkx as nx
import pytest

from pvl.clustering import leiden, modularity
from pvl.errors import TaskCancelled


def _two_cliques(size=5, bridge=0.1):
    graph = nx.Graph()
    for offset in (0, size):
        for i in range(size):
            for j in range(i + 1, size):
                graph.add_edge(offset + i, offset + j, weight=1.0)
    graph.add_edge(0, size, weight=bridge)
    return graph


def test_finds_two_cliques():
    result = leiden(_two_cliques())
    assert len(result.communities) == 2
    assert sorted(map(sorted, result.communities)) == [[0, 1, 2, 3, 4], [5, 6, 7, 8, 9]]
    assert result.modularity > 0.4


def test_partition_covers_every_node():
    graph = nx.karate_club_graph()
    result = leiden(graph)
    assert set(result.partition) == set(graph.nodes)
    assert sorted(n for c in result.communities for n in c) == sorted(graph.nodes)
    assert set(result.partition.values()) == set(range(len(result.communities)))


def test_communities_are_connected():
    graph = nx.karate_club_graph()
    result = leiden(graph)
    for community in result.communities:
        assert nx.is_connected(graph.subgraph(community))


def test_karate_club_quality():
    graph = nx.karate_club_graph()
    result = leiden(graph)
    assert 2 <= len(result.communities) <= 6
    assert result.modularity > 0.3
    assert result.modularity == pytest.approx(modularity(graph, result.partition))


def test_deterministic_for_seed():
    graph = nx.karate_club_graph()
    assert leiden(graph, seed=3).partition == leiden(graph, seed=3).partition


def test_higher_resolution_gives_more_communities():
    graph = nx.karate_club_graph()
    low = leiden(graph, resolution=0.5)
    high = leiden(graph, resolution=2.0)
    assert len(high.communities) >= len(low.communities)


def test_empty_and_edgeless_graphs():
    assert leiden(nx.Graph()).partition == {}

    graph = nx.Graph()
    graph.add_nodes_from(["a", "b", "c"])
    result = leiden(graph)
    assert len(result.communities) == 3
    assert result.modularity == 0.0


def test_disconnected_components_never_share_a_community():
    graph = nx.Graph()
    graph.add_edge("a", "b", weight=1.0)
    graph.add_edge("c", "d", weight=1.0)
    result = leiden(graph)
    assert result.partition["a"] == result.partition["b"]
    assert result.partition["a"] != result.partition["c"]


def test_negative_weights_rejected():
    graph = nx.Graph()
    graph.add_edge(1, 2, weight=-0.5)
    with pytest.raises(ValueError):
        leiden(graph)


def test_should_stop_cancels():
    with pytest.raises(TaskCancelled):
        leiden(nx.karate_club_graph(), should_stop=lambda: True)

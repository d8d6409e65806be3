"""Leiden community detection over a weighted similarity graph.

Each iteration runs three phases:

1. Local moving: nodes are visited in a seeded random order and moved to the
   neighbouring community with the largest modularity gain. Nodes whose
   neighbourhood changed are revisited until nothing moves.
2. Refinement: every community is re-grown from singletons, merging a node
   only into a sub-community it is connected to and only when the gain is
   non-negative, so badly connected communities fall apart.
3. Aggregation: refined sub-communities become the nodes of a coarser graph,
   starting from the unrefined partition.

The objective is maximized greedily, not globally: results are good local
optima found quickly, not the best possible partition.
"""

import logging
from collections import defaultdict, deque
from dataclasses import dataclass, field
from typing import Any, Callable, Hashable

import networkx as nx
import numpy as np

from ..errors import TaskCancelled
from ..index import id_sort_key

logger = logging.getLogger(__name__)

_EPS = 1e-12


@dataclass
class LeidenResult:
    """Partition of graph nodes into communities numbered from 0."""
    partition: dict[Hashable, int]
    modularity: float
    iterations: int
    communities: list[list[Hashable]] = field(default_factory=list)


def leiden(
    graph: nx.Graph,
    resolution: float = 1.0,
    max_iterations: int = 50,
    tolerance: float = 1e-7,
    seed: int | None = 42,
    should_stop: Callable[[], bool] | None = None,
) -> LeidenResult:
    """Partition ``graph`` into communities.

    Args:
        graph: Undirected graph; the ``weight`` edge attribute (default 1.0)
            must be non-negative.
        resolution: Higher values give more, smaller communities.
        max_iterations: Cap on move/refine/aggregate rounds.
        tolerance: Stop once a round improves modularity by less than this.
        seed: Seed for the node visiting order.
        should_stop: Polled once per local-moving pass; returning True raises
            :class:`~pvl.errors.TaskCancelled`.

    Returns:
        A :class:`LeidenResult`. Community numbers follow the order of each
        community's smallest node id.
    """
    nodes = sorted(graph.nodes, key=id_sort_key)
    if not nodes:
        return LeidenResult(partition={}, modularity=0.0, iterations=0)

    position = {node: i for i, node in enumerate(nodes)}
    adj = _adjacency(graph, nodes, position)
    rng = np.random.default_rng(seed)

    # membership[i] = aggregate node currently holding original node i
    membership = list(range(len(nodes)))
    comm = list(range(len(nodes)))
    degrees = [sum(row.values()) for row in adj]
    two_m = sum(degrees)

    iterations = 0
    previous_q = _quality(adj, degrees, comm, two_m, resolution)
    if two_m > 0:
        while iterations < max_iterations:
            if should_stop is not None and should_stop():
                raise TaskCancelled()
            iterations += 1

            moved = _move_nodes(adj, degrees, comm, two_m, resolution, rng)
            refined = _refine(adj, degrees, comm, two_m, resolution, rng)
            n_refined = max(refined) + 1 if refined else 0

            q = _quality(adj, degrees, comm, two_m, resolution)
            if n_refined == len(adj):
                # Every node is its own refined community: nothing to aggregate.
                previous_q = q
                if not moved:
                    break
                continue

            membership = [refined[m] for m in membership]
            aggregated_comm = [0] * n_refined
            for node, r in enumerate(refined):
                aggregated_comm[r] = comm[node]
            adj = _aggregate(adj, refined, n_refined)
            degrees = [sum(row.values()) for row in adj]
            comm = _relabel(aggregated_comm)

            if q - previous_q < tolerance and not moved:
                previous_q = q
                break
            previous_q = q

    labels = [comm[membership[i]] for i in range(len(nodes))]
    labels = _split_disconnected(graph, nodes, labels)
    labels = _relabel(labels)

    partition = {node: labels[i] for i, node in enumerate(nodes)}
    communities: list[list[Hashable]] = [[] for _ in range(max(labels) + 1)]
    for node in nodes:
        communities[partition[node]].append(node)

    q = modularity(graph, partition, resolution) if graph.number_of_edges() else 0.0
    logger.debug(f"Leiden: {len(communities)} communities, Q={q:.4f} after {iterations} iteration(s)")
    return LeidenResult(partition=partition, modularity=q, iterations=iterations, communities=communities)


def modularity(graph: nx.Graph, partition: dict[Any, int], resolution: float = 1.0) -> float:
    """Weighted modularity of ``partition`` (node -> community) on ``graph``."""
    groups: dict[int, set] = defaultdict(set)
    for node, c in partition.items():
        groups[c].add(node)
    if graph.number_of_edges() == 0:
        return 0.0
    return float(nx.community.modularity(graph, list(groups.values()), weight="weight", resolution=resolution))


def _adjacency(graph: nx.Graph, nodes: list, position: dict) -> list[dict[int, float]]:
    """Symmetric weight maps. A self entry holds twice the loop weight."""
    adj: list[dict[int, float]] = [dict() for _ in nodes]
    for u, v, data in graph.edges(data=True):
        w = float(data.get("weight", 1.0))
        if w < 0:
            raise ValueError("Leiden requires non-negative edge weights")
        i, j = position[u], position[v]
        if i == j:
            adj[i][i] = adj[i].get(i, 0.0) + 2 * w
        else:
            adj[i][j] = adj[i].get(j, 0.0) + w
            adj[j][i] = adj[j].get(i, 0.0) + w
    return adj


def _quality(adj, degrees, comm, two_m: float, resolution: float) -> float:
    if two_m == 0:
        return 0.0
    internal: dict[int, float] = defaultdict(float)
    totals: dict[int, float] = defaultdict(float)
    for i, row in enumerate(adj):
        totals[comm[i]] += degrees[i]
        for j, w in row.items():
            if comm[j] == comm[i]:
                internal[comm[i]] += w
    return sum(internal[c] / two_m - resolution * (totals[c] / two_m) ** 2 for c in totals)


def _move_nodes(adj, degrees, comm, two_m, resolution, rng) -> bool:
    """Fast local moving. Mutates ``comm``; returns whether any node moved."""
    n = len(adj)
    totals: dict[int, float] = defaultdict(float)
    for i in range(n):
        totals[comm[i]] += degrees[i]

    queue = deque(int(i) for i in rng.permutation(n))
    queued = [True] * n
    moved = False
    while queue:
        i = queue.popleft()
        queued[i] = False
        current = comm[i]
        k_i = degrees[i]

        links: dict[int, float] = defaultdict(float)
        for j, w in adj[i].items():
            if j != i:
                links[comm[j]] += w

        totals[current] -= k_i
        best = current
        best_gain = links.get(current, 0.0) - resolution * k_i * totals[current] / two_m
        for c in sorted(links):
            gain = links[c] - resolution * k_i * totals[c] / two_m
            if gain > best_gain + _EPS:
                best, best_gain = c, gain
        totals[best] += k_i

        if best != current:
            comm[i] = best
            moved = True
            for j in adj[i]:
                if j != i and comm[j] != best and not queued[j]:
                    queue.append(j)
                    queued[j] = True
    return moved


def _refine(adj, degrees, comm, two_m, resolution, rng) -> list[int]:
    """Split each community into well-connected sub-communities."""
    n = len(adj)
    refined = list(range(n))
    sub_totals = list(degrees)
    singleton = [True] * n

    comm_totals: dict[int, float] = defaultdict(float)
    for i in range(n):
        comm_totals[comm[i]] += degrees[i]

    # Weight from each node to the rest of its own community.
    to_own = [0.0] * n
    for i in range(n):
        to_own[i] = sum(w for j, w in adj[i].items() if j != i and comm[j] == comm[i])
    # Weight from each refined sub-community to the rest of its community.
    sub_external = list(to_own)

    for i in (int(x) for x in rng.permutation(n)):
        if not singleton[i]:
            continue
        c = comm[i]
        k_i = degrees[i]
        if to_own[i] < resolution * k_i * (comm_totals[c] - k_i) / two_m:
            continue

        links: dict[int, float] = defaultdict(float)
        for j, w in adj[i].items():
            if j != i and comm[j] == c:
                links[refined[j]] += w

        best = None
        best_gain = -_EPS
        for r in sorted(links):
            k_r = sub_totals[r]
            if sub_external[r] < resolution * k_r * (comm_totals[c] - k_r) / two_m:
                continue
            gain = links[r] - resolution * k_i * k_r / two_m
            if gain > best_gain:
                best, best_gain = r, gain

        if best is None:
            continue

        old = refined[i]
        refined[i] = best
        sub_totals[best] += k_i
        sub_totals[old] -= k_i
        # Edges between i and ``best`` become internal to the merged sub-community.
        sub_external[best] += to_own[i] - 2 * links[best]
        sub_external[old] = 0.0
        singleton[i] = False
        for j, _ in adj[i].items():
            if refined[j] == best:
                singleton[j] = False

    return _relabel(refined)


def _aggregate(adj, refined: list[int], size: int) -> list[dict[int, float]]:
    out: list[dict[int, float]] = [dict() for _ in range(size)]
    for i, row in enumerate(adj):
        ri = refined[i]
        target = out[ri]
        for j, w in row.items():
            rj = refined[j]
            target[rj] = target.get(rj, 0.0) + w
    return out


def _relabel(labels: list[int]) -> list[int]:
    """Renumber labels 0.. in order of first appearance."""
    mapping: dict[int, int] = {}
    out = []
    for label in labels:
        if label not in mapping:
            mapping[label] = len(mapping)
        out.append(mapping[label])
    return out


def _split_disconnected(graph: nx.Graph, nodes: list, labels: list[int]) -> list[int]:
    """Give every connected piece of a community its own label."""
    groups: dict[int, list] = defaultdict(list)
    for node, label in zip(nodes, labels):
        groups[label].append(node)

    position = {node: i for i, node in enumerate(nodes)}
    out = list(labels)
    next_label = max(labels) + 1
    for label in sorted(groups):
        members = groups[label]
        if len(members) < 2:
            continue
        components = list(nx.connected_components(graph.subgraph(members)))
        if len(components) < 2:
            continue
        components.sort(key=lambda comp: id_sort_key(min(comp, key=id_sort_key)))
        for comp in components[1:]:
            for node in comp:
                out[position[node]] = next_label
            next_label += 1
    return out

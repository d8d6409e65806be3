"""Topic clustering of the library: Leiden passes plus manual edits."""

import logging
import threading
import uuid
from typing import Any, Callable

import networkx as nx
import numpy as np

from ..errors import ClusterNotFoundError, ItemNotFoundError, TaskCancelled
from ..graph import GraphBuilder
from ..index import id_sort_key
from ..models import Cluster, Item, ItemId, utc_now
from ..storage import ItemStore
from .labels import disambiguate, make_label, unique_label
from .leiden import leiden

logger = logging.getLogger(__name__)


def new_cluster_id() -> str:
    return f"c-{uuid.uuid4().hex[:8]}"


def confidence(vectors: np.ndarray, centroid: np.ndarray) -> float:
    """Mean cosine similarity of member vectors to their centroid, in [0, 1]."""
    if len(vectors) == 1:
        return 1.0
    norms = np.linalg.norm(vectors, axis=1) * np.linalg.norm(centroid)
    dots = vectors @ centroid
    sims = np.divide(dots, norms, out=np.zeros_like(dots), where=norms > 0)
    return float(np.clip(sims.mean(), 0.0, 1.0))


class ClusterEngine:
    """Owns the cluster table and keeps item assignments in the store in sync.

    A clustering pass builds the kNN graph, runs Leiden and matches the new
    communities against the previous table by centroid similarity, so a
    topic keeps its id and custom label across passes. Passes are computed
    without holding the table lock and committed under it, so readers see
    either the old or the new table.
    """

    def __init__(
        self,
        store: ItemStore,
        graph_builder: GraphBuilder,
        resolution: float = 1.0,
        max_iterations: int = 50,
        tolerance: float = 1e-7,
        match_threshold: float = 0.85,
        growth_threshold: float = 0.10,
        min_cluster_size: int = 1,
        seed: int | None = 42,
    ):
        self.store = store
        self.graph_builder = graph_builder
        self.resolution = resolution
        self.max_iterations = max_iterations
        self.tolerance = tolerance
        self.match_threshold = match_threshold
        self.growth_threshold = growth_threshold
        self.min_cluster_size = max(1, min_cluster_size)
        self.seed = seed
        self._lock = threading.RLock()
        self._clusters: dict[str, Cluster] = {}
        self._member_of: dict[ItemId, str] = {}
        self._last_run_count: int | None = None
        self._load()

    @classmethod
    def from_config(cls, store: ItemStore, graph_builder: GraphBuilder, config: dict[str, Any]) -> "ClusterEngine":
        cfg = config.get("clustering", {})
        return cls(
            store,
            graph_builder,
            resolution=cfg.get("resolution", 1.0),
            max_iterations=cfg.get("max_iterations", 50),
            tolerance=cfg.get("tolerance", 1e-7),
            match_threshold=cfg.get("match_threshold", 0.85),
            growth_threshold=cfg.get("growth_threshold", 0.10),
            min_cluster_size=cfg.get("min_cluster_size", 1),
            seed=cfg.get("seed", 42),
        )

    def _load(self) -> None:
        clusters = self.store.load_clusters()
        self._clusters = {c.id: c for c in clusters}
        self._member_of = {m: c.id for c in clusters for m in c.member_ids}
        self._last_run_count = self.store.load_run_item_count()
        if self._last_run_count is None and clusters:
            # Tables saved without a run count: clustered items is the closest lower bound.
            self._last_run_count = sum(c.item_count for c in clusters)

    # --- Passes ---

    def should_recluster(self, current_item_count: int) -> bool:
        """True when no pass has run yet or the library grew past the threshold."""
        last = self._last_run_count
        if last is None:
            return True
        if last == 0:
            return current_item_count > 0
        return (current_item_count - last) / last > self.growth_threshold

    def run(self, should_stop: Callable[[], bool] | None = None) -> list[Cluster] | None:
        """Run a full clustering pass and commit it.

        Args:
            should_stop: Polled while the graph is built, between Leiden
                iterations and right before the commit.

        Returns:
            The new cluster table, or None when the pass ran out of memory or
            failed on the graph (the previous table is kept).

        Raises:
            TaskCancelled: ``should_stop`` returned True. Nothing is committed.
        """
        items = self.store.get_all_items_with_embeddings()
        by_id = {item.id: item for item in items}
        try:
            graph = self.graph_builder.build_graph(items, should_stop=should_stop)
            result = leiden(
                graph,
                resolution=self.resolution,
                max_iterations=self.max_iterations,
                tolerance=self.tolerance,
                seed=self.seed,
                should_stop=should_stop,
            )
            drafts = []
            for members in result.communities:
                if len(members) < self.min_cluster_size:
                    continue
                cluster = self._make_cluster(new_cluster_id(), members, by_id)
                if cluster is not None:
                    drafts.append(cluster)
        except (MemoryError, nx.NetworkXError) as e:
            logger.error(f"Clustering pass aborted, keeping previous clusters: {e!r}")
            return None

        with self._lock:
            if should_stop is not None and should_stop():
                raise TaskCancelled()
            clusters = self._match(drafts)
            self._commit(clusters, len(items))
            logger.info(f"Clustered {len(items)} item(s) into {len(clusters)} cluster(s), Q={result.modularity:.3f}")
            return self.list_clusters()

    def _make_cluster(self, cluster_id: str, member_ids: list[ItemId], items: dict[ItemId, Item]) -> Cluster | None:
        members = [items[m] for m in member_ids if m in items and items[m].has_embedding]
        if not members:
            return None
        vectors = np.asarray([m.embedding for m in members], dtype=np.float64)
        centroid = vectors.mean(axis=0)
        return Cluster(
            id=cluster_id,
            label=make_label([m.text_content for m in members]),
            centroid=centroid.tolist(),
            item_count=len(members),
            confidence_score=confidence(vectors, centroid),
            member_ids=sorted((m.id for m in members), key=id_sort_key),
        )

    def _match(self, drafts: list[Cluster]) -> list[Cluster]:
        """Carry ids and custom labels over from the best-matching previous clusters."""
        previous = list(self._clusters.values())
        pairs = []
        for i, draft in enumerate(drafts):
            for old in previous:
                sim = old.similarity(draft.centroid)
                if sim >= self.match_threshold:
                    pairs.append((sim, i, old.id))
        pairs.sort(key=lambda p: (-p[0], p[1], p[2]))

        matched_new: set[int] = set()
        matched_old: set[str] = set()
        for _, i, old_id in pairs:
            if i in matched_new or old_id in matched_old:
                continue
            matched_new.add(i)
            matched_old.add(old_id)
            drafts[i].id = old_id
            drafts[i].custom_label = self._clusters[old_id].custom_label

        dropped = len(previous) - len(matched_old)
        logger.debug(f"Matched {len(matched_old)} cluster(s), {len(drafts) - len(matched_new)} new, {dropped} dropped")
        return drafts

    def _commit(self, clusters: list[Cluster], item_count: int) -> None:
        clusters.sort(key=lambda c: (-c.item_count, c.id))
        labels = disambiguate({c.id: c.label for c in clusters}, {c.id: c.centroid for c in clusters})
        for cluster in clusters:
            cluster.label = labels[cluster.id]

        self._clusters = {c.id: c for c in clusters}
        self._member_of = {m: c.id for c in clusters for m in c.member_ids}
        with self.store.batch():
            for item in self.store.get_all_items():
                self._assign(item.id, self._member_of.get(item.id))
            self.store.save_clusters(clusters, run_item_count=item_count)
        self._last_run_count = item_count

    # --- Manual edits ---

    def merge_clusters(self, target_id: str, source_id: str) -> Cluster:
        """Move every member of ``source_id`` into ``target_id`` and delete the source."""
        if target_id == source_id:
            raise ValueError("Cannot merge a cluster into itself")
        with self._lock, self.store.batch():
            target = self._require(target_id)
            source = self._require(source_id)
            merged = self._set_members(target_id, target.member_ids + source.member_ids, target.custom_label)
            self._set_members(source_id, [])
            self._save()
        logger.info(f"Merged cluster {source_id} into {target_id}")
        return merged

    def split_cluster(self, cluster_id: str, member_groups: list[list[ItemId]] | None = None) -> list[Cluster]:
        """Split a cluster in pieces.

        With ``member_groups`` the groups must partition the cluster's members;
        otherwise the cluster is cut in two with 2-means on member embeddings.
        The first piece keeps the cluster's id and custom label.
        """
        with self._lock, self.store.batch():
            cluster = self._require(cluster_id)
            if member_groups is None:
                member_groups = self._bisect(cluster)
            self._check_partition(cluster, member_groups)

            pieces = []
            for group in member_groups[1:]:
                piece = self._set_members(new_cluster_id(), list(group))
                if piece is not None:
                    pieces.append(piece)
            first = self._set_members(cluster_id, list(member_groups[0]), cluster.custom_label)
            if first is not None:
                pieces.insert(0, first)
            self._save()
        logger.info(f"Split cluster {cluster_id} into {len(pieces)} cluster(s)")
        return pieces

    def evict_item(self, item_id: ItemId) -> Cluster | None:
        """Take an item out of its cluster.

        Returns the updated cluster, or None when the item was unclustered or
        its cluster emptied and was deleted.
        """
        with self._lock:
            cluster_id = self._member_of.get(item_id)
            if cluster_id is None:
                if self.store.get_item(item_id) is None:
                    raise ItemNotFoundError(item_id)
                return None
            cluster = self._clusters[cluster_id]
            with self.store.batch():
                remaining = [m for m in cluster.member_ids if m != item_id]
                self._member_of.pop(item_id, None)
                self._assign(item_id, None)
                updated = self._set_members(cluster_id, remaining, cluster.custom_label)
                self._save()
            return updated

    def rename_cluster(self, cluster_id: str, label: str | None) -> Cluster:
        """Set (or with an empty label, clear) the user's label for a cluster."""
        with self._lock:
            cluster = self._require(cluster_id)
            cluster.custom_label = label.strip() if label and label.strip() else None
            cluster.updated_at = utc_now()
            self._save()
            return cluster

    def _bisect(self, cluster: Cluster) -> list[list[ItemId]]:
        from sklearn.cluster import KMeans

        members = [m for m in cluster.member_ids if self._embedding(m) is not None]
        if len(members) < 2:
            raise ValueError(f"Cluster {cluster.id} has fewer than two members to split")
        vectors = np.asarray([self._embedding(m) for m in members], dtype=np.float64)
        labels = KMeans(n_clusters=2, n_init=10, random_state=self.seed).fit_predict(vectors)
        groups = [[m for m, lab in zip(members, labels) if lab == side] for side in (0, 1)]
        if not groups[0] or not groups[1]:
            # Identical vectors: fall back to halves.
            half = len(members) // 2
            groups = [members[:half], members[half:]]
        stale = [m for m in cluster.member_ids if m not in set(members)]
        groups[0].extend(stale)
        return groups

    @staticmethod
    def _check_partition(cluster: Cluster, groups: list[list[ItemId]]) -> None:
        if len(groups) < 2 or any(not group for group in groups):
            raise ValueError("A split needs at least two non-empty member groups")
        flat = [m for group in groups for m in group]
        if len(flat) != len(set(flat)) or set(flat) != set(cluster.member_ids):
            raise ValueError(f"Member groups must partition the members of cluster {cluster.id}")

    def _set_members(self, cluster_id: str, member_ids: list[ItemId], custom_label: str | None = None) -> Cluster | None:
        """Rebuild one cluster from ``member_ids`` and sync assignments. Empty clusters are deleted."""
        items: dict[ItemId, Item] = {}
        for member_id in member_ids:
            item = self.store.get_item(member_id)
            if item is None or not item.has_embedding:
                logger.warning(f"Dropping stale member {member_id!r} from cluster {cluster_id}")
                continue
            items[member_id] = item

        old = self._clusters.get(cluster_id)
        previous = set(old.member_ids) if old else set()
        cluster = self._make_cluster(cluster_id, list(items), items)
        if cluster is None:
            self._clusters.pop(cluster_id, None)
            current: set[ItemId] = set()
        else:
            cluster.custom_label = custom_label
            taken = {c.label for cid, c in self._clusters.items() if cid != cluster_id}
            cluster.label = unique_label(cluster.label, cluster.centroid, taken)
            self._clusters[cluster_id] = cluster
            current = set(cluster.member_ids)

        for member_id in previous - current:
            if self._member_of.get(member_id) == cluster_id:
                del self._member_of[member_id]
                self._assign(member_id, None)
        for member_id in current:
            self._member_of[member_id] = cluster_id
            self._assign(member_id, cluster_id)
        return cluster

    def _assign(self, item_id: ItemId, cluster_id: str | None) -> None:
        item = self.store.get_item(item_id)
        if item is None or item.cluster_id == cluster_id:
            return
        try:
            self.store.update_cluster_assignment(item_id, cluster_id)
        except KeyError:
            logger.warning(f"Item {item_id!r} disappeared before its cluster assignment was saved")

    def _embedding(self, item_id: ItemId) -> list[float] | None:
        item = self.store.get_item(item_id)
        return item.embedding if item is not None and item.has_embedding else None

    def _require(self, cluster_id: str) -> Cluster:
        cluster = self._clusters.get(cluster_id)
        if cluster is None:
            raise ClusterNotFoundError(cluster_id)
        return cluster

    def _save(self) -> None:
        self.store.save_clusters(self.list_clusters())

    # --- Queries ---

    def list_clusters(self) -> list[Cluster]:
        """All clusters, largest first, ties by id."""
        with self._lock:
            return sorted(self._clusters.values(), key=lambda c: (-c.item_count, c.id))

    def get_cluster(self, cluster_id: str) -> Cluster | None:
        """The cluster with ``cluster_id``, or None when there is no such cluster."""
        with self._lock:
            return self._clusters.get(cluster_id)

    def cluster_of(self, item_id: ItemId) -> str | None:
        with self._lock:
            return self._member_of.get(item_id)

    def verify(self) -> dict[str, Any]:
        """Cross-check the cluster table against item assignments in the store."""
        with self._lock:
            assigned = [item for item in self.store.get_all_items() if item.cluster_id is not None]
            dangling = [item.id for item in assigned if item.cluster_id not in self._clusters]
            misfiled = [
                item.id for item in assigned
                if item.cluster_id in self._clusters and item.id not in self._clusters[item.cluster_id].member_ids
            ]
            bad_counts = [c.id for c in self._clusters.values() if c.item_count != len(c.member_ids)]
            total = sum(c.item_count for c in self._clusters.values())
            return {
                "clusters": len(self._clusters),
                "clustered_items": len(assigned),
                "total_item_count": total,
                "dangling": dangling,
                "misfiled": misfiled,
                "bad_counts": bad_counts,
                "ok": total == len(assigned) and not dangling and not misfiled and not bad_counts,
            }

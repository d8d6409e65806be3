"""Discovery engine: wires embedding, index, clustering and search together."""

import logging
from pathlib import Path
from typing import Any

from .clustering import ClusterEngine
from .embeddings import EmbeddingService, SentenceTransformerEncoder, TextEncoder
from .errors import DimensionMismatchError, EmbeddingError, SnapshotError
from .graph import GraphBuilder
from .index import HNSWIndex
from .models import Cluster, Item, ItemId, SearchFilters, SearchResult
from .search import HybridSearchEngine
from .storage import ITEM_ADDED, ITEM_REMOVED, ITEM_UPDATED, ItemEvent, ItemStore, get_item_store
from .tasks import BackgroundRunner, CancellationToken, TaskHandle

logger = logging.getLogger(__name__)


class DiscoveryEngine:
    """Entry point for applications.

    Keeps the vector index in step with the item store through change
    notifications: added or updated items are embedded when needed and
    (re)inserted, removed items leave the index and their cluster.

    Args:
        config: Configuration as returned by :func:`pvl.config.load_config`.
        store: Item store to use; built from ``config`` when omitted.
        encoder: Text encoder; a lazily loaded sentence-transformers model
            when omitted.
        auto_embed: Embed items that arrive without an embedding as soon as
            the store reports them. When False they wait for
            :meth:`embed_items`.
    """

    def __init__(
        self,
        config: dict[str, Any],
        store: ItemStore | None = None,
        encoder: TextEncoder | None = None,
        auto_embed: bool = True,
    ):
        self.config = config
        self.store = store if store is not None else get_item_store(config)
        self.auto_embed = auto_embed

        emb_cfg = config["embedding"]
        self.encoder = encoder if encoder is not None else SentenceTransformerEncoder(emb_cfg["model"])
        self.dimension = int(emb_cfg["dimension"])
        self.embedding_service = EmbeddingService(
            self.encoder,
            max_chars=emb_cfg.get("max_chars", 1000),
            batch_concurrency=emb_cfg.get("batch_concurrency", 10),
            dimension=self.dimension,
        )

        self.index = self._new_index()
        self.graph_builder = GraphBuilder(self.index, self.store, k=config["graph"]["k"])
        self.clusters = ClusterEngine.from_config(self.store, self.graph_builder, config)
        self.searcher = HybridSearchEngine.from_config(self.store, self.index, self.embedding_service, config)
        self.runner = BackgroundRunner()
        self._unsubscribe = self.store.subscribe(self._on_event)

    def _new_index(self) -> HNSWIndex:
        idx = self.config["index"]
        return HNSWIndex(
            dim=self.dimension,
            m=idx.get("m", 16),
            ef_construction=idx.get("ef_construction", 200),
            ef_search=idx.get("ef_search", 100),
            seed=idx.get("seed", 42),
        )

    def _use_index(self, index: HNSWIndex) -> None:
        self.index = index
        self.graph_builder.index = index
        self.searcher.index = index

    @property
    def snapshot_path(self) -> Path:
        return Path(self.config["library_path"]).expanduser() / self.config["index"].get("snapshot_name", "index.snapshot")

    # --- Store notifications ---

    def _on_event(self, event: ItemEvent) -> None:
        if event.kind == ITEM_REMOVED:
            self.index.discard(event.item_id)
            if self.clusters.cluster_of(event.item_id) is not None:
                self.clusters.evict_item(event.item_id)
            return

        if event.kind not in (ITEM_ADDED, ITEM_UPDATED):
            return
        item = self.store.get_item(event.item_id)
        if item is None:
            return
        cluster_id = self.clusters.cluster_of(item.id)
        if item.cluster_id != cluster_id:
            # A replaced item keeps its cluster until the next pass.
            self.store.update_cluster_assignment(item.id, cluster_id)
        if not item.has_embedding:
            # Replaced metadata without a vector: the old vector no longer describes it.
            self.index.discard(item.id)
            if not self.auto_embed:
                return
            try:
                vector = self.embedding_service.embed(item.text_content)
            except EmbeddingError as e:
                logger.warning(f"Could not embed item {item.id!r}: {e}")
                return
            self.store.update_embedding(item.id, vector.tolist())
        self._index_item(item)

    def _index_item(self, item: Item) -> bool:
        try:
            self.index.insert(item.id, item.embedding)
        except (DimensionMismatchError, ValueError) as e:
            logger.warning(f"Not indexing item {item.id!r}: {e}")
            return False
        return True

    # --- Embedding and indexing ---

    def embed_items(self, items: list[Item] | None = None, show_progress: bool = False) -> int:
        """Embed ``items`` (default: every item without an embedding) and index them.

        Embeddings are persisted through the store. Returns the number of
        items embedded; failures are logged and skipped.
        """
        if items is None:
            items = [item for item in self.store.get_all_items() if not item.has_embedding]
        if not items:
            return 0

        def _embed(on_result=None):
            return self.embedding_service.embed_batch([item.text_content for item in items], on_result=on_result)

        if show_progress:
            from rich.progress import Progress

            with Progress() as progress:
                task = progress.add_task("Embedding...", total=len(items))
                results = _embed(lambda i, r: progress.advance(task))
        else:
            results = _embed()

        embedded = 0
        with self.store.batch():
            for item, result in zip(items, results):
                if not result.ok:
                    logger.warning(f"Could not embed item {item.id!r}: {result.error}")
                    continue
                if self.store.get_item(item.id) is None:
                    continue
                self.store.update_embedding(item.id, result.vector.tolist())
                if self._index_item(self.store.get_item(item.id)):
                    embedded += 1
        logger.info(f"Embedded {embedded}/{len(items)} item(s)")
        return embedded

    def rebuild_index(self) -> int:
        """Rebuild the index from every embedded item in the store. Returns its size."""
        entries = []
        for item in self.store.get_all_items_with_embeddings():
            if len(item.embedding) != self.dimension:
                logger.warning(
                    f"Not indexing item {item.id!r}: {len(item.embedding)} dimensions, expected {self.dimension}"
                )
                continue
            entries.append((item.id, item.embedding))
        size = self.index.rebuild(entries)
        logger.info(f"Rebuilt index with {size} item(s)")
        return size

    def load_index(self) -> bool:
        """Load the index snapshot, reconciled against the store.

        Returns True when the snapshot was used, False when it was missing or
        corrupt and the index was rebuilt from the store instead.
        """
        try:
            index = HNSWIndex.load(self.snapshot_path)
            if index.dim != self.dimension:
                raise SnapshotError(f"Snapshot dimension {index.dim} does not match configured {self.dimension}")
        except SnapshotError as e:
            logger.warning(f"Rebuilding index: {e}")
            self.rebuild_index()
            return False

        self._use_index(index)
        embedded = {item.id: item for item in self.store.get_all_items_with_embeddings()}
        stale = [item_id for item_id in index.ids() if item_id not in embedded]
        for item_id in stale:
            index.discard(item_id)
        missing = [item for item_id, item in embedded.items() if item_id not in index]
        for item in missing:
            self._index_item(item)
        if stale or missing:
            logger.info(f"Reconciled index snapshot: {len(stale)} stale, {len(missing)} missing")
        return True

    def save_index(self) -> Path:
        path = self.snapshot_path
        self.index.save(path)
        logger.debug(f"Saved index snapshot to {path}")
        return path

    # --- Clustering ---

    def recluster(self, background: bool = False) -> list[Cluster] | TaskHandle | None:
        """Run a clustering pass.

        In the background a newer pass supersedes one still running; the
        returned :class:`~pvl.tasks.TaskHandle` yields None if it was
        superseded.
        """
        if background:
            return self.runner.submit_exclusive("recluster", self._recluster_task)
        return self.clusters.run()

    def _recluster_task(self, token: CancellationToken) -> list[Cluster] | None:
        return self.clusters.run(should_stop=lambda: token.cancelled)

    def recluster_if_needed(self, background: bool = False) -> list[Cluster] | TaskHandle | None:
        """Recluster only when the embedded library grew past the configured threshold."""
        count = len(self.store.get_all_items_with_embeddings())
        if not self.clusters.should_recluster(count):
            return None
        return self.recluster(background=background)

    def list_clusters(self) -> list[Cluster]:
        return self.clusters.list_clusters()

    def get_cluster(self, cluster_id: str) -> Cluster | None:
        return self.clusters.get_cluster(cluster_id)

    def merge_clusters(self, target_id: str, source_id: str) -> Cluster:
        return self.clusters.merge_clusters(target_id, source_id)

    def split_cluster(self, cluster_id: str, member_groups: list[list[ItemId]] | None = None) -> list[Cluster]:
        return self.clusters.split_cluster(cluster_id, member_groups)

    def rename_cluster(self, cluster_id: str, label: str | None) -> Cluster:
        return self.clusters.rename_cluster(cluster_id, label)

    # --- Search ---

    def search(self, query: str, filters: SearchFilters | None = None) -> list[Item]:
        return self.searcher.search(query, filters)

    def search_with_scores(self, query: str, filters: SearchFilters | None = None) -> list[SearchResult]:
        return self.searcher.search_with_scores(query, filters)

    def stats(self) -> dict[str, Any]:
        items = self.store.get_all_items()
        return {
            "items": len(items),
            "embedded": sum(1 for item in items if item.has_embedding),
            "indexed": len(self.index),
            "tombstones": self.index.tombstone_count,
            "clusters": len(self.clusters.list_clusters()),
            "clustered": sum(1 for item in items if item.cluster_id is not None),
        }

    def close(self) -> None:
        self._unsubscribe()
        self.runner.shutdown(wait=False)
        self.searcher.close()

"""Hybrid search: keyword and vector paths run in parallel, then fused."""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Any

from ..embeddings import EmbeddingService
from ..embeddings.text import prepare_text
from ..errors import DimensionMismatchError, EmbeddingError
from ..index import HNSWIndex
from ..models import Item, ItemId, SearchFilters, SearchResult
from ..storage import ItemStore
from .filters import matches
from .fusion import RRF_K, FusionStrategy, fuse
from .keyword import keyword_search

logger = logging.getLogger(__name__)


class HybridSearchEngine:
    """Answers free-text queries over the library.

    The keyword path scores token matches in item text; the vector path
    embeds the query and asks the index for its nearest neighbours. Both run
    under one shared ``path_timeout``; a path that fails or misses it
    contributes nothing, so a broken embedding model degrades search to
    keyword-only.

    Vector calls run on their own pool of ``vector_workers`` threads. While
    every one of them is still busy (a hung model), new searches skip the
    vector path instead of queueing behind it.
    """

    def __init__(
        self,
        store: ItemStore,
        index: HNSWIndex,
        embedding_service: EmbeddingService,
        fusion: FusionStrategy | str = FusionStrategy.RRF,
        rrf_k: int = RRF_K,
        vector_top_k: int = 20,
        max_results: int = 100,
        keyword_weight: float = 0.5,
        vector_weight: float = 0.5,
        path_timeout: float | None = 2.0,
        vector_workers: int = 4,
    ):
        self.store = store
        self.index = index
        self.embedding_service = embedding_service
        self.fusion = FusionStrategy(fusion)
        self.rrf_k = rrf_k
        self.vector_top_k = vector_top_k
        self.max_results = max_results
        self.keyword_weight = keyword_weight
        self.vector_weight = vector_weight
        self.path_timeout = path_timeout
        self.vector_workers = max(1, vector_workers)
        self._keyword_pool = ThreadPoolExecutor(max_workers=2, thread_name_prefix="pvl-search-keyword")
        self._vector_pool = ThreadPoolExecutor(max_workers=self.vector_workers, thread_name_prefix="pvl-search-vector")
        self._vector_busy = 0
        self._busy_lock = threading.Lock()

    @classmethod
    def from_config(
        cls,
        store: ItemStore,
        index: HNSWIndex,
        embedding_service: EmbeddingService,
        config: dict[str, Any],
    ) -> "HybridSearchEngine":
        cfg = config.get("search", {})
        return cls(
            store,
            index,
            embedding_service,
            fusion=cfg.get("fusion", "rrf"),
            rrf_k=cfg.get("rrf_k", RRF_K),
            vector_top_k=cfg.get("vector_top_k", 20),
            max_results=cfg.get("max_results", 100),
            keyword_weight=cfg.get("keyword_weight", 0.5),
            vector_weight=cfg.get("vector_weight", 0.5),
            path_timeout=cfg.get("path_timeout", 2.0),
            vector_workers=cfg.get("vector_workers", 4),
        )

    def search(self, query: str, filters: SearchFilters | None = None) -> list[Item]:
        """Items matching ``query``, best first.

        Queries that are empty once URLs, HTML and whitespace are stripped
        give ``[]``. A stopword-only query still runs the vector path.
        """
        return [result.item for result in self.search_with_scores(query, filters)]

    def search_with_scores(self, query: str, filters: SearchFilters | None = None) -> list[SearchResult]:
        """Like :meth:`search`, keeping the fused score and per-path ranks."""
        if not prepare_text(query):
            return []

        keyword_future = self._keyword_pool.submit(self._keyword_path, query)
        vector_future = self._submit_vector(query)
        pending = [f for f in (keyword_future, vector_future) if f is not None]
        wait(pending, timeout=self.path_timeout)
        keyword_results = self._collect(keyword_future, "keyword")
        vector_results = self._collect(vector_future, "vector") if vector_future is not None else []

        fused = fuse(
            self.fusion,
            keyword_results,
            vector_results,
            rrf_k=self.rrf_k,
            keyword_weight=self.keyword_weight,
            vector_weight=self.vector_weight,
        )
        keyword_rank = {item_id: rank for rank, (item_id, _) in enumerate(keyword_results, start=1)}
        vector_rank = {item_id: rank for rank, (item_id, _) in enumerate(vector_results, start=1)}

        results: list[SearchResult] = []
        for item_id, score in fused:
            item = self.store.get_item(item_id)
            if item is None:
                logger.warning(f"Skipping stale search hit {item_id!r} (not in item store)")
                continue
            if filters is not None and not matches(item, filters):
                continue
            results.append(SearchResult(
                item=item,
                score=score,
                keyword_rank=keyword_rank.get(item_id),
                vector_rank=vector_rank.get(item_id),
            ))
            if len(results) >= self.max_results:
                break
        return results

    def close(self) -> None:
        self._keyword_pool.shutdown(wait=False, cancel_futures=True)
        self._vector_pool.shutdown(wait=False, cancel_futures=True)

    def _submit_vector(self, query: str) -> Future | None:
        with self._busy_lock:
            if self._vector_busy >= self.vector_workers:
                logger.warning("Vector search workers are all busy, using keyword results only")
                return None
            self._vector_busy += 1
        future = self._vector_pool.submit(self._vector_path, query)
        future.add_done_callback(self._vector_finished)
        return future

    def _vector_finished(self, future: Future) -> None:
        with self._busy_lock:
            self._vector_busy -= 1

    def _collect(self, future: Future, name: str) -> list[tuple[ItemId, float]]:
        """Result of a path that had its chance to finish; ``[]`` if it did not or failed."""
        if not future.done():
            future.cancel()
            logger.warning(f"Search {name} path timed out after {self.path_timeout}s")
            return []
        try:
            return future.result()
        except Exception as e:
            logger.warning(f"Search {name} path failed: {e!r}")
            return []

    def _keyword_path(self, query: str) -> list[tuple[ItemId, float]]:
        return keyword_search(query, self.store.get_all_items())

    def _vector_path(self, query: str) -> list[tuple[ItemId, float]]:
        if len(self.index) == 0:
            return []
        try:
            vector = self.embedding_service.embed(query)
            return self.index.query(vector, self.vector_top_k)
        except (EmbeddingError, DimensionMismatchError) as e:
            logger.warning(f"Vector search unavailable, using keyword results only: {e}")
            return []

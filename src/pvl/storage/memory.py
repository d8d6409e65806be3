"""In-memory item store."""

import threading

from ..models import Cluster, Item, ItemId
from .base import ItemStore


class InMemoryItemStore(ItemStore):
    """Dict-backed store. Items are kept and returned by reference."""

    def __init__(self, items: list[Item] | None = None):
        super().__init__()
        self._lock = threading.RLock()
        self._items: dict[ItemId, Item] = {}
        self._clusters: list[Cluster] = []
        self._run_item_count: int | None = None
        for item in items or []:
            self._items[item.id] = item

    def get_all_items(self) -> list[Item]:
        with self._lock:
            return list(self._items.values())

    def get_item(self, item_id: ItemId) -> Item | None:
        with self._lock:
            return self._items.get(item_id)

    def count(self) -> int:
        with self._lock:
            return len(self._items)

    def _put_item(self, item: Item) -> bool:
        with self._lock:
            created = item.id not in self._items
            self._items[item.id] = item
            self._changed()
            return created

    def _delete_item(self, item_id: ItemId) -> bool:
        with self._lock:
            removed = self._items.pop(item_id, None) is not None
            if removed:
                self._changed()
            return removed

    def update_embedding(self, item_id: ItemId, vector: list[float] | None) -> None:
        with self._lock:
            item = self._items.get(item_id)
            if item is None:
                raise KeyError(item_id)
            item.embedding = [float(x) for x in vector] if vector is not None else None
            self._changed()

    def update_cluster_assignment(self, item_id: ItemId, cluster_id: str | None) -> None:
        with self._lock:
            item = self._items.get(item_id)
            if item is None:
                raise KeyError(item_id)
            item.cluster_id = cluster_id
            self._changed()

    def save_clusters(self, clusters: list[Cluster], run_item_count: int | None = None) -> None:
        with self._lock:
            self._clusters = list(clusters)
            if run_item_count is not None:
                self._run_item_count = run_item_count
            self._changed()

    def load_clusters(self) -> list[Cluster]:
        with self._lock:
            return list(self._clusters)

    def load_run_item_count(self) -> int | None:
        with self._lock:
            return self._run_item_count

    def _changed(self) -> None:
        """Hook for persistent subclasses."""

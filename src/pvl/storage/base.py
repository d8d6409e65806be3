"""Abstract base class for item stores and factory function."""

import logging
import threading
from abc import ABC, abstractmethod
from contextlib import nullcontext
from dataclasses import dataclass
from typing import Any, Callable

from ..models import Cluster, Item, ItemId

logger = logging.getLogger(__name__)

ITEM_ADDED = "added"
ITEM_REMOVED = "removed"
ITEM_UPDATED = "updated"


@dataclass(frozen=True)
class ItemEvent:
    """Change notification sent to store subscribers."""
    kind: str
    item_id: ItemId


class ItemStore(ABC):
    """Common interface for the persistence layer the engine runs against.

    The store owns item metadata and the cluster table. Subscribers are told
    about adds, removals and metadata updates so the index can follow.
    Embedding and cluster-assignment writes made by the engine itself do not
    notify.
    """

    def __init__(self):
        self._subscribers: list[Callable[[ItemEvent], None]] = []
        self._sub_lock = threading.Lock()

    @abstractmethod
    def get_all_items(self) -> list[Item]:
        """Every item in the store, in insertion order."""

    @abstractmethod
    def get_item(self, item_id: ItemId) -> Item | None:
        """Return the item or None."""

    @abstractmethod
    def _put_item(self, item: Item) -> bool:
        """Insert or replace. Returns True when the id was new."""

    @abstractmethod
    def _delete_item(self, item_id: ItemId) -> bool:
        """Delete. Returns True when the item existed."""

    @abstractmethod
    def update_embedding(self, item_id: ItemId, vector: list[float] | None) -> None:
        """Persist a computed embedding (or clear it)."""

    @abstractmethod
    def update_cluster_assignment(self, item_id: ItemId, cluster_id: str | None) -> None:
        """Persist an item's cluster reference."""

    @abstractmethod
    def save_clusters(self, clusters: list[Cluster], run_item_count: int | None = None) -> None:
        """Replace the stored cluster table.

        ``run_item_count`` is the number of embedded items the clustering pass
        saw; None keeps the stored value (manual edits).
        """

    @abstractmethod
    def load_clusters(self) -> list[Cluster]:
        """Return the stored cluster table."""

    @abstractmethod
    def load_run_item_count(self) -> int | None:
        """Embedded item count recorded by the last clustering pass, or None."""

    def get_all_items_with_embeddings(self) -> list[Item]:
        return [item for item in self.get_all_items() if item.has_embedding]

    def count(self) -> int:
        return len(self.get_all_items())

    def add_item(self, item: Item) -> None:
        created = self._put_item(item)
        self._notify(ItemEvent(ITEM_ADDED if created else ITEM_UPDATED, item.id))

    def add_items(self, items: list[Item]) -> None:
        for item in items:
            self.add_item(item)

    def remove_item(self, item_id: ItemId) -> bool:
        removed = self._delete_item(item_id)
        if removed:
            self._notify(ItemEvent(ITEM_REMOVED, item_id))
        return removed

    def batch(self):
        """Group several writes. Persistent stores write once when the block exits."""
        return nullcontext(self)

    def subscribe(self, callback: Callable[[ItemEvent], None]) -> Callable[[], None]:
        """Register ``callback`` for change events. Returns an unsubscribe function."""
        with self._sub_lock:
            self._subscribers.append(callback)

        def _unsubscribe():
            with self._sub_lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return _unsubscribe

    def _notify(self, event: ItemEvent) -> None:
        with self._sub_lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(event)
            except Exception as e:
                logger.warning(f"Subscriber failed on {event.kind} {event.item_id!r}: {e}")


def get_item_store(config: dict[str, Any]) -> ItemStore:
    """Factory: return the right item store based on config."""
    backend = config.get("storage_backend", "json")

    if backend == "memory":
        from .memory import InMemoryItemStore
        return InMemoryItemStore()
    elif backend == "json":
        from pathlib import Path
        from .json_store import JsonItemStore
        return JsonItemStore(Path(config["library_path"]) / "library.json")
    else:
        raise ValueError(f"Unknown storage_backend: {backend}")

"""JSON-file item store used by the CLI."""

import json
import logging
from contextlib import contextmanager
from pathlib import Path

from ..models import Cluster, Item
from .memory import InMemoryItemStore

logger = logging.getLogger(__name__)


class JsonItemStore(InMemoryItemStore):
    """In-memory store mirrored to a single JSON file.

    Every mutation rewrites the file unless it happens inside :meth:`batch`,
    in which case the file is written once when the block exits.
    """

    def __init__(self, path: str | Path):
        super().__init__()
        self.path = Path(path)
        self._batch_depth = 0
        self._dirty = False
        self._load()

    def _load(self) -> None:
        if not self.path.exists():
            return
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise ValueError(f"Library file {self.path} is not valid JSON: {e}") from e
        for raw in data.get("items", []):
            item = Item.from_dict(raw)
            self._items[item.id] = item
        self._clusters = [Cluster.from_dict(raw) for raw in data.get("clusters", [])]
        self._run_item_count = data.get("run_item_count")
        logger.debug(f"Loaded {len(self._items)} item(s) from {self.path}")

    @contextmanager
    def batch(self):
        with self._lock:
            self._batch_depth += 1
        try:
            yield self
        finally:
            with self._lock:
                self._batch_depth -= 1
                if self._batch_depth == 0 and self._dirty:
                    self.flush()

    def flush(self) -> None:
        with self._lock:
            payload = {
                "items": [item.to_dict() for item in self._items.values()],
                "clusters": [cluster.to_dict() for cluster in self._clusters],
                "run_item_count": self._run_item_count,
            }
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp = self.path.with_suffix(self.path.suffix + ".tmp")
            tmp.write_text(json.dumps(payload, indent=2), encoding="utf-8")
            tmp.replace(self.path)
            self._dirty = False

    def _changed(self) -> None:
        self._dirty = True
        if self._batch_depth == 0:
            self.flush()

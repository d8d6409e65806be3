"""HNSW (Hierarchical Navigable Small World) vector index.

Builds a multi-layer proximity graph over cosine-normalized vectors. Upper
layers are sparse express lanes used for greedy descent; layer 0 holds every
live node. Deleted nodes are tombstoned and disconnected, their former
neighbours are rewired to the closest remaining live nodes, and
:meth:`HNSWIndex.compact` reclaims their storage.

Internally nodes are dense integers in insertion order; external item ids
(``str`` or ``int``) are only used at the API boundary.
"""

import heapq
import logging
import math
from pathlib import Path
from typing import Any, Iterable

import numpy as np

from ..errors import DimensionMismatchError, SnapshotError
from .lock import ReadWriteLock

logger = logging.getLogger(__name__)


def id_sort_key(item_id) -> tuple:
    """Order mixed int/str ids: ints first, then strings, each ascending."""
    return (isinstance(item_id, str), item_id)


class HNSWIndex:
    """Approximate nearest-neighbour index with cosine similarity."""

    def __init__(
        self,
        dim: int,
        m: int = 16,
        ef_construction: int = 200,
        ef_search: int = 100,
        seed: int | None = 42,
    ):
        if dim <= 0:
            raise ValueError("dim must be positive")
        if m < 2:
            raise ValueError("m must be at least 2")
        self.dim = dim
        self.m = m
        self.m_max0 = m * 2  # max connections at layer 0
        self.ef_construction = ef_construction
        self.ef_search = ef_search
        self.seed = seed
        self._ml = 1.0 / math.log(m)
        self._lock = ReadWriteLock()
        self._reset()

    def _reset(self) -> None:
        self._rng = np.random.default_rng(self.seed)
        self._vectors = np.zeros((0, self.dim), dtype=np.float32)
        self._ids: list[Any] = []
        self._node_of: dict[Any, int] = {}
        self._levels: list[int] = []
        self._links: list[list[list[int]]] = []
        self._deleted: set[int] = set()
        self._entry: int | None = None
        self._max_level = -1

    # --- Public API ---

    def __len__(self) -> int:
        with self._lock.read():
            return len(self._node_of)

    def __contains__(self, item_id) -> bool:
        with self._lock.read():
            return item_id in self._node_of

    @property
    def tombstone_count(self) -> int:
        with self._lock.read():
            return len(self._deleted)

    def ids(self) -> list:
        """Live ids, in ascending id order."""
        with self._lock.read():
            return sorted(self._node_of, key=id_sort_key)

    def get_vector(self, item_id) -> np.ndarray:
        """Return a copy of the stored (unit-normalized) vector for ``item_id``."""
        with self._lock.read():
            node = self._node_of[item_id]
            return self._vectors[node].copy()

    def insert(self, item_id, vector) -> None:
        """Insert ``vector`` under ``item_id``; an existing id is replaced.

        Raises:
            DimensionMismatchError: ``vector`` does not have ``dim`` components.
            ValueError: ``vector`` is all zeros or not finite.
        """
        q = self._prepare(vector)
        with self._lock.write():
            if item_id in self._node_of:
                self._remove_node(self._node_of.pop(item_id))
            self._insert_node(item_id, q)

    def insert_many(self, items: Iterable[tuple[Any, Any]]) -> int:
        """Insert ``(id, vector)`` pairs in order. Returns how many were inserted."""
        count = 0
        for item_id, vector in items:
            self.insert(item_id, vector)
            count += 1
        return count

    def remove(self, item_id) -> None:
        """Tombstone ``item_id`` and rewire its neighbours.

        Raises:
            KeyError: ``item_id`` is not in the index.
        """
        with self._lock.write():
            if item_id not in self._node_of:
                raise KeyError(item_id)
            self._remove_node(self._node_of.pop(item_id))

    def discard(self, item_id) -> bool:
        """Remove ``item_id`` if present. Returns whether anything was removed."""
        with self._lock.write():
            node = self._node_of.pop(item_id, None)
            if node is None:
                return False
            self._remove_node(node)
            return True

    def query(self, vector, k: int) -> list[tuple[Any, float]]:
        """Return up to ``k`` ``(id, cosine similarity)`` pairs, best first.

        Ties are broken by ascending id. An empty index yields ``[]``.

        Raises:
            DimensionMismatchError: ``vector`` does not have ``dim`` components.
        """
        if k <= 0:
            return []
        q = np.asarray(vector, dtype=np.float32).reshape(-1)
        if q.shape[0] != self.dim:
            raise DimensionMismatchError(self.dim, q.shape[0])
        norm = float(np.linalg.norm(q))
        if norm == 0 or not math.isfinite(norm):
            return []
        q = q / norm

        with self._lock.read():
            if self._entry is None:
                return []
            ep = self._entry
            for layer in range(self._max_level, 0, -1):
                ep = self._greedy_closest(q, ep, layer)
            found = self._search_layer(q, [ep], max(self.ef_search, k), 0)
            hits = [(self._ids[node], sim) for sim, node in found if node not in self._deleted]

        hits.sort(key=lambda h: (-h[1], id_sort_key(h[0])))
        return [(item_id, float(sim)) for item_id, sim in hits[:k]]

    def compact(self) -> int:
        """Physically drop tombstoned nodes. Returns the number reclaimed."""
        with self._lock.write():
            if not self._deleted:
                return 0
            reclaimed = len(self._deleted)
            live = [n for n in range(len(self._ids)) if n not in self._deleted]
            remap = {old: new for new, old in enumerate(live)}

            self._vectors = self._vectors[live].copy() if live else np.zeros((0, self.dim), dtype=np.float32)
            self._ids = [self._ids[n] for n in live]
            self._levels = [self._levels[n] for n in live]
            self._links = [
                [[remap[nb] for nb in layer if nb in remap] for layer in self._links[n]]
                for n in live
            ]
            self._node_of = {item_id: i for i, item_id in enumerate(self._ids)}
            self._deleted = set()
            self._entry = remap.get(self._entry) if self._entry is not None else None
            logger.debug(f"Compacted index, reclaimed {reclaimed} tombstone(s)")
            return reclaimed

    def clear(self) -> None:
        with self._lock.write():
            self._reset()

    def rebuild(self, items: Iterable[tuple[Any, Any]]) -> int:
        """Drop everything (including the RNG state) and insert ``items`` in order.

        Entries with a wrong dimension or a zero or non-finite vector are
        logged and left out; the rest of the rebuild goes ahead.
        """
        prepared = []
        for item_id, vector in items:
            try:
                prepared.append((item_id, self._prepare(vector)))
            except (DimensionMismatchError, ValueError) as e:
                logger.warning(f"Not indexing item {item_id!r}: {e}")
        with self._lock.write():
            self._reset()
            for item_id, q in prepared:
                if item_id in self._node_of:
                    self._remove_node(self._node_of.pop(item_id))
                self._insert_node(item_id, q)
            if self._deleted:
                logger.debug("Rebuild input repeated ids; later vectors won")
        return len(self)

    # --- Persistence ---

    def to_bytes(self) -> bytes:
        from .snapshot import encode_snapshot

        with self._lock.read():
            return encode_snapshot(self)

    @classmethod
    def from_bytes(cls, data: bytes) -> "HNSWIndex":
        from .snapshot import decode_snapshot

        return decode_snapshot(data)

    def save(self, path: str | Path) -> None:
        """Atomically write a snapshot to ``path``."""
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        tmp = target.with_suffix(target.suffix + ".tmp")
        tmp.write_bytes(self.to_bytes())
        tmp.replace(target)

    @classmethod
    def load(cls, path: str | Path) -> "HNSWIndex":
        """Load a snapshot written by :meth:`save`.

        Raises:
            SnapshotError: The file is missing or corrupt.
        """
        target = Path(path)
        try:
            data = target.read_bytes()
        except OSError as e:
            raise SnapshotError(f"Cannot read index snapshot {target}: {e}") from e
        return cls.from_bytes(data)

    def _export_state(self) -> tuple[dict[str, Any], np.ndarray]:
        meta = {
            "ids": list(self._ids),
            "levels": list(self._levels),
            "links": self._links,
            "deleted": sorted(self._deleted),
            "entry": self._entry,
            "max_level": self._max_level,
            "seed": self.seed,
            "rng_state": self._rng.bit_generator.state,
        }
        return meta, self._vectors[: len(self._ids)]

    def _restore_state(self, meta: dict[str, Any], vectors: np.ndarray) -> None:
        self._reset()
        self._rng.bit_generator.state = meta["rng_state"]
        self._vectors = np.ascontiguousarray(vectors, dtype=np.float32)
        self._ids = list(meta["ids"])
        self._levels = [int(level) for level in meta["levels"]]
        self._links = [[list(layer) for layer in node_links] for node_links in meta["links"]]
        self._deleted = set(meta["deleted"])
        self._entry = meta["entry"]
        self._max_level = int(meta["max_level"])
        self._node_of = {
            item_id: node for node, item_id in enumerate(self._ids) if node not in self._deleted
        }

    # --- Internals (callers hold the lock) ---

    def _prepare(self, vector) -> np.ndarray:
        q = np.asarray(vector, dtype=np.float32).reshape(-1)
        if q.shape[0] != self.dim:
            raise DimensionMismatchError(self.dim, q.shape[0])
        norm = float(np.linalg.norm(q))
        if norm == 0 or not math.isfinite(norm):
            raise ValueError("Cannot index a zero or non-finite vector")
        return q / norm

    def _random_level(self) -> int:
        return int(-math.log(1.0 - self._rng.random()) * self._ml)

    def _ensure_capacity(self, n: int) -> None:
        if self._vectors.shape[0] >= n:
            return
        new_cap = max(n, self._vectors.shape[0] * 2, 64)
        grown = np.zeros((new_cap, self.dim), dtype=np.float32)
        grown[: self._vectors.shape[0]] = self._vectors
        self._vectors = grown

    def _sims(self, q: np.ndarray, nodes: list[int]) -> np.ndarray:
        return self._vectors[nodes] @ q

    def _insert_node(self, item_id, q: np.ndarray) -> int:
        node = len(self._ids)
        self._ensure_capacity(node + 1)
        self._vectors[node] = q
        level = self._random_level()
        self._ids.append(item_id)
        self._levels.append(level)
        self._links.append([[] for _ in range(level + 1)])
        self._node_of[item_id] = node

        if self._entry is None:
            self._entry = node
            self._max_level = level
            return node

        ep = self._entry
        for layer in range(self._max_level, level, -1):
            ep = self._greedy_closest(q, ep, layer)

        entry_points = [ep]
        for layer in range(min(level, self._max_level), -1, -1):
            found = self._search_layer(q, entry_points, self.ef_construction, layer)
            cap = self.m_max0 if layer == 0 else self.m
            neighbours = self._select_neighbours(found, self.m)
            self._links[node][layer] = neighbours
            for nb in neighbours:
                nb_links = self._links[nb][layer]
                nb_links.append(node)
                if len(nb_links) > cap:
                    self._links[nb][layer] = self._shrink(nb, nb_links, cap)
            entry_points = [n for _, n in found]

        if level > self._max_level:
            self._entry = node
            self._max_level = level
        return node

    def _remove_node(self, node: int) -> None:
        self._deleted.add(node)
        for layer in range(self._levels[node] + 1):
            former = [n for n in self._links[node][layer] if n not in self._deleted]
            cap = self.m_max0 if layer == 0 else self.m
            for other in range(len(self._ids)):
                if other in self._deleted or self._levels[other] < layer:
                    continue
                links = self._links[other][layer]
                if node not in links:
                    continue
                links.remove(node)
                candidates = set(links)
                candidates.update(n for n in former if n != other)
                if not candidates:
                    self._links[other][layer] = []
                    continue
                base = self._vectors[other]
                ordered = sorted(candidates)
                sims = self._sims(base, ordered)
                scored = list(zip(sims.tolist(), ordered))
                self._links[other][layer] = self._select_neighbours(scored, cap)
            self._links[node][layer] = []

        if node == self._entry:
            self._pick_new_entry()

    def _pick_new_entry(self) -> None:
        best = None
        best_level = -1
        for n, level in enumerate(self._levels):
            if n in self._deleted:
                continue
            if level > best_level:
                best, best_level = n, level
        self._entry = best
        self._max_level = best_level

    def _greedy_closest(self, q: np.ndarray, ep: int, layer: int) -> int:
        current = ep
        current_sim = float(self._vectors[current] @ q)
        changed = True
        while changed:
            changed = False
            links = self._links[current][layer]
            if not links:
                break
            sims = self._sims(q, links)
            for sim, nb in zip(sims.tolist(), links):
                if sim > current_sim or (sim == current_sim and nb < current):
                    current, current_sim = nb, sim
                    changed = True
        return current

    def _search_layer(self, q: np.ndarray, entry_points: list[int], ef: int, layer: int) -> list[tuple[float, int]]:
        """Beam search on one layer. Returns ``(similarity, node)`` pairs, best first."""
        visited = set(entry_points)
        candidates: list[tuple[float, int]] = []  # max-heap via negated sim
        results: list[tuple[float, int]] = []  # min-heap of the current best ``ef``
        sims = self._sims(q, entry_points)
        for sim, node in zip(sims.tolist(), entry_points):
            heapq.heappush(candidates, (-sim, node))
            heapq.heappush(results, (sim, -node))
            if len(results) > ef:
                heapq.heappop(results)

        while candidates:
            neg_sim, node = heapq.heappop(candidates)
            if len(results) >= ef and -neg_sim < results[0][0]:
                break
            fresh = [nb for nb in self._links[node][layer] if nb not in visited]
            if not fresh:
                continue
            visited.update(fresh)
            for sim, nb in zip(self._sims(q, fresh).tolist(), fresh):
                if len(results) < ef or sim > results[0][0]:
                    heapq.heappush(candidates, (-sim, nb))
                    heapq.heappush(results, (sim, -nb))
                    if len(results) > ef:
                        heapq.heappop(results)

        return sorted(((sim, -neg_node) for sim, neg_node in results), key=lambda t: (-t[0], t[1]))

    def _select_neighbours(self, scored: list[tuple[float, int]], m: int) -> list[int]:
        """Pick up to ``m`` diverse neighbours from ``(similarity, node)`` candidates.

        A candidate is kept when it is closer to the base node than to any
        neighbour already kept; the remaining slots are filled with the best
        pruned candidates.
        """
        ordered = sorted(scored, key=lambda t: (-t[0], t[1]))
        selected: list[int] = []
        pruned: list[int] = []
        for sim, node in ordered:
            if len(selected) >= m:
                break
            if selected:
                to_selected = self._sims(self._vectors[node], selected)
                if float(to_selected.max()) > sim:
                    pruned.append(node)
                    continue
            selected.append(node)
        for node in pruned:
            if len(selected) >= m:
                break
            selected.append(node)
        return selected

    def _shrink(self, base: int, links: list[int], cap: int) -> list[int]:
        sims = self._sims(self._vectors[base], links)
        return self._select_neighbours(list(zip(sims.tolist(), links)), cap)

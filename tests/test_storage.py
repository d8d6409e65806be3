"""Tests for item stores and change notifications."""

import json

import pytest

from pvl.models import Cluster, Item
from pvl.storage import (
    ITEM_ADDED,
    ITEM_REMOVED,
    ITEM_UPDATED,
    InMemoryItemStore,
    JsonItemStore,
    get_item_store,
)


def _make_item(item_id=1, title="Knife skills"):
    return Item(id=item_id, title=title)


def test_notifications():
    store = InMemoryItemStore()
    events = []
    store.subscribe(events.append)

    store.add_item(_make_item())
    store.add_item(_make_item(title="Knife skills 2"))
    assert store.remove_item(1) is True
    assert store.remove_item(1) is False

    assert [(e.kind, e.item_id) for e in events] == [
        (ITEM_ADDED, 1),
        (ITEM_UPDATED, 1),
        (ITEM_REMOVED, 1),
    ]


def test_unsubscribe():
    store = InMemoryItemStore()
    events = []
    unsubscribe = store.subscribe(events.append)
    unsubscribe()
    store.add_item(_make_item())
    assert events == []


def test_failing_subscriber_does_not_block_others():
    store = InMemoryItemStore()
    events = []

    def _broken(event):
        raise RuntimeError("subscriber bug")

    store.subscribe(_broken)
    store.subscribe(events.append)
    store.add_item(_make_item())
    assert len(events) == 1
    assert store.get_item(1) is not None


def test_embedding_and_cluster_updates():
    store = InMemoryItemStore([_make_item()])
    store.update_embedding(1, [0.5, 0.5])
    store.update_cluster_assignment(1, "c-1")
    item = store.get_item(1)
    assert item.embedding == [0.5, 0.5]
    assert item.cluster_id == "c-1"
    assert store.get_all_items_with_embeddings() == [item]
    with pytest.raises(KeyError):
        store.update_embedding(2, [1.0])
    with pytest.raises(KeyError):
        store.update_cluster_assignment(2, None)


def test_json_store_round_trip(tmp_path):
    path = tmp_path / "library.json"
    store = JsonItemStore(path)
    store.add_item(_make_item(1, "Knife skills"))
    store.add_item(_make_item("yt-2", "Pasta from scratch"))
    store.update_embedding(1, [0.1, 0.2, 0.3])
    store.update_cluster_assignment(1, "c-1")
    store.save_clusters([Cluster(id="c-1", label="Knife", centroid=[0.1, 0.2, 0.3], item_count=1, member_ids=[1])])

    reopened = JsonItemStore(path)
    assert [item.id for item in reopened.get_all_items()] == [1, "yt-2"]
    assert reopened.get_item(1).embedding == [0.1, 0.2, 0.3]
    assert reopened.get_item(1).cluster_id == "c-1"
    clusters = reopened.load_clusters()
    assert clusters[0].id == "c-1"
    assert clusters[0].member_ids == [1]
    assert reopened.load_run_item_count() is None


def test_json_store_keeps_run_item_count(tmp_path):
    path = tmp_path / "library.json"
    store = JsonItemStore(path)
    store.save_clusters([], run_item_count=40)
    store.save_clusters([])
    assert JsonItemStore(path).load_run_item_count() == 40


def test_json_store_batch_writes_once(tmp_path):
    store = JsonItemStore(tmp_path / "library.json")
    writes = []
    original_flush = store.flush

    def _counting_flush():
        writes.append(1)
        original_flush()

    store.flush = _counting_flush
    with store.batch():
        for i in range(5):
            store.add_item(_make_item(i, f"item {i}"))
    assert len(writes) == 1
    data = json.loads((tmp_path / "library.json").read_text())
    assert len(data["items"]) == 5


def test_json_store_rejects_corrupt_file(tmp_path):
    path = tmp_path / "library.json"
    path.write_text("{not json")
    with pytest.raises(ValueError):
        JsonItemStore(path)


def test_get_item_store(tmp_path):
    assert isinstance(get_item_store({"storage_backend": "memory"}), InMemoryItemStore)
    store = get_item_store({"storage_backend": "json", "library_path": str(tmp_path)})
    assert isinstance(store, JsonItemStore)
    assert store.path == tmp_path / "library.json"
    with pytest.raises(ValueError):
        get_item_store({"storage_backend": "chromadb"})

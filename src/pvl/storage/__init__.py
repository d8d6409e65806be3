"""Storage abstraction for the item library."""

from .base import ITEM_ADDED, ITEM_REMOVED, ITEM_UPDATED, ItemEvent, ItemStore, get_item_store
from .json_store import JsonItemStore
from .memory import InMemoryItemStore

__all__ = [
    "ITEM_ADDED",
    "ITEM_REMOVED",
    "ITEM_UPDATED",
    "InMemoryItemStore",
    "ItemEvent",
    "ItemStore",
    "JsonItemStore",
    "get_item_store",
]

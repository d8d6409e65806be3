"""Data models used throughout PVL."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import numpy as np

from .embeddings.text import build_text

ItemId = str | int


def as_utc(value: datetime | None) -> datetime | None:
    """Timezone-aware UTC copy of ``value``. Naive datetimes are taken as local time."""
    if value is None:
        return None
    return value.astimezone(timezone.utc)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _parse_datetime(value: str) -> datetime:
    # fromisoformat only accepts a trailing "Z" from Python 3.11 on.
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return datetime.fromisoformat(value)


@dataclass
class Item:
    """One library entry (a YouTube video or a local file)."""
    id: ItemId
    title: str
    description: str = ""
    tags: list[str] = field(default_factory=list)
    channel_title: str | None = None
    ocr_text: str | None = None
    duration: float = 0.0
    source: str = "youtube"  # "youtube" or "local"
    published_at: datetime | None = None
    added_at: datetime = field(default_factory=utc_now)
    text_content: str = ""
    embedding: list[float] | None = None
    cluster_id: str | None = None

    def __post_init__(self):
        self.published_at = as_utc(self.published_at)
        self.added_at = as_utc(self.added_at)
        if not self.text_content:
            self.text_content = build_text(
                self.title,
                channel_name=self.channel_title,
                tags=self.tags or None,
                description=self.description or None,
                ocr_text=self.ocr_text,
            )

    @property
    def recency(self) -> datetime:
        return self.published_at or self.added_at

    @property
    def has_embedding(self) -> bool:
        return self.embedding is not None and len(self.embedding) > 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "tags": list(self.tags),
            "channel_title": self.channel_title,
            "ocr_text": self.ocr_text,
            "duration": self.duration,
            "source": self.source,
            "published_at": self.published_at.isoformat() if self.published_at else None,
            "added_at": self.added_at.isoformat(),
            "text_content": self.text_content,
            "embedding": list(self.embedding) if self.embedding is not None else None,
            "cluster_id": self.cluster_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Item":
        data = dict(data)
        for key in ("published_at", "added_at"):
            if isinstance(data.get(key), str):
                data[key] = _parse_datetime(data[key])
        if data.get("added_at") is None:
            data.pop("added_at", None)
        known = {f for f in cls.__dataclass_fields__}
        return cls(**{k: v for k, v in data.items() if k in known})


@dataclass
class Cluster:
    """A detected topic group. Members are referenced by id only."""
    id: str
    label: str
    centroid: list[float]
    item_count: int = 0
    confidence_score: float = 0.0
    custom_label: str | None = None
    member_ids: list[ItemId] = field(default_factory=list)
    updated_at: datetime = field(default_factory=utc_now)

    @property
    def display_label(self) -> str:
        return self.custom_label or self.label

    def similarity(self, embedding) -> float:
        """Cosine similarity between this cluster's centroid and an embedding."""
        a = np.asarray(self.centroid, dtype=np.float64)
        b = np.asarray(embedding, dtype=np.float64)
        if a.shape != b.shape:
            return 0.0
        magnitude = np.linalg.norm(a) * np.linalg.norm(b)
        if magnitude == 0:
            return 0.0
        return float(np.dot(a, b) / magnitude)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "label": self.label,
            "custom_label": self.custom_label,
            "centroid": list(self.centroid),
            "item_count": self.item_count,
            "confidence_score": self.confidence_score,
            "member_ids": list(self.member_ids),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Cluster":
        data = dict(data)
        if isinstance(data.get("updated_at"), str):
            data["updated_at"] = _parse_datetime(data["updated_at"])
        if data.get("updated_at") is None:
            data.pop("updated_at", None)
        return cls(**data)


@dataclass
class SearchFilters:
    """Post-fusion filters. Unset fields do not filter."""
    min_duration: float | None = None
    max_duration: float | None = None
    published_after: datetime | None = None
    published_before: datetime | None = None
    source: str | None = None
    cluster_id: str | None = None


@dataclass
class SearchResult:
    """A fused search hit."""
    item: Item
    score: float
    keyword_rank: int | None = None
    vector_rank: int | None = None

"""Keyword matching over item text."""

from ..embeddings.text import tokenize
from ..index import id_sort_key
from ..models import Item, ItemId


def query_tokens(query: str) -> list[str]:
    """Distinct meaningful tokens of a query, in order of first appearance."""
    return list(dict.fromkeys(tokenize(query)))


def keyword_search(query: str, items: list[Item]) -> list[tuple[ItemId, float]]:
    """Score items by how many query tokens appear in their text.

    A token counts once per item when it occurs anywhere in ``text_content``
    (case-insensitive substring match). Items scoring zero are dropped.
    Results are ordered by score, then newest first, then id.
    """
    tokens = query_tokens(query)
    if not tokens:
        return []

    hits: list[tuple[Item, int]] = []
    for item in items:
        text = item.text_content.lower()
        score = sum(1 for tok in tokens if tok in text)
        if score:
            hits.append((item, score))

    hits.sort(key=lambda h: id_sort_key(h[0].id))
    hits.sort(key=lambda h: h[0].recency, reverse=True)
    hits.sort(key=lambda h: h[1], reverse=True)
    return [(item.id, float(score)) for item, score in hits]

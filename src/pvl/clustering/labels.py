"""Human-readable cluster labels from member keyword frequency."""

import hashlib
from typing import Hashable

import numpy as np
from sklearn.feature_extraction.text import CountVectorizer

from ..embeddings.text import STOPWORDS

DEFAULT_LABEL = "Untitled"
TOKEN_PATTERN = r"(?u)\b[^\W\d_]\w{2,}\b"


def top_keywords(texts: list[str], n: int = 3) -> list[str]:
    """Most frequent non-stopword terms across ``texts``, ties broken alphabetically."""
    texts = [t for t in texts if t and t.strip()]
    if not texts:
        return []
    vectorizer = CountVectorizer(lowercase=True, stop_words=list(STOPWORDS), token_pattern=TOKEN_PATTERN)
    try:
        counts = vectorizer.fit_transform(texts)
    except ValueError:
        # Only stopwords or no tokens at all.
        return []
    totals = np.asarray(counts.sum(axis=0)).ravel()
    terms = vectorizer.get_feature_names_out()
    ranked = sorted(zip(terms, totals), key=lambda t: (-int(t[1]), t[0]))
    return [str(term) for term, _ in ranked[:n]]


def make_label(texts: list[str], n_terms: int = 3) -> str:
    """Title-cased, comma-joined top keywords, or ``Untitled``."""
    n_terms = min(max(n_terms, 3), 5)
    keywords = top_keywords(texts, n_terms)
    if not keywords:
        return DEFAULT_LABEL
    return ", ".join(word.title() for word in keywords)


def centroid_tag(centroid) -> str:
    """Short stable tag derived from a centroid."""
    rounded = np.round(np.asarray(centroid, dtype=np.float64), 4)
    return hashlib.sha1(rounded.tobytes()).hexdigest()[:4]


def unique_label(label: str, centroid, taken: set[str]) -> str:
    """Return ``label``, or a tagged variant of it when ``label`` is taken."""
    if label not in taken:
        return label
    tag = centroid_tag(centroid)
    candidate = f"{label} #{tag}"
    suffix = 2
    while candidate in taken:
        candidate = f"{label} #{tag}-{suffix}"
        suffix += 1
    return candidate


def disambiguate(labels: dict[Hashable, str], centroids: dict[Hashable, list[float]]) -> dict[Hashable, str]:
    """Make colliding labels unique.

    Keys are visited in the mapping's order; the first holder of a label
    keeps it unchanged and later holders get a centroid-derived tag.
    """
    taken: set[str] = set()
    out: dict[Hashable, str] = {}
    for key, label in labels.items():
        unique = unique_label(label, centroids[key], taken)
        taken.add(unique)
        out[key] = unique
    return out

"""Embedding generation: text preparation, encoders and the embedding service."""

from .encoder import SentenceTransformerEncoder, TextEncoder
from .service import EmbeddingResult, EmbeddingService
from .text import build_text, prepare_text

__all__ = [
    "EmbeddingResult",
    "EmbeddingService",
    "SentenceTransformerEncoder",
    "TextEncoder",
    "build_text",
    "prepare_text",
]

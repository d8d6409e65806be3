"""Embedding service: text preparation, batching and error translation."""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable

import numpy as np

from ..errors import EmbeddingError, EmptyInputError, InferenceFailedError
from .encoder import TextEncoder
from .text import MAX_TEXT_LENGTH, prepare_text

logger = logging.getLogger(__name__)


@dataclass
class EmbeddingResult:
    """Outcome of embedding one text in a batch. Exactly one of vector/error is set."""
    vector: np.ndarray | None = None
    error: EmbeddingError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class EmbeddingService:
    """Turns text into vectors through an injected :class:`TextEncoder`.

    The service holds no model logic. It cleans and truncates the input,
    rejects empty text before the encoder is called, checks what the encoder
    returns and wraps encoder failures in :class:`EmbeddingError` subclasses.
    """

    def __init__(
        self,
        encoder: TextEncoder,
        max_chars: int = MAX_TEXT_LENGTH,
        batch_concurrency: int = 10,
        dimension: int | None = None,
    ):
        if batch_concurrency < 1:
            raise ValueError("batch_concurrency must be at least 1")
        self.encoder = encoder
        self.max_chars = max_chars
        self.batch_concurrency = batch_concurrency
        self.dimension = dimension

    def embed(self, text: str) -> np.ndarray:
        """Embed a single text.

        Raises:
            EmptyInputError: Nothing is left of ``text`` after cleaning.
            ModelUnavailableError: The encoder's model could not be loaded.
            InferenceFailedError: The encoder failed or returned a bad vector.
        """
        cleaned = prepare_text(text, self.max_chars)
        if not cleaned:
            raise EmptyInputError()

        try:
            raw = self.encoder.encode(cleaned)
        except EmbeddingError:
            raise
        except Exception as e:
            raise InferenceFailedError(e) from e

        return self._check_vector(raw)

    def embed_batch(
        self,
        texts: list[str],
        on_result: Callable[[int, EmbeddingResult], None] | None = None,
    ) -> list[EmbeddingResult]:
        """Embed many texts, at most ``batch_concurrency`` at a time.

        A failure on one text never aborts the others; the returned list holds
        one :class:`EmbeddingResult` per input, in input order.
        """
        if not texts:
            return []

        def _one(text: str) -> EmbeddingResult:
            try:
                return EmbeddingResult(vector=self.embed(text))
            except EmbeddingError as e:
                return EmbeddingResult(error=e)

        results: list[EmbeddingResult] = []
        with ThreadPoolExecutor(max_workers=self.batch_concurrency, thread_name_prefix="pvl-embed") as pool:
            for i, result in enumerate(pool.map(_one, texts)):
                results.append(result)
                if on_result is not None:
                    on_result(i, result)

        failed = sum(1 for r in results if not r.ok)
        if failed:
            logger.info(f"Embedded {len(results) - failed}/{len(results)} texts ({failed} failed)")
        return results

    def _check_vector(self, raw) -> np.ndarray:
        try:
            vector = np.asarray(raw, dtype=np.float32).reshape(-1)
        except (TypeError, ValueError) as e:
            raise InferenceFailedError(e) from e
        if vector.size == 0:
            raise InferenceFailedError("encoder returned an empty vector")
        if not np.all(np.isfinite(vector)):
            raise InferenceFailedError("encoder returned non-finite values")
        if self.dimension is not None and vector.size != self.dimension:
            raise InferenceFailedError(
                f"encoder returned {vector.size} dimensions, expected {self.dimension}"
            )
        return vector

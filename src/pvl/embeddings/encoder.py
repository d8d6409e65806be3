"""Text encoders: the model side of embedding generation."""

import logging
import threading
from typing import Protocol, Sequence

from ..errors import ModelUnavailableError

logger = logging.getLogger(__name__)


class TextEncoder(Protocol):
    """Capability handed to the embedding service. Turns text into floats."""

    def encode(self, text: str) -> Sequence[float]:
        ...


class SentenceTransformerEncoder:
    """Encodes text with a sentence-transformers model, loaded on first use."""

    def __init__(self, model_name: str = "sentence-transformers/all-MiniLM-L6-v2", device: str | None = None):
        self.model_name = model_name
        self.device = device
        self._model = None
        self._load_lock = threading.Lock()

    @property
    def model(self):
        """Lazy-load the embedding model."""
        if self._model is None:
            with self._load_lock:
                if self._model is None:
                    try:
                        from sentence_transformers import SentenceTransformer
                        self._model = SentenceTransformer(self.model_name, device=self.device)
                    except Exception as e:
                        logger.warning(f"Could not load embedding model {self.model_name}: {e}")
                        raise ModelUnavailableError(f"Embedding model {self.model_name} could not be loaded: {e}") from e
                    logger.info(f"Loaded embedding model {self.model_name}")
        return self._model

    @property
    def dimension(self) -> int:
        return int(self.model.get_sentence_embedding_dimension())

    def preload(self) -> None:
        """Load the model and run one warm-up encode."""
        self.model.encode("preload")

    def encode(self, text: str) -> Sequence[float]:
        return self.model.encode(text).tolist()

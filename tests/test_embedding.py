"""Tests for the embedding service and encoders."""

import sys
import threading
import time
import types

import numpy as np
import pytest

from conftest import DIM, FailingEncoder, HashingEncoder
from pvl.embeddings import EmbeddingService, SentenceTransformerEncoder
from pvl.errors import EmptyInputError, InferenceFailedError, ModelUnavailableError


class _ConstantEncoder:
    def __init__(self, vector):
        self.vector = vector

    def encode(self, text):
        return self.vector


class _CountingEncoder:
    """Tracks how many encodes run at once."""

    def __init__(self):
        self.active = 0
        self.peak = 0
        self._lock = threading.Lock()

    def encode(self, text):
        with self._lock:
            self.active += 1
            self.peak = max(self.peak, self.active)
        time.sleep(0.02)
        with self._lock:
            self.active -= 1
        return [1.0, 0.0, 0.0]


def test_embed_returns_float32_vector():
    service = EmbeddingService(HashingEncoder(), dimension=DIM)
    vector = service.embed("Python asyncio tutorial")
    assert isinstance(vector, np.ndarray)
    assert vector.dtype == np.float32
    assert vector.shape == (DIM,)


def test_embed_is_case_and_markup_insensitive():
    service = EmbeddingService(HashingEncoder())
    assert np.array_equal(service.embed("Python <b>Tips</b>"), service.embed("python tips"))


@pytest.mark.parametrize("text", ["", "   ", "https://example.com"])
def test_embed_empty_input(text):
    encoder = HashingEncoder()
    service = EmbeddingService(encoder)
    with pytest.raises(EmptyInputError):
        service.embed(text)
    assert encoder.calls == 0


def test_embed_wraps_encoder_failure():
    service = EmbeddingService(FailingEncoder())
    with pytest.raises(InferenceFailedError) as excinfo:
        service.embed("hello")
    assert isinstance(excinfo.value.cause, RuntimeError)


def test_embed_rejects_bad_vectors():
    with pytest.raises(InferenceFailedError):
        EmbeddingService(_ConstantEncoder([float("nan"), 1.0])).embed("hello")
    with pytest.raises(InferenceFailedError):
        EmbeddingService(_ConstantEncoder([])).embed("hello")
    with pytest.raises(InferenceFailedError):
        EmbeddingService(_ConstantEncoder([1.0, 2.0]), dimension=3).embed("hello")


def test_embed_passes_model_unavailable_through():
    class _Unavailable:
        def encode(self, text):
            raise ModelUnavailableError()

    with pytest.raises(ModelUnavailableError):
        EmbeddingService(_Unavailable()).embed("hello")


def test_embed_batch_keeps_order_and_isolates_failures():
    service = EmbeddingService(HashingEncoder())
    results = service.embed_batch(["good one", "", "also good"])
    assert [r.ok for r in results] == [True, False, True]
    assert isinstance(results[1].error, EmptyInputError)
    assert np.array_equal(results[0].vector, service.embed("good one"))
    assert np.array_equal(results[2].vector, service.embed("also good"))


def test_embed_batch_bounded_concurrency():
    encoder = _CountingEncoder()
    service = EmbeddingService(encoder, batch_concurrency=3)
    results = service.embed_batch([f"text {i}" for i in range(12)])
    assert all(r.ok for r in results)
    assert 1 <= encoder.peak <= 3


def test_embed_batch_reports_progress():
    seen = []
    service = EmbeddingService(HashingEncoder())
    service.embed_batch(["a b", "c d"], on_result=lambda i, r: seen.append(i))
    assert seen == [0, 1]


def test_embed_batch_empty():
    assert EmbeddingService(HashingEncoder()).embed_batch([]) == []


def test_invalid_batch_concurrency():
    with pytest.raises(ValueError):
        EmbeddingService(HashingEncoder(), batch_concurrency=0)


def test_sentence_transformer_load_failure(monkeypatch):
    fake = types.ModuleType("sentence_transformers")

    def _broken(*args, **kwargs):
        raise OSError("no such model")

    fake.SentenceTransformer = _broken
    monkeypatch.setitem(sys.modules, "sentence_transformers", fake)

    encoder = SentenceTransformerEncoder("missing/model")
    with pytest.raises(ModelUnavailableError):
        encoder.encode("hello")
    with pytest.raises(ModelUnavailableError):
        EmbeddingService(encoder).embed("hello")


def test_sentence_transformer_lazy_load(monkeypatch):
    loads = []

    class _Model:
        def __init__(self, name, device=None):
            loads.append(name)

        def encode(self, text):
            return np.ones(4, dtype=np.float32)

        def get_sentence_embedding_dimension(self):
            return 4

    fake = types.ModuleType("sentence_transformers")
    fake.SentenceTransformer = _Model
    monkeypatch.setitem(sys.modules, "sentence_transformers", fake)

    encoder = SentenceTransformerEncoder("tiny/model")
    assert loads == []
    assert encoder.encode("hi") == [1.0, 1.0, 1.0, 1.0]
    assert encoder.dimension == 4
    encoder.preload()
    assert loads == ["tiny/model"]

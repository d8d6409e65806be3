"""Shared fixtures: a deterministic stand-in for the embedding model."""

import copy
import hashlib

import numpy as np
import pytest

from pvl.config import DEFAULT_CONFIG

DIM = 32


class HashingEncoder:
    """Bag-of-words encoder: each token bumps one hashed bucket.

    Texts that share words point in similar directions, which is all the
    search and clustering tests need.
    """

    def __init__(self, dim: int = DIM):
        self.dim = dim
        self.calls = 0

    def encode(self, text: str) -> list[float]:
        self.calls += 1
        vec = np.zeros(self.dim, dtype=np.float32)
        for token in text.lower().split():
            bucket = int(hashlib.md5(token.encode("utf-8")).hexdigest(), 16) % self.dim
            vec[bucket] += 1.0
        return vec.tolist()


class FailingEncoder:
    def encode(self, text: str) -> list[float]:
        raise RuntimeError("model crashed")


@pytest.fixture
def encoder():
    return HashingEncoder()


@pytest.fixture
def config(tmp_path):
    cfg = copy.deepcopy(DEFAULT_CONFIG)
    cfg["storage_backend"] = "memory"
    cfg["library_path"] = str(tmp_path / "library")
    cfg["embedding"]["dimension"] = DIM
    return cfg

"""Tests for configuration loading."""

import pytest

from pvl.config import DEFAULT_CONFIG, load_config
from pvl.errors import ConfigError


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    monkeypatch.delenv("PVL_LIBRARY_PATH", raising=False)
    monkeypatch.delenv("PVL_EMBEDDING_MODEL", raising=False)


def test_defaults(tmp_path):
    cfg = load_config(tmp_path / "missing.yaml")
    assert cfg["search"]["rrf_k"] == 60
    assert cfg["clustering"]["growth_threshold"] == 0.10
    assert cfg["index"]["m"] == 16
    assert cfg["embedding"]["dimension"] == 384


def test_defaults_not_mutated(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("search:\n  rrf_k: 10\n")
    load_config(path)
    assert DEFAULT_CONFIG["search"]["rrf_k"] == 60


def test_file_is_deep_merged(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("search:\n  rrf_k: 30\nclustering:\n  growth_threshold: 0.25\n")
    cfg = load_config(path)
    assert cfg["search"]["rrf_k"] == 30
    assert cfg["search"]["vector_top_k"] == 20
    assert cfg["clustering"]["growth_threshold"] == 0.25
    assert cfg["clustering"]["match_threshold"] == 0.85


def test_library_path_is_resolved(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(f"library_path: {tmp_path}/lib/../lib\n")
    cfg = load_config(path)
    assert cfg["library_path"] == str((tmp_path / "lib").resolve())


def test_env_overrides(tmp_path, monkeypatch):
    monkeypatch.setenv("PVL_LIBRARY_PATH", str(tmp_path / "elsewhere"))
    monkeypatch.setenv("PVL_EMBEDDING_MODEL", "sentence-transformers/paraphrase-MiniLM-L3-v2")
    cfg = load_config(tmp_path / "missing.yaml")
    assert cfg["library_path"] == str((tmp_path / "elsewhere").resolve())
    assert cfg["embedding"]["model"] == "sentence-transformers/paraphrase-MiniLM-L3-v2"


@pytest.mark.parametrize("text", [
    "storage_backend: chromadb\n",
    "search:\n  fusion: borda\n",
    "clustering:\n  match_threshold: 1.5\n",
    "index:\n  m: 1\n",
    "embedding:\n  batch_concurrency: 0\n",
])
def test_invalid_values_rejected(tmp_path, text):
    path = tmp_path / "config.yaml"
    path.write_text(text)
    with pytest.raises(ConfigError):
        load_config(path)


def test_unparseable_file_rejected(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("search: [unclosed\n")
    with pytest.raises(ConfigError):
        load_config(path)

    path.write_text("- just\n- a list\n")
    with pytest.raises(ConfigError):
        load_config(path)

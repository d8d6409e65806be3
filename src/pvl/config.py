"""Configuration management for PVL."""

import copy
import os
from pathlib import Path
from typing import Any

import yaml

from .errors import ConfigError


DEFAULT_CONFIG = {
    "library_path": "~/.pvl/library",
    "storage_backend": "json",
    "log_level": "INFO",
    "embedding": {
        "model": "sentence-transformers/all-MiniLM-L6-v2",
        "dimension": 384,
        "max_chars": 1000,
        "batch_concurrency": 10,
    },
    "index": {
        "m": 16,
        "ef_construction": 200,
        "ef_search": 100,
        "seed": 42,
        "snapshot_name": "index.snapshot",
    },
    "graph": {"k": 10},
    "clustering": {
        "resolution": 1.0,
        "max_iterations": 50,
        "tolerance": 1e-7,
        "match_threshold": 0.85,
        "growth_threshold": 0.10,
        "min_cluster_size": 1,
        "seed": 42,
    },
    "search": {
        "fusion": "rrf",
        "rrf_k": 60,
        "vector_top_k": 20,
        "max_results": 100,
        "keyword_weight": 0.5,
        "vector_weight": 0.5,
        "path_timeout": 2.0,
        "vector_workers": 4,
    },
}


def _find_config_file() -> Path | None:
    """Look for config.yaml in standard locations."""
    candidates = [
        Path.cwd() / "config" / "config.yaml",
        Path.cwd() / "config.yaml",
        Path.home() / ".pvl" / "config.yaml",
    ]
    for p in candidates:
        if p.exists():
            return p
    return None


def load_config(config_path: str | Path | None = None) -> dict[str, Any]:
    """Load configuration, merging defaults with file and env vars."""
    cfg = copy.deepcopy(DEFAULT_CONFIG)

    path = Path(config_path) if config_path else _find_config_file()
    if path and path.exists():
        with open(path) as f:
            try:
                file_cfg = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigError(f"Could not parse {path}: {e}") from e
        if not isinstance(file_cfg, dict):
            raise ConfigError(f"{path} must contain a mapping at the top level")
        _deep_merge(cfg, file_cfg)

    # Env overrides
    if library := os.environ.get("PVL_LIBRARY_PATH"):
        cfg["library_path"] = library
    if model := os.environ.get("PVL_EMBEDDING_MODEL"):
        cfg["embedding"]["model"] = model

    cfg["library_path"] = str(Path(cfg["library_path"]).expanduser().resolve())
    validate_config(cfg)
    return cfg


def validate_config(cfg: dict[str, Any]) -> None:
    """Reject values the engine cannot run with."""
    if cfg["storage_backend"] not in ("memory", "json"):
        raise ConfigError(f"Unknown storage_backend: {cfg['storage_backend']}")

    emb = cfg["embedding"]
    if emb["dimension"] is not None and int(emb["dimension"]) <= 0:
        raise ConfigError("embedding.dimension must be positive")
    if int(emb["batch_concurrency"]) < 1:
        raise ConfigError("embedding.batch_concurrency must be at least 1")
    if int(emb["max_chars"]) < 1:
        raise ConfigError("embedding.max_chars must be at least 1")

    idx = cfg["index"]
    if int(idx["m"]) < 2:
        raise ConfigError("index.m must be at least 2")
    if int(idx["ef_construction"]) < 1 or int(idx["ef_search"]) < 1:
        raise ConfigError("index.ef_construction and index.ef_search must be positive")

    if int(cfg["graph"]["k"]) < 1:
        raise ConfigError("graph.k must be at least 1")

    cl = cfg["clustering"]
    if float(cl["resolution"]) <= 0:
        raise ConfigError("clustering.resolution must be positive")
    if not 0.0 <= float(cl["match_threshold"]) <= 1.0:
        raise ConfigError("clustering.match_threshold must be within [0, 1]")
    if float(cl["growth_threshold"]) < 0:
        raise ConfigError("clustering.growth_threshold must not be negative")

    search = cfg["search"]
    if search["fusion"] not in ("rrf", "weighted_sum"):
        raise ConfigError(f"Unknown search.fusion: {search['fusion']}")
    if int(search["rrf_k"]) < 0:
        raise ConfigError("search.rrf_k must not be negative")
    if int(search["max_results"]) < 1 or int(search["vector_top_k"]) < 1:
        raise ConfigError("search.max_results and search.vector_top_k must be positive")
    if int(search["vector_workers"]) < 1:
        raise ConfigError("search.vector_workers must be positive")


def _deep_merge(base: dict, override: dict) -> None:
    """Merge override into base in-place."""
    for k, v in override.items():
        if k in base and isinstance(base[k], dict) and isinstance(v, dict):
            _deep_merge(base[k], v)
        else:
            base[k] = v

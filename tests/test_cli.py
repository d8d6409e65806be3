"""Tests for the command line interface."""

import json

import pytest
import yaml
from click.testing import CliRunner

from pvl.cli import cli


@pytest.fixture
def config_file(tmp_path, monkeypatch):
    monkeypatch.delenv("PVL_LIBRARY_PATH", raising=False)
    monkeypatch.delenv("PVL_EMBEDDING_MODEL", raising=False)
    path = tmp_path / "config.yaml"
    path.write_text(yaml.dump({"library_path": str(tmp_path / "library"), "storage_backend": "json"}))
    return path


@pytest.fixture
def items_file(tmp_path):
    path = tmp_path / "videos.json"
    path.write_text(json.dumps([
        {"id": "yt-1", "title": "Sourdough starter guide", "duration": 540},
        {"id": "yt-2", "title": "Chess endgame drills", "duration": 1200},
        {"id": 3, "title": "Marathon taper week", "source": "local"},
    ]))
    return path


def test_init_writes_config(tmp_path):
    result = CliRunner().invoke(cli, ["init", "--path", str(tmp_path / "pvl")])
    assert result.exit_code == 0, result.output
    config = yaml.safe_load((tmp_path / "pvl" / "config.yaml").read_text())
    assert config["library_path"] == str((tmp_path / "pvl").resolve() / "library")
    assert (tmp_path / "pvl" / "library").is_dir()


def test_import_and_stats(config_file, items_file, tmp_path):
    runner = CliRunner()
    result = runner.invoke(cli, ["--config", str(config_file), "import", str(items_file), "--no-embed"])
    assert result.exit_code == 0, result.output
    assert "Imported 3 item(s)" in result.output
    assert (tmp_path / "library" / "library.json").exists()

    result = runner.invoke(cli, ["--config", str(config_file), "stats"])
    assert result.exit_code == 0, result.output
    assert "Items: 3" in result.output
    assert "Embedded: 0" in result.output


def test_keyword_search_without_embeddings(config_file, items_file):
    runner = CliRunner()
    runner.invoke(cli, ["--config", str(config_file), "import", str(items_file), "--no-embed"])
    result = runner.invoke(cli, ["--config", str(config_file), "search", "chess"])
    assert result.exit_code == 0, result.output
    assert "Chess" in result.output

    result = runner.invoke(cli, ["--config", str(config_file), "search", "chess", "--source", "local"])
    assert "No results found" in result.output


def test_clusters_empty(config_file):
    result = CliRunner().invoke(cli, ["--config", str(config_file), "clusters"])
    assert result.exit_code == 0, result.output
    assert "No clusters yet" in result.output


def test_unknown_cluster_errors(config_file):
    result = CliRunner().invoke(cli, ["--config", str(config_file), "rename", "c-missing", "Label"])
    assert result.exit_code != 0
    assert "Unknown cluster" in result.output


def test_invalid_config_reported(tmp_path, monkeypatch):
    monkeypatch.delenv("PVL_LIBRARY_PATH", raising=False)
    path = tmp_path / "config.yaml"
    path.write_text("storage_backend: chromadb\n")
    result = CliRunner().invoke(cli, ["--config", str(path), "stats"])
    assert result.exit_code != 0
    assert "storage_backend" in result.output

"""Tests for histree config loader."""

from __future__ import annotations

import warnings
from pathlib import Path

import pytest
import yaml

from histree.config import ConfigError, HistreeConfig, LanguageCfg, load_config


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _write_yaml(path: Path, data: dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.dump(data), encoding="utf-8")


@pytest.fixture(autouse=True)
def _no_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("HISTREE_DB", raising=False)
    monkeypatch.delenv("HISTREE_WORKERS", raising=False)


def _load(tmp_path: Path) -> HistreeConfig:
    return load_config(project_dir=tmp_path, global_config_path=tmp_path / "global" / "config.yaml")


# ---------------------------------------------------------------------------
# Defaults, no config files present
# ---------------------------------------------------------------------------


def test_load_config_defaults_no_files(tmp_path: Path) -> None:
    """No config files → all hardcoded defaults."""
    cfg = _load(tmp_path)

    assert cfg.storage.db == ".histree.db"
    assert cfg.mining.workers == 4
    assert cfg.mining.incremental is True
    assert cfg.mining.allow_syntax_errors is True
    assert cfg.mining.parse_cache_size == 512
    assert set(cfg.languages) == {"java", "python"}
    assert cfg.query_files() == {}


def test_language_for(tmp_path: Path) -> None:
    cfg = _load(tmp_path)
    assert cfg.language_for("src/main/Shape.java") == "java"
    assert cfg.language_for("tools/gen.py") == "python"
    assert cfg.language_for("README.md") is None


# ---------------------------------------------------------------------------
# Layering
# ---------------------------------------------------------------------------


def test_global_overrides_defaults(tmp_path: Path) -> None:
    _write_yaml(tmp_path / "global" / "config.yaml", {"mining": {"workers": 2}})
    cfg = _load(tmp_path)
    assert cfg.mining.workers == 2
    assert cfg.mining.incremental is True


def test_global_empty_file(tmp_path: Path) -> None:
    path = tmp_path / "global" / "config.yaml"
    path.parent.mkdir()
    path.write_text("", encoding="utf-8")
    assert _load(tmp_path).mining.workers == 4


def test_project_overrides_global(tmp_path: Path) -> None:
    _write_yaml(tmp_path / "global" / "config.yaml", {"mining": {"workers": 2, "incremental": False}})
    _write_yaml(tmp_path / "histree.yaml", {"mining": {"workers": 8}})
    cfg = _load(tmp_path)
    assert cfg.mining.workers == 8
    assert cfg.mining.incremental is False


def test_storage_section(tmp_path: Path) -> None:
    _write_yaml(tmp_path / "histree.yaml", {"storage": {"db": "history.db"}})
    assert _load(tmp_path).storage.db == "history.db"


def test_language_override_and_addition(tmp_path: Path) -> None:
    _write_yaml(
        tmp_path / "histree.yaml",
        {
            "languages": {
                "java": {"query": "rules/java.scm"},
                "python": {"suffixes": [".py", ".pyi"]},
            }
        },
    )
    cfg = _load(tmp_path)
    assert cfg.languages["java"] == LanguageCfg(suffixes=[".java"], query="rules/java.scm")
    assert cfg.language_for("stubs/x.pyi") == "python"
    assert cfg.query_files() == {"java": "rules/java.scm"}


def test_language_suffix_string_is_accepted(tmp_path: Path) -> None:
    _write_yaml(tmp_path / "histree.yaml", {"languages": {"python": {"suffixes": ".py"}}})
    assert _load(tmp_path).languages["python"].suffixes == [".py"]


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("workers", [0, -3, "many"])
def test_invalid_workers(tmp_path: Path, workers) -> None:
    _write_yaml(tmp_path / "histree.yaml", {"mining": {"workers": workers}})
    with pytest.raises(ConfigError):
        _load(tmp_path)


def test_suffix_without_dot(tmp_path: Path) -> None:
    _write_yaml(tmp_path / "histree.yaml", {"languages": {"java": {"suffixes": ["java"]}}})
    with pytest.raises(ConfigError):
        _load(tmp_path)


def test_languages_must_be_mapping(tmp_path: Path) -> None:
    _write_yaml(tmp_path / "histree.yaml", {"languages": ["java"]})
    with pytest.raises(ConfigError):
        _load(tmp_path)


@pytest.mark.parametrize("bad_key", ["git_token", "password", "api_key", "credentials"])
def test_credentials_rejected(tmp_path: Path, bad_key: str) -> None:
    _write_yaml(tmp_path / "histree.yaml", {"storage": {bad_key: "x"}})
    with pytest.raises(ConfigError, match="GIT_TOKEN"):
        _load(tmp_path)


def test_config_error_is_value_error() -> None:
    assert issubclass(ConfigError, ValueError)


# ---------------------------------------------------------------------------
# Unknown key warnings
# ---------------------------------------------------------------------------


def test_unknown_top_level_key_warns(tmp_path: Path) -> None:
    _write_yaml(tmp_path / "histree.yaml", {"embedding": {"model": "x"}})
    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always")
        _load(tmp_path)
    assert any("embedding" in str(w.message) for w in caught)


# ---------------------------------------------------------------------------
# Environment overrides
# ---------------------------------------------------------------------------


def test_env_overrides(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    _write_yaml(tmp_path / "histree.yaml", {"storage": {"db": "file.db"}, "mining": {"workers": 2}})
    monkeypatch.setenv("HISTREE_DB", "env.db")
    monkeypatch.setenv("HISTREE_WORKERS", "6")
    cfg = _load(tmp_path)
    assert cfg.storage.db == "env.db"
    assert cfg.mining.workers == 6


def test_env_workers_invalid(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("HISTREE_WORKERS", "zero")
    with pytest.raises(ConfigError):
        _load(tmp_path)

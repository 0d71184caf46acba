"""histree configuration loader.

Priority (high → low):
  1. CLI flags           (applied by the caller)
  2. Environment variables  (HISTREE_DB, HISTREE_WORKERS)
  3. Per-project histree.yaml  (in the mined repository or the CWD)
  4. Global ~/.histree/config.yaml
  5. Hardcoded defaults

Config files must never contain credentials; private remotes authenticate
through the GIT_TOKEN environment variable.
All YAML reads use yaml.safe_load(); a config file cannot construct objects.
"""

from __future__ import annotations

import os
import re
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_GLOBAL_CONFIG_DIR: Path = Path.home() / ".histree"
_GLOBAL_CONFIG_PATH: Path = _GLOBAL_CONFIG_DIR / "config.yaml"
_PROJECT_CONFIG_NAME: str = "histree.yaml"

# Key names that suggest a credential. Does NOT match ordinary keys such as
# allow_syntax_errors or workers.
_SECRET_KEY_RE: re.Pattern[str] = re.compile(
    r"api[_\-]?(?:key|secret)"
    r"|_token$"
    r"|^token$"
    r"|_secret$"
    r"|^secret$"
    r"|passw(?:ord|d)"
    r"|credential",
    re.IGNORECASE,
)

# Known top-level sections; unknown keys produce a warning
_KNOWN_SECTIONS: frozenset[str] = frozenset(["storage", "mining", "languages"])


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ConfigError(ValueError):
    """Raised when a config file contains an invalid or forbidden value."""


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass
class StorageCfg:
    """Database location (histree.yaml: storage:)."""

    db: str = ".histree.db"


@dataclass
class MiningCfg:
    """Ingestion behaviour (histree.yaml: mining:).

    Attributes:
        workers: Threads that derive independent files of one commit.
        incremental: Reparse from the previous version's tree plus edit
            descriptors instead of from scratch.
        allow_syntax_errors: Accept trees that contain error nodes.
        parse_cache_size: Parsed file versions kept for incremental reuse.
    """

    workers: int = 4
    incremental: bool = True
    allow_syntax_errors: bool = True
    parse_cache_size: int = 512


@dataclass
class LanguageCfg:
    """One language tag (histree.yaml: languages.<tag>:)."""

    suffixes: list[str] = field(default_factory=list)
    query: str | None = None  # path to capture rules; packaged rules when None


def _default_languages() -> dict[str, LanguageCfg]:
    return {
        "java": LanguageCfg(suffixes=[".java"]),
        "python": LanguageCfg(suffixes=[".py"]),
    }


@dataclass
class HistreeConfig:
    """Root configuration object, built by load_config() from merged YAML layers."""

    storage: StorageCfg = field(default_factory=StorageCfg)
    mining: MiningCfg = field(default_factory=MiningCfg)
    languages: dict[str, LanguageCfg] = field(default_factory=_default_languages)

    def language_for(self, path: str) -> str | None:
        """Return the language tag whose suffixes match *path*, or None."""
        suffix = Path(path).suffix
        for tag, lang in self.languages.items():
            if suffix in lang.suffixes:
                return tag
        return None

    def query_files(self) -> dict[str, str]:
        return {tag: lang.query for tag, lang in self.languages.items() if lang.query}


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def _check_no_secrets(data: dict[str, Any], source: Path) -> None:
    """Raise ConfigError if *data* contains any credential-like key names."""

    def _scan(obj: Any, path: str) -> None:
        if isinstance(obj, dict):
            for k, v in obj.items():
                full = f"{path}.{k}" if path else k
                if _SECRET_KEY_RE.search(str(k)):
                    raise ConfigError(
                        f"Config '{source}' contains a forbidden key '{full}'.\n"
                        f"  Credentials must be set via environment variables, not config files.\n"
                        f"  Remove '{full}' from {source.name} and use:\n"
                        f"    export GIT_TOKEN=<value>"
                    )
                _scan(v, full)

    _scan(data, "")


def _warn_unknown_keys(data: dict[str, Any], source: Path) -> None:
    """Emit a UserWarning for unrecognised top-level keys."""
    for key in data:
        if key not in _KNOWN_SECTIONS:
            warnings.warn(
                f"Unknown config key '{key}' in '{source}' — ignored.",
                UserWarning,
                stacklevel=4,
            )


def _positive_int(value: Any, name: str) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{name} must be an integer, got {value!r}") from None
    if number < 1:
        raise ConfigError(f"{name} must be at least 1, got {number}")
    return number


# ---------------------------------------------------------------------------
# Merge + build
# ---------------------------------------------------------------------------


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Return a new dict that is *base* deep-merged with *override*."""
    result = dict(base)
    for k, v in override.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = _deep_merge(result[k], v)
        else:
            result[k] = v
    return result


def _parse_language(tag: str, raw: Any, defaults: LanguageCfg | None) -> LanguageCfg:
    if not isinstance(raw, dict):
        raise ConfigError(f"languages.{tag} must be a mapping, got {type(raw).__name__}")
    base = defaults or LanguageCfg()
    suffixes = raw.get("suffixes", base.suffixes)
    if isinstance(suffixes, str):
        suffixes = [suffixes]
    for s in suffixes:
        if not str(s).startswith("."):
            raise ConfigError(f"languages.{tag}.suffixes entries must start with '.', got {s!r}")
    query = raw.get("query", base.query)
    return LanguageCfg(suffixes=[str(s) for s in suffixes], query=str(query) if query else None)


def _cfg_from_dict(data: dict[str, Any]) -> HistreeConfig:
    """Build a *HistreeConfig* from a merged raw YAML dict."""
    cfg = HistreeConfig()

    if "storage" in data:
        s = data["storage"] or {}
        cfg.storage = StorageCfg(db=str(s.get("db", cfg.storage.db)))

    if "mining" in data:
        m = data["mining"] or {}
        cfg.mining = MiningCfg(
            workers=_positive_int(m.get("workers", cfg.mining.workers), "mining.workers"),
            incremental=bool(m.get("incremental", cfg.mining.incremental)),
            allow_syntax_errors=bool(
                m.get("allow_syntax_errors", cfg.mining.allow_syntax_errors)
            ),
            parse_cache_size=_positive_int(
                m.get("parse_cache_size", cfg.mining.parse_cache_size),
                "mining.parse_cache_size",
            ),
        )

    if "languages" in data:
        langs = data["languages"] or {}
        if not isinstance(langs, dict):
            raise ConfigError("languages must be a mapping of language tag → settings")
        for tag, raw in langs.items():
            cfg.languages[str(tag)] = _parse_language(
                str(tag), raw or {}, cfg.languages.get(str(tag))
            )

    return cfg


def _apply_env_overrides(cfg: HistreeConfig) -> HistreeConfig:
    """Apply HISTREE_* environment variable overrides (layer 2)."""
    if db := os.environ.get("HISTREE_DB"):
        cfg.storage.db = db
    if workers := os.environ.get("HISTREE_WORKERS"):
        cfg.mining.workers = _positive_int(workers, "HISTREE_WORKERS")
    return cfg


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(
    project_dir: Path | None = None,
    *,
    global_config_path: Path | None = None,
) -> HistreeConfig:
    """Load and return a merged *HistreeConfig*.

    Applies layers in order: global → per-project → env vars.
    CLI flag overrides must be applied by the caller after this function.

    Args:
        project_dir: Directory to search for *histree.yaml*. Defaults to CWD.
        global_config_path: Override the global config path (for testing).

    Returns:
        Fully merged *HistreeConfig* with env var overrides applied.

    Raises:
        ConfigError: If a config file contains credential-like keys or an
            invalid value.
    """
    global_path = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    search_dir = project_dir if project_dir is not None else Path.cwd()

    merged: dict[str, Any] = {}

    # Layer 1: global config
    if global_path.exists():
        raw_global = yaml.safe_load(global_path.read_text(encoding="utf-8")) or {}
        _check_no_secrets(raw_global, global_path)
        _warn_unknown_keys(raw_global, global_path)
        merged = _deep_merge(merged, raw_global)

    # Layer 2: per-project config
    project_cfg_path = search_dir / _PROJECT_CONFIG_NAME
    if project_cfg_path.exists():
        raw_project = yaml.safe_load(project_cfg_path.read_text(encoding="utf-8")) or {}
        _check_no_secrets(raw_project, project_cfg_path)
        _warn_unknown_keys(raw_project, project_cfg_path)
        merged = _deep_merge(merged, raw_project)

    cfg = _cfg_from_dict(merged)

    # Layer 3: env var overrides
    return _apply_env_overrides(cfg)

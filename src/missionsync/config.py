from __future__ import annotations

import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, cast

import yaml

from .errors import ConfigurationError

CONFIG_DEFAULT = "missionsync.config.yaml"
DEFAULT_TRACKER = "github"
DEFAULT_API_URL = "https://api.github.com"
DEFAULT_CACHE_FILE = ".missionsync/cache.json"


@dataclass
class SyncConfig:
    root: Path
    tracker: str
    base_url: str
    access_token: str | None
    autosync: bool
    cache_file: Path | None
    ignored_dirs: list[str]
    # Logging configuration
    logging_json_enabled: bool
    logging_level: str
    # Environment authentication configuration
    env_auth_load_dotenv: bool
    env_auth_dotenv_path: str | None

    def with_token(self, token: str | None) -> SyncConfig:
        return replace(self, access_token=token)


def _resolve_env_var(value: Any) -> Any:
    """Resolve environment variable if value starts with $."""
    if isinstance(value, str) and value.startswith("$"):
        return os.getenv(value[1:])
    return value


def _section(raw: dict[str, Any], name: str) -> dict[str, Any]:
    value = raw.get(name, {}) or {}
    if not isinstance(value, dict):
        raise ConfigurationError(f"Config section '{name}' must be a mapping")
    return cast(dict[str, Any], value)


def build_config(raw: dict[str, Any], base_dir: Path) -> SyncConfig:
    github = _section(raw, "github")
    vault = _section(raw, "vault")
    sync = _section(raw, "sync")
    logging_config = _section(raw, "logging")
    env_auth = _section(raw, "environment")

    root = base_dir / str(vault.get("root", "."))
    cache_value = sync.get("cache_file", DEFAULT_CACHE_FILE)
    cache_file = root / str(cache_value) if cache_value else None
    token = _resolve_env_var(github.get("token"))

    return SyncConfig(
        root=root,
        tracker=str(raw.get("tracker", DEFAULT_TRACKER)).lower(),
        base_url=str(github.get("base_url", DEFAULT_API_URL)),
        access_token=str(token) if token else None,
        autosync=bool(sync.get("autosync", True)),
        cache_file=cache_file,
        ignored_dirs=list(vault.get("ignored_dirs", [".obsidian", ".git"]) or []),
        logging_json_enabled=bool(logging_config.get("json_enabled", False)),
        logging_level=str(logging_config.get("level", "INFO")),
        env_auth_load_dotenv=bool(env_auth.get("load_dotenv", True)),
        env_auth_dotenv_path=env_auth.get("dotenv_path"),
    )


def default_config(root: str | Path = ".") -> SyncConfig:
    return build_config({"vault": {"root": "."}}, Path(root))


def load_config(path: str | Path) -> SyncConfig:
    p = Path(path)
    if not p.exists():
        raise ConfigurationError(f"Configuration file not found: {p}")
    try:
        loaded = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Invalid configuration file {p}: {exc}") from exc
    if not isinstance(loaded, dict):
        raise ConfigurationError(f"Configuration file {p} must contain a mapping")
    return build_config(cast(dict[str, Any], loaded), p.parent)


__all__ = ["CONFIG_DEFAULT", "SyncConfig", "build_config", "default_config", "load_config"]

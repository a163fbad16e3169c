"""
Project Settings - Configuration Manager

Three layers, later layers win:
1. Built-in defaults (DEFAULTS below)
2. Optional YAML file: path from `set_config_file()` (CLI `--config`) or
   the SF_MCP_CONFIG environment variable
3. Environment variables (READ_ONLY, ALLOWED_ORGS, SF_CLI_PATH, ...)

get_setting() returns merged effective values using dot notation.
Values are kept raw here; policy parsing and validation happen where the
values are consumed (see sfmcp.core.permissions.load_access_policy).
"""

from __future__ import annotations

import os
import threading
from pathlib import Path
from typing import Any

import yaml

DEFAULTS: dict[str, Any] = {
    "policy": {
        "read_only": False,
        "allowed_orgs": "ALL",
    },
    "target": {
        "cache_ttl_seconds": 30.0,
    },
    "runner": {
        "sf_path": None,
        "max_output_bytes": 50 * 1024 * 1024,
        "timeout_seconds": None,
    },
    "rest": {
        "timeout_seconds": 120.0,
    },
    "logging": {
        "level": "INFO",
    },
}

# env var -> dotted setting key
ENV_OVERRIDES: dict[str, str] = {
    "READ_ONLY": "policy.read_only",
    "ALLOWED_ORGS": "policy.allowed_orgs",
    "SF_CLI_PATH": "runner.sf_path",
    "SF_MCP_LOG_LEVEL": "logging.level",
}

CONFIG_ENV_VAR = "SF_MCP_CONFIG"


class Settings:
    """
    Unified Settings Manager (process-wide singleton).

    Loading is lazy and thread-safe; `reload()` re-reads every layer, which
    tests use after patching the environment.
    """

    _instance: Settings | None = None
    _instance_lock = threading.Lock()
    _loaded: bool = False
    _config_file: Path | None = None

    def __new__(cls) -> Settings:
        if cls._instance is None:
            with cls._instance_lock:
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self) -> None:
        # __init__ runs on every Settings() call; keep loaded data.
        if not hasattr(self, "_data"):
            self._data: dict[str, Any] = {}

    def _ensure_loaded(self) -> None:
        if not self._loaded:
            with self._instance_lock:
                if not self._loaded:
                    self._load()
                    Settings._loaded = True

    def _resolve_config_file(self) -> Path | None:
        if Settings._config_file is not None:
            return Settings._config_file
        env_path = os.environ.get(CONFIG_ENV_VAR, "").strip()
        return Path(env_path).expanduser() if env_path else None

    def _load(self) -> None:
        data = self._deep_merge({}, DEFAULTS)

        config_file = self._resolve_config_file()
        if config_file is not None and config_file.exists():
            data = self._deep_merge(data, self._read_yaml(config_file))

        data = self._deep_merge(data, self._env_overlay())
        self._data = data

    def _env_overlay(self) -> dict[str, Any]:
        overlay: dict[str, Any] = {}
        for env_name, dotted in ENV_OVERRIDES.items():
            raw = os.environ.get(env_name)
            if raw is None:
                continue
            node = overlay
            *parents, leaf = dotted.split(".")
            for part in parents:
                node = node.setdefault(part, {})
            node[leaf] = raw
        return overlay

    def _read_yaml(self, path: Path) -> dict[str, Any]:
        content = path.read_text(encoding="utf-8")
        loaded = yaml.safe_load(content) or {}
        if not isinstance(loaded, dict):
            raise ValueError(f"Config file {path} must contain a mapping at the top level")
        return loaded

    def _deep_merge(self, base: dict, override: dict) -> dict:
        """Recursive deep merge; override values replace base values."""
        result = dict(base)
        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            elif isinstance(value, dict):
                result[key] = self._deep_merge({}, value)
            else:
                result[key] = value
        return result

    def get(self, key: str, default: Any = None) -> Any:
        """Get a setting value using dot notation (e.g., 'policy.read_only')."""
        self._ensure_loaded()
        value: Any = self._data
        for k in key.split("."):
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default
        return value

    def reload(self) -> None:
        """Force reload settings."""
        with self._instance_lock:
            self._load()
            Settings._loaded = True

    @classmethod
    def set_config_file(cls, path: str | os.PathLike | None) -> None:
        """Pin the YAML config file (overrides SF_MCP_CONFIG). Takes effect on next load."""
        cls._config_file = Path(path).expanduser() if path else None
        cls._loaded = False


def get_setting(key: str, default: Any = None) -> Any:
    """Get a setting value directly."""
    return Settings().get(key, default)


def get_settings() -> Settings:
    """Get the Settings singleton."""
    return Settings()


__all__ = [
    "CONFIG_ENV_VAR",
    "DEFAULTS",
    "ENV_OVERRIDES",
    "Settings",
    "get_setting",
    "get_settings",
]

"""
Loader for broker.yml.

Resolution order, lowest to highest priority:

1. defaults declared on the pydantic models
2. ``<CONFIG_PATH>/broker.yml``
3. ``BROKER__<SECTION>__<KEY>`` environment variables
   (e.g. ``BROKER__ALLOCATOR__MAX_SESSIONS=8``), values parsed as YAML scalars

The merged result is cached for a minute and re-read lazily afterwards.
"""

from __future__ import annotations

import logging
import os
import threading
import time
from pathlib import Path
from typing import Any, Mapping

import yaml

from deskbroker.config.models import BrokerSettings
from deskbroker.config.settings import get_env

logger = logging.getLogger("desktop-broker")

CONFIG_PATH = Path(get_env("config_path", "/data/config") or "/data/config")
BROKER_CONFIG_FILE = CONFIG_PATH / "broker.yml"

ENV_PREFIX = "BROKER__"


def deep_merge(base: dict, override: Mapping) -> dict:
    """Recursively overlay ``override`` on a copy of ``base``."""
    merged = dict(base)
    for key, value in override.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, Mapping):
            merged[key] = deep_merge(current, value)
        else:
            merged[key] = value
    return merged


def env_overrides(environ: Mapping[str, str] | None = None) -> dict:
    """Nested dict built from ``BROKER__SECTION__KEY`` variables."""
    environ = os.environ if environ is None else environ
    overrides: dict[str, Any] = {}
    for name, raw in environ.items():
        if not name.startswith(ENV_PREFIX):
            continue
        path = [part.lower() for part in name[len(ENV_PREFIX):].split("__") if part]
        if not path:
            continue
        try:
            value = yaml.safe_load(raw)
        except yaml.YAMLError:
            value = raw
        node = overrides
        for part in path[:-1]:
            node = node.setdefault(part, {})
        node[path[-1]] = value
    return overrides


def read_config_file(path: Path) -> dict:
    """Parse a YAML config file; a missing file yields an empty mapping."""
    if not path.exists():
        logger.info(f"Broker config not found, using defaults: {path}")
        return {}
    with open(path, "r") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path} must contain a mapping, got {type(data).__name__}")
    logger.info(f"Loaded broker config from {path}")
    return data


class BrokerConfig:
    """Process-wide cached view of the broker configuration."""

    _lock = threading.Lock()
    _config: dict = {}
    _typed_config: BrokerSettings | None = None
    _last_load: float = 0
    _cache_duration: int = 60

    @classmethod
    def _fresh(cls, now: float) -> bool:
        return bool(cls._config) and (now - cls._last_load) < cls._cache_duration

    @classmethod
    def load(cls) -> dict:
        """Merged configuration as a plain dict."""
        if cls._fresh(time.time()):
            return cls._config

        with cls._lock:
            now = time.time()
            if not cls._fresh(now):
                cls._refresh(now)
            return cls._config

    @classmethod
    def _refresh(cls, now: float) -> None:
        """Rebuild the cached config. Caller holds ``_lock``."""
        merged = BrokerSettings().model_dump()
        try:
            merged = deep_merge(merged, read_config_file(BROKER_CONFIG_FILE))
        except (OSError, ValueError, yaml.YAMLError) as e:
            logger.error(f"Error loading broker config {BROKER_CONFIG_FILE}, using defaults: {e}")
        merged = deep_merge(merged, env_overrides())

        try:
            typed = BrokerSettings.model_validate(merged)
        except ValueError as e:
            logger.error(f"Invalid broker config, using defaults: {e}")
            typed = BrokerSettings()
            merged = typed.model_dump()

        cls._config = merged
        cls._typed_config = typed
        cls._last_load = now

    @classmethod
    def get(cls, *keys: str, default: object = None) -> object:
        """Nested lookup, e.g. ``BrokerConfig.get("allocator", "display_base")``."""
        node: object = cls.load()
        for key in keys:
            if not isinstance(node, dict) or key not in node:
                return default
            node = node[key]
        return node

    @classmethod
    def settings(cls) -> BrokerSettings:
        """Typed configuration."""
        cls.load()
        assert cls._typed_config is not None
        return cls._typed_config

    @classmethod
    def reload(cls) -> None:
        """Drop the cache and read everything again."""
        with cls._lock:
            cls._config = {}
            cls._last_load = 0
        cls.load()

"""
Configuration for the resilience layer.

Each component has its own dataclass with defaults matching the mobile
client's behavior. Values can come from environment variables or from a
YAML settings file:

    ```yaml
    storage_path: ~/.chat-resilience
    log_level: INFO
    vector_store:
      cache_capacity: 1000
      similar_threshold: 0.7
    sync:
      max_retries: 3
      sync_interval_seconds: 30
    ```
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

from .exceptions import ConfigError

MAX_RETRIES = 3
SYNC_INTERVAL_SECONDS = 30.0
EMBEDDING_CACHE_CAPACITY = 1000
SIMILARITY_THRESHOLD = 0.7


def _env_value(name: str, cast: type) -> Any:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return None
    if cast is bool:
        return raw.lower() in ("1", "true", "yes", "on")
    try:
        return cast(raw)
    except ValueError as e:
        raise ConfigError(name, f"cannot parse {raw!r} as {cast.__name__}") from e


def _from_mapping(cls: type, data: dict[str, Any], section: str) -> Any:
    known = {f.name for f in fields(cls)}
    unknown = set(data) - known
    if unknown:
        raise ConfigError(section, f"unknown keys: {', '.join(sorted(unknown))}")
    return cls(**data)


@dataclass
class VectorStoreConfig:
    """Configuration for the semantic index."""

    cache_capacity: int = EMBEDDING_CACHE_CAPACITY
    default_search_limit: int = 10
    similar_limit: int = 5
    similar_threshold: float = SIMILARITY_THRESHOLD
    min_suggestion_prefix: int = 2
    min_suggestion_length: int = 4

    @classmethod
    def from_env(cls) -> VectorStoreConfig:
        """Create config from CHAT_RESILIENCE_VECTOR_* environment variables."""
        values: dict[str, Any] = {}
        for f in fields(cls):
            cast = float if f.name == "similar_threshold" else int
            value = _env_value(f"CHAT_RESILIENCE_VECTOR_{f.name.upper()}", cast)
            if value is not None:
                values[f.name] = value
        return cls(**values)

    def validate(self) -> None:
        if self.cache_capacity < 2:
            raise ConfigError("cache_capacity", "must be >= 2")
        if self.default_search_limit < 1:
            raise ConfigError("default_search_limit", "must be >= 1")
        if self.similar_limit < 1:
            raise ConfigError("similar_limit", "must be >= 1")
        if not -1.0 <= self.similar_threshold <= 1.0:
            raise ConfigError("similar_threshold", "must be within [-1, 1]")
        if self.min_suggestion_prefix < 1:
            raise ConfigError("min_suggestion_prefix", "must be >= 1")


@dataclass
class SyncConfig:
    """Configuration for the outbound message queue."""

    max_retries: int = MAX_RETRIES
    sync_interval_seconds: float = SYNC_INTERVAL_SECONDS
    delivery_timeout_seconds: float | None = None
    start_online: bool = True

    @classmethod
    def from_env(cls) -> SyncConfig:
        """Create config from CHAT_RESILIENCE_SYNC_* environment variables."""
        casts = {
            "max_retries": int,
            "sync_interval_seconds": float,
            "delivery_timeout_seconds": float,
            "start_online": bool,
        }
        values: dict[str, Any] = {}
        for name, cast in casts.items():
            value = _env_value(f"CHAT_RESILIENCE_SYNC_{name.upper()}", cast)
            if value is not None:
                values[name] = value
        return cls(**values)

    def validate(self) -> None:
        if self.max_retries < 1:
            raise ConfigError("max_retries", "must be >= 1")
        if self.sync_interval_seconds <= 0:
            raise ConfigError("sync_interval_seconds", "must be > 0")
        if self.delivery_timeout_seconds is not None and self.delivery_timeout_seconds <= 0:
            raise ConfigError("delivery_timeout_seconds", "must be > 0 when set")


@dataclass
class ResilienceConfig:
    """Top-level configuration for the resilience layer."""

    vector: VectorStoreConfig = field(default_factory=VectorStoreConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    storage_path: Path | None = None
    # JSON logging is only installed when a level is set.
    log_level: str | None = None

    @classmethod
    def from_env(cls) -> ResilienceConfig:
        """
        Create config from environment variables.

        Optional env vars:
            CHAT_RESILIENCE_STORAGE_PATH: Directory for file-backed snapshots
            CHAT_RESILIENCE_LOG_LEVEL: Enables JSON logging at this level
            CHAT_RESILIENCE_VECTOR_*: VectorStoreConfig fields
            CHAT_RESILIENCE_SYNC_*: SyncConfig fields
        """
        storage_path = os.environ.get("CHAT_RESILIENCE_STORAGE_PATH")
        config = cls(
            vector=VectorStoreConfig.from_env(),
            sync=SyncConfig.from_env(),
            storage_path=Path(storage_path).expanduser() if storage_path else None,
            log_level=os.environ.get("CHAT_RESILIENCE_LOG_LEVEL") or None,
        )
        config.validate()
        return config

    @classmethod
    def from_yaml(cls, path: Path) -> ResilienceConfig:
        """Load config from a YAML settings file.

        A missing file yields the defaults.
        """
        if not path.exists():
            return cls()

        try:
            data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        except yaml.YAMLError as e:
            raise ConfigError(str(path), f"invalid YAML: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError(str(path), "top level must be a mapping")

        unknown = set(data) - {"storage_path", "log_level", "vector_store", "sync"}
        if unknown:
            raise ConfigError(str(path), f"unknown keys: {', '.join(sorted(unknown))}")

        storage_path = data.get("storage_path")
        config = cls(
            vector=_from_mapping(VectorStoreConfig, data.get("vector_store") or {}, "vector_store"),
            sync=_from_mapping(SyncConfig, data.get("sync") or {}, "sync"),
            storage_path=Path(storage_path).expanduser() if storage_path else None,
            log_level=data.get("log_level"),
        )
        config.validate()
        return config

    def validate(self) -> None:
        self.vector.validate()
        self.sync.validate()
        if self.log_level is not None and not isinstance(
            logging.getLevelName(str(self.log_level).upper()), int
        ):
            raise ConfigError("log_level", f"unknown level {self.log_level!r}")

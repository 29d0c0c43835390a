"""Configuration management for offline-layer."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)


class ConfigError(Exception):
    """Raised when configuration is invalid."""


@dataclass(frozen=True)
class ConnectivityConfig:
    probe_url: str = "https://www.gstatic.com/generate_204"
    probe_timeout_seconds: float = 5.0
    probe_interval_seconds: float = 30.0
    assume_online: bool = True  # state before the first probe completes


@dataclass(frozen=True)
class CacheConfig:
    max_age_seconds: float = 24 * 60 * 60
    namespace: str = "get-responses"


@dataclass(frozen=True)
class QueueConfig:
    namespace: str = "sync-queue"
    key: str = "offline-layer-queue"
    replay_timeout_seconds: float = 30.0


@dataclass(frozen=True)
class SyncConfig:
    auto_sync: bool = True
    max_retries: int = 3
    retry_delay_seconds: float = 2.0
    flush_interval_seconds: float = 60.0  # 0 disables re-flush while online


@dataclass(frozen=True)
class StorageConfig:
    backend: str = "sqlite"  # "sqlite" | "memory"
    db_path: str = "data/offline_layer.db"
    quota_bytes: int = 0  # per namespace, 0 = unlimited


@dataclass(frozen=True)
class MaintenanceConfig:
    interval_seconds: float = 24 * 60 * 60


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"
    json_format: bool = False
    log_dir: str = "data/logs"


@dataclass(frozen=True)
class AppConfig:
    connectivity: ConnectivityConfig = field(default_factory=ConnectivityConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    queue: QueueConfig = field(default_factory=QueueConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    maintenance: MaintenanceConfig = field(default_factory=MaintenanceConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _build_sub_config(cls: type, data: Any) -> Any:
    """Build a frozen dataclass from a dict, ignoring unknown keys."""
    if not data:
        return cls()
    if not isinstance(data, dict):
        raise ConfigError(f"Section for {cls.__name__} must be a mapping")
    valid_fields = {f.name for f in cls.__dataclass_fields__.values()}
    filtered = {k: v for k, v in data.items() if k in valid_fields}
    return cls(**filtered)


def validate_config(config: AppConfig) -> None:
    """Check value ranges that the dataclasses cannot express.

    Raises:
        ConfigError: On the first invalid value found.
    """
    if config.connectivity.probe_timeout_seconds <= 0:
        raise ConfigError("connectivity.probe_timeout_seconds must be positive")
    if config.connectivity.probe_interval_seconds <= 0:
        raise ConfigError("connectivity.probe_interval_seconds must be positive")
    if config.cache.max_age_seconds <= 0:
        raise ConfigError("cache.max_age_seconds must be positive")
    if config.queue.replay_timeout_seconds <= 0:
        raise ConfigError("queue.replay_timeout_seconds must be positive")
    if config.sync.max_retries < 1:
        raise ConfigError("sync.max_retries must be at least 1")
    if config.sync.retry_delay_seconds < 0:
        raise ConfigError("sync.retry_delay_seconds must not be negative")
    if config.sync.flush_interval_seconds < 0:
        raise ConfigError("sync.flush_interval_seconds must not be negative")
    if config.storage.backend not in ("sqlite", "memory"):
        raise ConfigError(f"Unknown storage backend: {config.storage.backend}")
    if config.storage.quota_bytes < 0:
        raise ConfigError("storage.quota_bytes must not be negative")
    if config.cache.namespace == config.queue.namespace:
        raise ConfigError("cache and queue must use different namespaces")


def load_config(config_dir: str = "config") -> AppConfig:
    """Load configuration from YAML files.

    Args:
        config_dir: Path to the config directory containing settings.yaml.

    Returns:
        Frozen AppConfig instance.

    Raises:
        ConfigError: If settings.yaml is missing or invalid.
    """
    config_path = Path(config_dir) / "settings.yaml"
    if not config_path.exists():
        raise ConfigError(f"Settings file not found: {config_path}")

    with open(config_path, "r") as f:
        try:
            raw = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {config_path}: {e}") from e

    if not isinstance(raw, dict):
        raise ConfigError(f"Settings file must contain a mapping: {config_path}")

    try:
        config = AppConfig(
            connectivity=_build_sub_config(ConnectivityConfig, raw.get("connectivity")),
            cache=_build_sub_config(CacheConfig, raw.get("cache")),
            queue=_build_sub_config(QueueConfig, raw.get("queue")),
            sync=_build_sub_config(SyncConfig, raw.get("sync")),
            storage=_build_sub_config(StorageConfig, raw.get("storage")),
            maintenance=_build_sub_config(MaintenanceConfig, raw.get("maintenance")),
            logging=_build_sub_config(LoggingConfig, raw.get("logging")),
        )
    except TypeError as e:
        raise ConfigError(f"Invalid settings in {config_path}: {e}") from e

    validate_config(config)
    logger.info("Configuration loaded from %s", config_path)
    return config

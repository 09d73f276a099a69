"""Configuration loading from environment variables."""

from __future__ import annotations

import os

from rewind.models.config import (
    HistoryConfig,
    LogConfig,
    PersistenceConfig,
    RewindConfig,
)


def _env(key: str, default: str = "") -> str:
    return os.environ.get(f"REWIND_{key}", default)


def _env_bool(key: str, default: bool = False) -> bool:
    val = _env(key, str(default).lower())
    return val.lower() in ("true", "1", "yes")


def _env_int(key: str, default: int, min_val: int | None = None, max_val: int | None = None) -> int:
    val = int(_env(key, str(default)))
    if min_val is not None:
        val = max(val, min_val)
    if max_val is not None:
        val = min(val, max_val)
    return val


def _validate_log_level(value: str) -> str:
    valid = {"debug", "info", "warning", "error"}
    if value.lower() not in valid:
        raise ValueError(f"Invalid log level: {value}. Must be one of {valid}")
    return value.lower()


def _validate_storage_key(value: str) -> str:
    if not value or value.endswith("_backup"):
        raise ValueError(f"Invalid persistence key: {value!r}")
    return value


def load_config() -> RewindConfig:
    """Load configuration from REWIND_* environment variables."""
    return RewindConfig(
        history=HistoryConfig(
            max_history=_env_int("MAX_HISTORY", 100, min_val=1),
            compress=_env_bool("COMPRESS", False),
            memory_efficient=_env_bool("MEMORY_EFFICIENT", True),
            memory_based_limit=_env_bool("MEMORY_BASED_LIMIT", False),
            max_memory_size=_env_int("MAX_MEMORY_SIZE_MB", 50, min_val=1, max_val=4096),
            gc_interval=_env_int("GC_INTERVAL_MS", 30_000, min_val=1000),
            memory_threshold=_env_int("MEMORY_THRESHOLD_MB", 50, min_val=1),
            large_action_threshold=_env_int("LARGE_ACTION_THRESHOLD_KB", 100, min_val=1),
            performance_monitoring=_env_bool("PERFORMANCE_MONITORING", False),
            debug=_env_bool("DEBUG", False),
        ),
        persistence=PersistenceConfig(
            enabled=_env_bool("PERSISTENCE_ENABLED", False),
            key=_validate_storage_key(_env("PERSISTENCE_KEY", "rewind-history")),
            sqlite_path=_env("PERSISTENCE_SQLITE_PATH", ""),
            throttle_ms=_env_int("PERSISTENCE_THROTTLE_MS", 1000, min_val=0, max_val=60_000),
            backup_threshold_mb=_env_int("PERSISTENCE_BACKUP_THRESHOLD_MB", 50, min_val=1),
        ),
        log=LogConfig(
            level=_validate_log_level(_env("LOG_LEVEL", "info")),
        ),
    )

"""Configuration data structures."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from rewind.plugins.base import HistoryPlugin


@dataclass
class HistoryOptions:
    """Per-stack behaviour switches and budgets.

    Sizes follow the units callers think in: ``max_memory_size`` and
    ``memory_threshold`` are megabytes, ``large_action_threshold`` is
    kilobytes, ``gc_interval`` is milliseconds.
    """

    max_history: int | None = None
    compress: bool = False
    memory_efficient: bool = True
    memory_based_limit: bool = False
    max_memory_size: float = 50
    gc_interval: float = 30_000
    memory_threshold: float | None = None
    selective_paths: list[str] | None = None
    large_action_threshold: float = 100
    performance_monitoring: bool = False
    debug: bool = False
    plugins: list[HistoryPlugin] = field(default_factory=list)

    @property
    def max_memory_bytes(self) -> int:
        return int(self.max_memory_size * 1024 * 1024)


@dataclass
class HistoryConfig:
    """Environment-driven defaults for new history stacks."""

    max_history: int = 100
    compress: bool = False
    memory_efficient: bool = True
    memory_based_limit: bool = False
    max_memory_size: int = 50
    gc_interval: int = 30_000
    memory_threshold: int = 50
    large_action_threshold: int = 100
    performance_monitoring: bool = False
    debug: bool = False

    def to_options(self) -> HistoryOptions:
        """Build HistoryOptions (without plugins) from this config."""
        return HistoryOptions(
            max_history=self.max_history,
            compress=self.compress,
            memory_efficient=self.memory_efficient,
            memory_based_limit=self.memory_based_limit,
            max_memory_size=self.max_memory_size,
            gc_interval=self.gc_interval,
            memory_threshold=self.memory_threshold,
            large_action_threshold=self.large_action_threshold,
            performance_monitoring=self.performance_monitoring,
            debug=self.debug,
        )


@dataclass
class PersistenceConfig:
    """Persistence plugin configuration."""

    enabled: bool = False
    key: str = "rewind-history"
    sqlite_path: str = ""
    throttle_ms: int = 1000
    backup_threshold_mb: int = 50


@dataclass
class LogConfig:
    """Logging configuration."""

    level: str = "info"


@dataclass
class RewindConfig:
    """Top-level rewind configuration."""

    history: HistoryConfig = field(default_factory=HistoryConfig)
    persistence: PersistenceConfig = field(default_factory=PersistenceConfig)
    log: LogConfig = field(default_factory=LogConfig)

"""Logging, metrics and timing for rewind."""

from rewind.observability.logging import setup_logging
from rewind.observability.performance import PerformanceMonitor

__all__ = ["PerformanceMonitor", "setup_logging"]

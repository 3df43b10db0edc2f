"""
Core module for cross-cutting concerns.

This module provides:
- Structured logging configuration
- Request tracing middleware
- Telemetry collaborators
- Common utilities (key normalization, timestamps)
"""

from core.logging import configure_logging, get_logger
from core.telemetry import InMemoryTelemetry, NoOpTelemetry, Telemetry
from core.utils import normalize_key, parse_timestamp, unique_first, utc_now

__all__ = [
    "configure_logging",
    "get_logger",
    "InMemoryTelemetry",
    "NoOpTelemetry",
    "Telemetry",
    "normalize_key",
    "parse_timestamp",
    "unique_first",
    "utc_now",
]

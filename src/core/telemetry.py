"""
Telemetry collaborators.

Ranking engines and orchestrators report counters, timings and debug rows
through an injected Telemetry object. Telemetry is purely observational:
nothing in the ranking path reads it back.

Implementations:
- NoOpTelemetry: production default, discards everything
- InMemoryTelemetry: keeps counters, timings and the latest debug rows;
  logs debug rows via structlog when debug mode is on
"""

from abc import ABC, abstractmethod
from collections import defaultdict
from threading import Lock
from typing import Any, Dict, List, Optional

from core.logging import get_logger


logger = get_logger(__name__)


class Telemetry(ABC):
    """Sink for engine observations."""

    debug: bool = False

    @abstractmethod
    def increment(self, key: str, value: float = 1) -> None:
        ...

    @abstractmethod
    def timing(self, key: str, ms: float) -> None:
        ...

    @abstractmethod
    def debug_rows(self, name: str, rows: List[Dict[str, Any]]) -> None:
        ...

    @abstractmethod
    def snapshot(self) -> Dict[str, Any]:
        ...


class NoOpTelemetry(Telemetry):

    def increment(self, key: str, value: float = 1) -> None:
        pass

    def timing(self, key: str, ms: float) -> None:
        pass

    def debug_rows(self, name: str, rows: List[Dict[str, Any]]) -> None:
        pass

    def snapshot(self) -> Dict[str, Any]:
        return {"counters": {}, "timings": {}, "debug_rows": {}}


class InMemoryTelemetry(Telemetry):
    """
    Thread-safe in-process telemetry.

    Args:
        debug: When True, debug rows are also emitted as log events
        max_timings: Samples kept per timing key (oldest dropped)
    """

    def __init__(self, debug: bool = False, max_timings: int = 100):
        self.debug = debug
        self._max_timings = max_timings
        self._counters: Dict[str, float] = defaultdict(float)
        self._timings: Dict[str, List[float]] = defaultdict(list)
        self._rows: Dict[str, List[Dict[str, Any]]] = {}
        self._lock = Lock()

    def increment(self, key: str, value: float = 1) -> None:
        with self._lock:
            self._counters[key] += value

    def timing(self, key: str, ms: float) -> None:
        with self._lock:
            samples = self._timings[key]
            samples.append(ms)
            if len(samples) > self._max_timings:
                del samples[0]

    def debug_rows(self, name: str, rows: List[Dict[str, Any]]) -> None:
        with self._lock:
            self._rows[name] = list(rows)
        if self.debug:
            logger.debug("Debug rows", name=name, rows=rows)

    def counter(self, key: str) -> float:
        return self._counters.get(key, 0.0)

    def last_rows(self, name: str) -> Optional[List[Dict[str, Any]]]:
        return self._rows.get(name)

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "counters": dict(self._counters),
                "timings": {key: list(values) for key, values in self._timings.items()},
                "debug_rows": {key: list(rows) for key, rows in self._rows.items()},
            }

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()
            self._timings.clear()
            self._rows.clear()

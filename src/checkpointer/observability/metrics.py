"""Metrics for capture reliability and replay activity."""

from abc import ABC, abstractmethod
from collections import Counter, defaultdict
from typing import Any

import structlog

logger = structlog.get_logger(__name__)


class MetricsBackend(ABC):
    """Abstract base class for metrics backends."""

    @abstractmethod
    def increment(self, name: str, value: int = 1, tags: dict[str, str] | None = None) -> None:
        pass

    @abstractmethod
    def timing(self, name: str, value: float, tags: dict[str, str] | None = None) -> None:
        pass


class LoggerBackend(MetricsBackend):
    """
    Simple in-memory metrics backend that aggregates stats for logging.
    """

    def __init__(self) -> None:
        self.counters: Counter[str] = Counter()
        self.timings: dict[str, list[float]] = defaultdict(list)

    def increment(self, name: str, value: int = 1, tags: dict[str, str] | None = None) -> None:
        """Increment a counter."""
        key = self._format_key(name, tags)
        self.counters[key] += value

    def timing(self, name: str, value: float, tags: dict[str, str] | None = None) -> None:
        """Record a timing."""
        key = self._format_key(name, tags)
        self.timings[key].append(value)

    def _format_key(self, name: str, tags: dict[str, str] | None) -> str:
        if not tags:
            return name
        sorted_tags = sorted(tags.items())
        tag_str = ",".join(f"{k}={v}" for k, v in sorted_tags)
        return f"{name}[{tag_str}]"

    def get_summary(self) -> dict[str, Any]:
        """Return a summary of collected metrics."""
        summary: dict[str, Any] = {
            "counters": dict(self.counters),
            "timings": {},
        }

        for name, values in self.timings.items():
            if values:
                summary["timings"][name] = {
                    "count": len(values),
                    "avg": sum(values) / len(values),
                    "min": min(values),
                    "max": max(values),
                }
        return summary


class NullBackend(MetricsBackend):
    """Backend that drops everything (metrics disabled)."""

    def increment(self, name: str, value: int = 1, tags: dict[str, str] | None = None) -> None:
        pass

    def timing(self, name: str, value: float, tags: dict[str, str] | None = None) -> None:
        pass


class MetricsCollector:
    """
    Central collector for engine metrics.
    """

    def __init__(self, backend: str = "logger") -> None:
        """
        Initialize Metrics Collector.

        Args:
            backend: "logger" (in-memory aggregation) or "none".
        """
        self.backend: MetricsBackend

        if backend == "logger":
            self.backend = LoggerBackend()
        elif backend == "none":
            self.backend = NullBackend()
        else:
            logger.warning(f"Unknown metrics backend '{backend}', defaulting to 'logger'")
            self.backend = LoggerBackend()

    def count_capture(self, outcome: str, table_name: str) -> None:
        """Record a capture outcome (captured/skipped/lost)."""
        self.backend.increment(
            "checkpoint_capture_total",
            tags={"outcome": outcome, "table": table_name},
        )

    def count_transition(self, from_status: str, to_status: str) -> None:
        """Record a checkpoint status transition."""
        self.backend.increment(
            "checkpoint_transition_total",
            tags={"from": from_status, "to": to_status},
        )

    def count_replay(self, status: str, entries: int) -> None:
        """Record undo-log entries replayed by a rollback or restore."""
        self.backend.increment(
            "checkpoint_replay_entries_total",
            value=entries,
            tags={"status": status},
        )

    def count_session_warning(self, reason: str) -> None:
        """Record a recovered session-state problem."""
        self.backend.increment("checkpoint_session_warning_total", tags={"reason": reason})

    def record_replay_latency(self, duration_ms: float) -> None:
        """Record replay duration."""
        self.backend.timing("checkpoint_replay_duration_ms", duration_ms)

    def get_summary(self) -> dict[str, Any]:
        """Get summary from backend if supported."""
        if isinstance(self.backend, LoggerBackend):
            return self.backend.get_summary()
        return {}


# Singleton instance
_GLOBAL_COLLECTOR: MetricsCollector | None = None


def get_global_collector() -> MetricsCollector:
    """Get or create the global metrics collector."""
    global _GLOBAL_COLLECTOR
    if _GLOBAL_COLLECTOR is None:
        _GLOBAL_COLLECTOR = MetricsCollector()
    return _GLOBAL_COLLECTOR

"""Metrics calculator aggregating event store data."""

from collections import Counter
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from typing import Any

from vesrates.utils.event_store import CACHE_READ, NOTIFICATION, TASK_COMPLETE, EventStore


@dataclass
class TaskMetrics:
    """Run statistics for one refresh task."""

    runs: int = 0
    successful: int = 0
    failed: int = 0
    average_duration_ms: float = 0.0

    @property
    def success_rate(self) -> float:
        return (self.successful / self.runs * 100) if self.runs else 0.0


@dataclass
class Metrics:
    """Aggregated service metrics."""

    tasks: dict[str, TaskMetrics] = field(default_factory=dict)
    cache_reads: dict[str, int] = field(default_factory=dict)
    notifications_sent: int = 0
    uptime_seconds: int = 0

    def to_dict(self) -> dict[str, Any]:
        """Convert metrics to dictionary."""
        return {
            "tasks": {
                name: {**asdict(task), "success_rate": task.success_rate}
                for name, task in self.tasks.items()
            },
            "cache_reads": dict(self.cache_reads),
            "notifications_sent": self.notifications_sent,
            "uptime_seconds": self.uptime_seconds,
        }


class MetricsCalculator:
    """Calculates metrics from event store data."""

    def __init__(self, event_store: EventStore, start_time: datetime | None = None):
        """
        Initialize the metrics calculator.

        Args:
            event_store: The event store to calculate metrics from
            start_time: Optional start time for uptime calculation (defaults to now)
        """
        self.event_store = event_store
        self.start_time = start_time or datetime.now(UTC)

    def calculate(self) -> Metrics:
        """
        Calculate metrics from the event store.

        Returns:
            Metrics object with per-task run statistics, cache tier hit
            counts and the number of notifications produced
        """
        events = self.event_store.all()

        durations: dict[str, list[float]] = {}
        tasks: dict[str, TaskMetrics] = {}
        for event in events:
            if event.event_type != TASK_COMPLETE:
                continue
            name = event.context.get("task", "unknown")
            task = tasks.setdefault(name, TaskMetrics())
            task.runs += 1
            if event.context.get("status") == "success":
                task.successful += 1
            else:
                task.failed += 1
            if event.duration_ms is not None:
                durations.setdefault(name, []).append(event.duration_ms)

        for name, values in durations.items():
            tasks[name].average_duration_ms = sum(values) / len(values)

        cache_reads = Counter(
            e.context.get("source", "unknown") for e in events if e.event_type == CACHE_READ
        )
        notifications_sent = sum(1 for e in events if e.event_type == NOTIFICATION)

        uptime_seconds = int((datetime.now(UTC) - self.start_time).total_seconds())

        return Metrics(
            tasks=tasks,
            cache_reads=dict(cache_reads),
            notifications_sent=notifications_sent,
            uptime_seconds=uptime_seconds,
        )

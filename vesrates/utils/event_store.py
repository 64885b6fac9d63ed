"""In-memory event store for refresh runs, cache reads and notifications."""

import threading
import uuid
from collections import deque
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

# Event types emitted by the rates core
TASK_COMPLETE = "task_complete"
CACHE_READ = "cache_read"
NOTIFICATION = "notification"


@dataclass
class Event:
    """A single recorded system event."""

    id: str
    timestamp: datetime
    event_type: str
    component: str
    message: str
    trace_id: str | None = None
    context: dict[str, Any] = field(default_factory=dict)
    duration_ms: float | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert event to a JSON-friendly dictionary, dropping None values."""
        result = asdict(self)
        result["timestamp"] = self.timestamp.isoformat().replace("+00:00", "Z")
        return {k: v for k, v in result.items() if v is not None}


class EventStore:
    """
    Bounded ring buffer of events.

    Process-scoped like the in-memory cache: it starts empty and is lost on
    restart.
    """

    def __init__(self, max_size: int = 5000):
        self.max_size = max_size
        self._events: deque[Event] = deque(maxlen=max_size)
        self._lock = threading.RLock()

    def add_event(
        self,
        event_type: str,
        component: str,
        message: str,
        context: dict[str, Any] | None = None,
        trace_id: str | None = None,
        duration_ms: float | None = None,
    ) -> Event:
        """Append an event and return it."""
        event = Event(
            id=str(uuid.uuid4()),
            timestamp=datetime.now(UTC),
            event_type=event_type,
            component=component,
            message=message,
            trace_id=trace_id,
            context=context or {},
            duration_ms=duration_ms,
        )
        with self._lock:
            self._events.append(event)
        return event

    def recent(self, limit: int = 100, event_type: str | None = None) -> list[Event]:
        """
        Most recent events in chronological order (oldest first).

        Args:
            limit: Maximum number of events to return
            event_type: Optional event type filter
        """
        if limit <= 0:
            return []
        with self._lock:
            events = [e for e in self._events if event_type is None or e.event_type == event_type]
        return events[-limit:]

    def by_trace(self, trace_id: str) -> list[Event]:
        """All events recorded under one trace id."""
        with self._lock:
            return [e for e in self._events if e.trace_id == trace_id]

    def purge_older_than(self, max_age_seconds: int) -> int:
        """Drop events older than the given age; returns how many were removed."""
        cutoff = datetime.now(UTC) - timedelta(seconds=max_age_seconds)
        with self._lock:
            kept = [e for e in self._events if e.timestamp > cutoff]
            removed = len(self._events) - len(kept)
            self._events = deque(kept, maxlen=self.max_size)
        return removed

    def all(self) -> list[Event]:
        with self._lock:
            return list(self._events)

    def clear(self) -> None:
        with self._lock:
            self._events.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)

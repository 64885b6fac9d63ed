"""Notification trigger interface and the default event-log implementation."""

from typing import Protocol

from vesrates.models.notification import RateChangePayload
from vesrates.utils.event_store import NOTIFICATION, EventStore
from vesrates.utils.logger import StructuredLogger
from vesrates.utils.trace_context import get_current_trace


class NotificationTrigger(Protocol):
    """Receives changed rates; delivering push messages is up to the implementation."""

    async def notify(self, payload: RateChangePayload, deltas: dict[str, float]) -> None:
        ...


class EventLogNotificationTrigger:
    """Records every notification in the event store and the structured log."""

    def __init__(self, event_store: EventStore):
        self.event_store = event_store
        self.logger = StructuredLogger("NotificationTrigger")

    async def notify(self, payload: RateChangePayload, deltas: dict[str, float]) -> None:
        context = {"payload": payload.to_dict(), "deltas": dict(deltas)}
        self.event_store.add_event(
            event_type=NOTIFICATION,
            component="NotificationTrigger",
            message=f"Rates changed for {payload.source.value}: {', '.join(payload.changed)}",
            context=context,
            trace_id=get_current_trace(),
        )
        self.logger.info("Rate change notification", context=context)

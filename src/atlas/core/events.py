"""Session-scoped event channel.

Observers subscribe to a channel owned by whoever drives a planning or tool
session; there is no module-level registry.
"""

from collections.abc import Callable

import structlog

from atlas.core.models import TaskEvent

logger = structlog.get_logger(__name__)

EventCallback = Callable[[TaskEvent], None]


class EventChannel:
    """Fan-out of TaskEvents to subscribed callbacks."""

    def __init__(self) -> None:
        self._subscribers: list[EventCallback] = []

    def subscribe(self, callback: EventCallback) -> Callable[[], None]:
        """Register a callback.

        Returns:
            Function that removes the subscription
        """
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def publish(self, event: TaskEvent) -> None:
        """Deliver an event to every subscriber.

        A failing subscriber is logged and skipped.
        """
        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception as e:
                logger.error(
                    "event_subscriber_failed",
                    event_type=event.event_type,
                    task_id=event.task_id,
                    error=str(e),
                )

    def emit(self, event_type: str, task_id: str, account_id: str | None = None, **data) -> None:
        """Build and publish a TaskEvent."""
        self.publish(
            TaskEvent(event_type=event_type, task_id=task_id, account_id=account_id, data=data)
        )

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

"""
Event system for the postboard service.

Account lifecycle cascades and post status changes are announced on the
event bus so that audit logging, notifications or counters can follow
along without the coordinator knowing about them.
"""

from __future__ import annotations

import fnmatch
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)

# Type for event handlers
EventHandler = Callable[["Event"], Awaitable[list["Event"]]]


@dataclass
class Event:
    """
    An event in the system.

    Events are immutable records of something that happened. They carry
    all the context needed for handlers to process them.
    """

    event_type: str  # e.g., "account.deactivated", "post.status_changed"
    subject_id: str  # User or post the event is about
    payload: dict[str, Any] = field(default_factory=dict)

    # Who triggered it (None for system-initiated work)
    actor_id: str | None = None

    # Tracing
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    correlation_id: str | None = None
    causation_id: str | None = None

    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def caused_by(self, parent: Event) -> Event:
        """Create a child event caused by this one, inheriting correlation."""
        return Event(
            event_type=self.event_type,
            subject_id=self.subject_id,
            payload=self.payload,
            actor_id=self.actor_id,
            correlation_id=parent.correlation_id or parent.id,
            causation_id=parent.id,
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize event to dictionary."""
        return {
            "id": self.id,
            "event_type": self.event_type,
            "subject_id": self.subject_id,
            "actor_id": self.actor_id,
            "payload": self.payload,
            "correlation_id": self.correlation_id,
            "causation_id": self.causation_id,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class Subscription:
    """A subscription to events matching a pattern."""

    pattern: str  # e.g., "account.*" or "post.status_changed"
    handler: EventHandler

    def matches(self, event: Event) -> bool:
        return fnmatch.fnmatch(event.event_type, self.pattern)


class EventBus:
    """
    In-memory event bus implementation.

    Suitable for a single-instance deployment; handlers run in the
    publishing task, one after another.
    """

    def __init__(self, max_history: int = 10000):
        self._subscriptions: list[Subscription] = []
        self._event_history: list[Event] = []
        self._max_history = max_history

    def subscribe(self, pattern: str, handler: EventHandler) -> Subscription:
        """Subscribe to events matching a pattern (wildcards allowed)."""
        subscription = Subscription(pattern=pattern, handler=handler)
        self._subscriptions.append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        """Remove a subscription."""
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    async def publish(self, event: Event) -> list[Event]:
        """
        Publish an event and return any events produced by handlers.

        Handlers can return new events, which are then also published.
        A failing handler is logged and does not stop the others.
        """
        self._event_history.append(event)
        if len(self._event_history) > self._max_history:
            self._event_history = self._event_history[-self._max_history:]

        matching = [s for s in self._subscriptions if s.matches(event)]

        all_resulting_events: list[Event] = []
        for subscription in matching:
            try:
                resulting_events = await subscription.handler(event)
                all_resulting_events.extend(resulting_events or [])
            except Exception:
                logger.exception("Error in event handler for %s", event.event_type)

        for resulting_event in list(all_resulting_events):
            cascade_events = await self.publish(resulting_event.caused_by(event))
            all_resulting_events.extend(cascade_events)

        return all_resulting_events

    def get_history(
        self,
        event_type: str | None = None,
        subject_id: str | None = None,
        limit: int = 100,
    ) -> list[Event]:
        """Query event history with optional filters."""
        results = self._event_history

        if event_type:
            results = [e for e in results if fnmatch.fnmatch(e.event_type, event_type)]

        if subject_id:
            results = [e for e in results if e.subject_id == subject_id]

        return results[-limit:]


# Singleton event bus for the application
_default_bus: EventBus | None = None


def get_event_bus() -> EventBus:
    """Get the default event bus instance."""
    global _default_bus
    if _default_bus is None:
        _default_bus = EventBus()
    return _default_bus


def reset_event_bus() -> None:
    """Reset the default event bus (useful for testing)."""
    global _default_bus
    _default_bus = None


# Convenience constructors for lifecycle events
def account_event(kind: str, user_id: str, actor_id: str | None = None, **payload) -> Event:
    """Create an ``account.<kind>`` event (deactivated, reactivated, deleted)."""
    return Event(
        event_type=f"account.{kind}",
        subject_id=user_id,
        actor_id=actor_id,
        payload=payload,
    )


def post_status_changed(
    post_id: str,
    old_status: str,
    new_status: str,
    actor_id: str | None = None,
) -> Event:
    """Create a post.status_changed event."""
    return Event(
        event_type="post.status_changed",
        subject_id=post_id,
        actor_id=actor_id,
        payload={"from": old_status, "to": new_status},
    )

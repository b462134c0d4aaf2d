"""
Event system for the courier platform.

The event bus carries identity and role change notifications. Permission
sessions subscribe to it so a compiled ability is rebuilt whenever the
signed-in user or their role changes.
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


# Event types
IDENTITY_CHANGED = "identity.changed"
IDENTITY_SIGNED_OUT = "identity.signed_out"
ROLE_CHANGED = "role.changed"


@dataclass
class Event:
    """
    An event in the system.

    Events are immutable records of something that happened.
    """

    event_type: str  # e.g., "identity.changed", "role.changed"
    user_id: str | None = None
    payload: dict[str, Any] = field(default_factory=dict)

    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class Subscription:
    """A subscription to events matching a pattern."""

    pattern: str  # e.g., "identity.*" or "role.changed"
    handler: EventHandler

    def matches(self, event: Event) -> bool:
        return fnmatch.fnmatch(event.event_type, self.pattern)


class EventBus:
    """
    In-memory event bus implementation.

    Handlers run sequentially in subscription order, so by the time
    `publish()` returns every subscriber has processed the event.
    """

    def __init__(self, max_history: int = 1000):
        self._subscriptions: list[Subscription] = []
        self._event_history: list[Event] = []
        self._max_history = max_history

    def subscribe(self, pattern: str, handler: EventHandler) -> Subscription:
        """
        Subscribe to events matching a pattern.

        Args:
            pattern: Event type pattern (supports wildcards like "identity.*")
            handler: Async function to handle matching events

        Returns:
            The subscription object (can be used to unsubscribe)
        """
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
                # One failing subscriber must not starve the others
                logger.exception(f"Error in event handler for {event.event_type}")

        for resulting_event in list(all_resulting_events):
            cascade_events = await self.publish(resulting_event)
            all_resulting_events.extend(cascade_events)

        return all_resulting_events

    def get_history(
        self,
        event_type: str | None = None,
        user_id: str | None = None,
        limit: int = 100,
    ) -> list[Event]:
        """Query event history with optional filters."""
        results = self._event_history

        if event_type:
            results = [e for e in results if fnmatch.fnmatch(e.event_type, event_type)]

        if user_id:
            results = [e for e in results if e.user_id == user_id]

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


# Convenience functions for common event types
def identity_changed(user_id: str, email: str | None = None, **extra_payload) -> Event:
    """Create an identity.changed event."""
    return Event(
        event_type=IDENTITY_CHANGED,
        user_id=user_id,
        payload={"email": email, **extra_payload},
    )


def identity_signed_out(user_id: str | None = None) -> Event:
    """Create an identity.signed_out event."""
    return Event(event_type=IDENTITY_SIGNED_OUT, user_id=user_id)


def role_changed(
    user_id: str,
    from_role: str | None,
    to_role: str,
    performed_by: str,
    **extra_payload,
) -> Event:
    """Create a role.changed event."""
    return Event(
        event_type=ROLE_CHANGED,
        user_id=user_id,
        payload={
            "from_role": from_role,
            "to_role": to_role,
            "performed_by": performed_by,
            **extra_payload,
        },
    )

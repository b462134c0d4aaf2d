"""
Core building blocks shared across the courier platform.
"""

from courier.core.events import (
    Event,
    EventBus,
    Subscription,
    get_event_bus,
    reset_event_bus,
    identity_changed,
    identity_signed_out,
    role_changed,
)
from courier.core.utils import generate_id, utc_now

__all__ = [
    "Event",
    "EventBus",
    "Subscription",
    "get_event_bus",
    "reset_event_bus",
    "identity_changed",
    "identity_signed_out",
    "role_changed",
    "generate_id",
    "utc_now",
]

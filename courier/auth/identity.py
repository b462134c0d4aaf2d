"""
Identity providers.

An identity provider answers "who is signed in" and announces changes on
the event bus (`identity.changed`, `identity.signed_out`). Permission
sessions listen for those events; they never poll the provider.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

from pydantic import BaseModel

from courier.core.events import EventBus, identity_changed, identity_signed_out

logger = logging.getLogger(__name__)


class Identity(BaseModel):
    """An authenticated user."""

    id: str
    email: str | None = None
    display_name: str | None = None


class IdentityProvider(ABC):
    """Source of the currently signed-in identity."""

    @abstractmethod
    def current_user(self) -> Identity | None:
        """The signed-in identity, or None."""
        pass


class StaticIdentityProvider(IdentityProvider):
    """
    In-process identity provider.

    Used by tests and by server-side sessions where the identity comes from
    a verified bearer token rather than an interactive sign-in.
    """

    def __init__(self, bus: EventBus, identity: Identity | None = None):
        self.bus = bus
        self._identity = identity

    def current_user(self) -> Identity | None:
        return self._identity

    async def sign_in(self, identity: Identity) -> None:
        self._identity = identity
        logger.debug(f"Identity signed in: {identity.id}")
        await self.bus.publish(identity_changed(identity.id, email=identity.email))

    async def sign_out(self) -> None:
        previous = self._identity
        self._identity = None
        logger.debug(f"Identity signed out: {previous.id if previous else None}")
        await self.bus.publish(identity_signed_out(previous.id if previous else None))

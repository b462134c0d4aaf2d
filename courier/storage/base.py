"""
Storage abstraction layer.

Role configuration, user profiles, role assignments, role requests and the
transition log all live in a document store reached through this interface.
The hosted document database is one implementation; the in-memory store in
`courier.storage.local` is another.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


class MetadataStorage(ABC):
    """
    Storage for structured documents.

    Documents are JSON-serializable dicts grouped into named collections.
    """

    @abstractmethod
    async def save(self, collection: str, id: str, data: dict[str, Any]) -> None:
        """Save a document to a collection."""
        pass

    @abstractmethod
    async def get(self, collection: str, id: str) -> dict[str, Any] | None:
        """Get a document by ID."""
        pass

    @abstractmethod
    async def delete(self, collection: str, id: str) -> bool:
        """Delete a document."""
        pass

    @abstractmethod
    async def query(
        self,
        collection: str,
        filters: dict[str, Any] | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        """Query documents with optional equality filters."""
        pass

    @abstractmethod
    async def update(self, collection: str, id: str, updates: dict[str, Any]) -> bool:
        """Partial update of a document."""
        pass


class Collections:
    """Standard collection names."""

    USER_PROFILES = "userProfiles"
    ROLE_CONFIGS = "roleConfigs"
    ROLE_ASSIGNMENTS = "roleAssignments"
    ROLE_REQUESTS = "roleRequests"
    ROLE_TRANSITIONS = "roleTransitions"

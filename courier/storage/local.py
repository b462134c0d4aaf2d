"""
Local storage implementation for development and tests.
"""

from __future__ import annotations

import copy
from datetime import datetime, timezone
from typing import Any

from courier.storage.base import MetadataStorage


class InMemoryMetadataStorage(MetadataStorage):
    """In-memory document storage."""

    def __init__(self):
        self._data: dict[str, dict[str, dict[str, Any]]] = {}

    async def save(self, collection: str, id: str, data: dict[str, Any]) -> None:
        if collection not in self._data:
            self._data[collection] = {}
        self._data[collection][id] = {
            **copy.deepcopy(data),
            "_id": id,
            "_updated_at": datetime.now(timezone.utc).isoformat(),
        }

    async def get(self, collection: str, id: str) -> dict[str, Any] | None:
        doc = self._data.get(collection, {}).get(id)
        return copy.deepcopy(doc) if doc is not None else None

    async def delete(self, collection: str, id: str) -> bool:
        if collection in self._data and id in self._data[collection]:
            del self._data[collection][id]
            return True
        return False

    async def query(
        self,
        collection: str,
        filters: dict[str, Any] | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        if collection not in self._data:
            return []

        results = list(self._data[collection].values())

        if filters:
            results = [
                doc for doc in results
                if all(doc.get(key) == value for key, value in filters.items())
            ]

        return [copy.deepcopy(doc) for doc in results[offset:offset + limit]]

    async def update(self, collection: str, id: str, updates: dict[str, Any]) -> bool:
        if collection in self._data and id in self._data[collection]:
            self._data[collection][id].update(copy.deepcopy(updates))
            self._data[collection][id]["_updated_at"] = datetime.now(timezone.utc).isoformat()
            return True
        return False


def create_local_storage() -> InMemoryMetadataStorage:
    """Create an in-memory metadata store."""
    return InMemoryMetadataStorage()

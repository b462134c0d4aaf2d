"""
Storage abstractions.

- MetadataStorage -> hosted document database (role configs, profiles,
  assignments, requests, transitions)
"""

from courier.storage.base import MetadataStorage, Collections
from courier.storage.local import InMemoryMetadataStorage, create_local_storage

__all__ = [
    "MetadataStorage",
    "Collections",
    "InMemoryMetadataStorage",
    "create_local_storage",
]

"""
Shared fixtures.
"""

import pytest

from courier.auth.registry import RoleRegistry
from courier.auth.service import RoleService
from courier.config import get_settings
from courier.core.events import EventBus, reset_event_bus
from courier.storage import InMemoryMetadataStorage


@pytest.fixture(autouse=True)
def fresh_singletons():
    """Each test starts with a clean event bus and settings."""
    reset_event_bus()
    get_settings.cache_clear()
    yield
    reset_event_bus()
    get_settings.cache_clear()


@pytest.fixture
def storage():
    return InMemoryMetadataStorage()


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
async def registry(storage):
    registry = RoleRegistry(storage)
    await registry.initialize()
    return registry


@pytest.fixture
def role_service(storage, registry, bus):
    return RoleService(storage, registry, bus=bus)

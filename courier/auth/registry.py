"""
Role registry.

Owns the role configuration table. Configs are persisted in the document
store (collection `roleConfigs`, keyed by role name) and served from an
in-process cache. The registry is constructed with its store and passed to
whatever needs it; there is no module-level instance.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping

from pydantic import ValidationError

from courier.auth.capabilities import Role
from courier.auth.roles import (
    DEFAULT_ROLE_CONFIGS,
    ROLE_ORDER,
    RoleConfig,
    RoleConfigError,
    parse_role,
    validate_role_configs,
)
from courier.storage.base import Collections, MetadataStorage

logger = logging.getLogger(__name__)


class RoleRegistry:
    """
    Role configuration backed by a MetadataStorage collection.

    Usage:
        registry = RoleRegistry(storage)
        await registry.initialize()
        config = await registry.get_role_config("editor")
    """

    def __init__(self, storage: MetadataStorage):
        self.storage = storage
        self._cache: dict[Role, RoleConfig] = {}
        self._initialized = False

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def initialize(self, overrides: Mapping[Role, RoleConfig] | None = None) -> None:
        """
        Seed missing role configs, apply overrides and load the cache.

        Existing stored configs are left alone unless overridden.

        Raises:
            RoleConfigError: if the resulting table is invalid
        """
        overrides = dict(overrides or {})
        seeded = 0

        for role in ROLE_ORDER:
            if role in overrides:
                await self.storage.save(
                    Collections.ROLE_CONFIGS, role.value, overrides[role].to_document()
                )
                continue

            existing = await self.storage.get(Collections.ROLE_CONFIGS, role.value)
            if existing is None:
                await self.storage.save(
                    Collections.ROLE_CONFIGS, role.value, DEFAULT_ROLE_CONFIGS[role].to_document()
                )
                seeded += 1

        await self.refresh()
        self._initialized = True
        logger.info(
            f"Role registry initialized: {seeded} defaults seeded, {len(overrides)} overrides"
        )

    async def refresh(self) -> None:
        """Reload every role config from storage and revalidate."""
        configs: dict[Role, RoleConfig] = {}
        for role in ROLE_ORDER:
            config = await self._fetch(role)
            if config is not None:
                configs[role] = config

        validate_role_configs(configs)
        self._cache = configs

    async def get_role_config(self, role: Role | str) -> RoleConfig | None:
        """Get the config for a role, fetching it on a cache miss."""
        parsed = parse_role(role)
        if parsed is None:
            logger.warning(f"Requested config for unknown role {role!r}")
            return None

        if parsed in self._cache:
            return self._cache[parsed]

        config = await self._fetch(parsed)
        if config is not None:
            self._cache[parsed] = config
        return config

    async def get_all_role_configs(self) -> dict[Role, RoleConfig]:
        """All role configs in escalation order."""
        if not self._initialized:
            await self.refresh()
        return {role: self._cache[role] for role in ROLE_ORDER if role in self._cache}

    def cached(self, role: Role | str) -> RoleConfig | None:
        """Cache-only lookup, for synchronous callers."""
        parsed = parse_role(role)
        return self._cache.get(parsed) if parsed else None

    async def _fetch(self, role: Role) -> RoleConfig | None:
        doc = await self.storage.get(Collections.ROLE_CONFIGS, role.value)
        if doc is None:
            return None
        try:
            return RoleConfig.model_validate(doc)
        except ValidationError as e:
            raise RoleConfigError(f"Stored config for role '{role.value}' is invalid: {e}") from e

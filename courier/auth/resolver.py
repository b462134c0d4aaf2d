"""
Granular permission resolver.

The coarse authorization path: `domain:verb` permission strings checked by
membership against the user's role config. Independent of the rule engine
in ability.py; the two can disagree and call sites pick one.

Context (ownership hints) is only consulted after the membership check has
passed. It never grants a permission the role does not carry.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field

from courier.auth.capabilities import Permission

if TYPE_CHECKING:
    from courier.auth.registry import RoleRegistry
    from courier.auth.service import RoleService

logger = logging.getLogger(__name__)


class PermissionContext(BaseModel):
    """Optional hints about the resource a permission is checked against."""

    resource: str | None = None
    resource_id: str | None = None
    owner_id: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class PermissionResolver:
    """Checks granular permissions for a user id."""

    def __init__(self, role_service: RoleService, registry: RoleRegistry):
        self.role_service = role_service
        self.registry = registry

    async def has_permission(
        self,
        user_id: str,
        permission: Permission | str,
        context: PermissionContext | None = None,
    ) -> bool:
        """Never raises; errors and unknown permissions resolve to False."""
        try:
            permission = Permission(permission)

            role = await self.role_service.get_user_role(user_id)
            config = await self.registry.get_role_config(role)
            if config is None or not config.has_permission(permission):
                return False

            if context is not None:
                return self._context_allows(user_id, permission, context)
            return True

        except Exception as e:
            logger.error(f"Error checking permission {permission!r} for user {user_id}: {e}")
            return False

    async def has_any_permission(
        self,
        user_id: str,
        permissions: Iterable[Permission | str],
    ) -> bool:
        """True on the first permission held; later ones are not looked up."""
        for permission in permissions:
            if await self.has_permission(user_id, permission):
                return True
        return False

    async def has_all_permissions(
        self,
        user_id: str,
        permissions: Iterable[Permission | str],
    ) -> bool:
        for permission in permissions:
            if not await self.has_permission(user_id, permission):
                return False
        return True

    def _context_allows(
        self,
        user_id: str,
        permission: Permission,
        context: PermissionContext,
    ) -> bool:
        # Owners always pass; everyone else keeps the result of the base check
        if context.owner_id is not None and context.owner_id == user_id:
            logger.debug(f"Owner override for {permission.value} on {context.resource_id}")
        return True

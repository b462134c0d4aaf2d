"""
Auth context - the "who can do what" for one acting user.

This is the lightweight object handed to route handlers and held by a
permission session. It pairs the resolved role with the compiled ability
for (role, user) and exposes the Authorization API on top of both.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Union

from pydantic import BaseModel, ValidationError

from courier.auth.ability import CompiledAbility, PermissionCheckResult, compile_ability
from courier.auth.capabilities import Action, Permission, Role, Subject
from courier.auth.roles import at_least, parse_role
from courier.config import get_settings

if TYPE_CHECKING:
    from courier.auth.registry import RoleRegistry
    from courier.auth.service import RoleService

logger = logging.getLogger(__name__)

SYSTEM_USER_ID = "__system__"


# =============================================================================
# Bulk Checks
# =============================================================================


class PermissionCheck(BaseModel):
    """One query in a bulk check. Strings are kept raw so bad input denies."""

    action: str
    subject: str
    resource: dict[str, Any] | None = None


class BulkPermissionCheckResult(PermissionCheckResult):
    action: str
    subject: str
    resource: dict[str, Any] | None = None


class BulkPermissionSummary(BaseModel):
    total: int
    allowed: int
    denied: int


class BulkPermissionResult(BaseModel):
    checks: list[BulkPermissionCheckResult]
    summary: BulkPermissionSummary


CheckLike = Union[PermissionCheck, Mapping[str, Any]]


def _as_check(check: CheckLike) -> PermissionCheck | None:
    """Validate one entry. Malformed entries come back as None and deny."""
    if isinstance(check, PermissionCheck):
        return check
    try:
        return PermissionCheck.model_validate(dict(check))
    except (ValidationError, TypeError, ValueError) as e:
        logger.warning(f"Malformed permission check {check!r}: {e}")
        return None


def _raw_field(check: Any, name: str) -> str:
    value = check.get(name) if isinstance(check, Mapping) else None
    return "" if value is None else str(value)


_NOT_AUTHENTICATED = PermissionCheckResult(allowed=False, reason="Not authenticated")
_MALFORMED = PermissionCheckResult(allowed=False, reason="Permission check failed")


# =============================================================================
# AuthContext
# =============================================================================


@dataclass
class AuthContext:
    """
    Authorization context for an acting user.

    Usage in routes:
        async def my_route(ctx: AuthContext = Depends(require_auth())):
            if ctx.can("approve", "Content", submission):
                ...
    """

    # Who
    user_id: str | None = None
    user_email: str | None = None
    role: Role | None = None

    # Compiled for exactly (role, user_id); None when anonymous
    ability: CompiledAbility | None = field(default=None, repr=False)

    # Granular permissions from the role config
    permissions: frozenset[Permission] = frozenset()

    # Extra context
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def is_authenticated(self) -> bool:
        return self.user_id is not None

    @property
    def is_anonymous(self) -> bool:
        return self.user_id is None

    @property
    def is_system(self) -> bool:
        return self.user_id == SYSTEM_USER_ID

    # =========================================================================
    # Ability checks
    # =========================================================================

    def can(
        self,
        action: Action | str,
        subject: Subject | str,
        resource: Any = None,
        field: str | None = None,
    ) -> bool:
        """
        Check if the user may perform an action.

        Usage:
            ctx.can("read", "Content")                  # any content at all?
            ctx.can(Action.UPDATE, Subject.CONTENT, doc) # this document?
        """
        if self.ability is None:
            logger.debug(f"No ability for anonymous context, denying {action} on {subject}")
            return False
        return self.ability.can(action, subject, resource, field)

    def cannot(
        self,
        action: Action | str,
        subject: Subject | str,
        resource: Any = None,
        field: str | None = None,
    ) -> bool:
        return not self.can(action, subject, resource, field)

    def check_permission(
        self,
        action: Action | str,
        subject: Subject | str,
        resource: Any = None,
        field: str | None = None,
    ) -> PermissionCheckResult:
        if self.ability is None:
            return _NOT_AUTHENTICATED
        return self.ability.check(action, subject, resource, field)

    def check_bulk_permissions(self, checks: Iterable[CheckLike]) -> BulkPermissionResult:
        """Run several checks; results keep input order."""
        results = []
        for raw in checks:
            check = _as_check(raw)
            if check is None:
                results.append(BulkPermissionCheckResult(
                    action=_raw_field(raw, "action"),
                    subject=_raw_field(raw, "subject"),
                    **_MALFORMED.model_dump(),
                ))
                continue

            outcome = self.check_permission(check.action, check.subject, check.resource)
            results.append(BulkPermissionCheckResult(
                **check.model_dump(),
                **outcome.model_dump(),
            ))

        allowed = sum(1 for r in results if r.allowed)
        return BulkPermissionResult(
            checks=results,
            summary=BulkPermissionSummary(
                total=len(results),
                allowed=allowed,
                denied=len(results) - allowed,
            ),
        )

    def has_any_permission(self, checks: Iterable[CheckLike]) -> bool:
        for raw in checks:
            check = _as_check(raw)
            if check is not None and self.can(check.action, check.subject, check.resource):
                return True
        return False

    def has_all_permissions(self, checks: Iterable[CheckLike]) -> bool:
        for raw in checks:
            check = _as_check(raw)
            if check is None or not self.can(check.action, check.subject, check.resource):
                return False
        return True

    def get_allowed_actions(self, subject: Subject | str, resource: Any = None) -> list[Action]:
        """Every action the user may perform on a subject."""
        if self.ability is None:
            return []
        return [action for action in Action if self.can(action, subject, resource)]

    def require(
        self,
        action: Action | str,
        subject: Subject | str,
        resource: Any = None,
    ) -> None:
        """
        Raise if the user may not perform the action.

        Usage:
            ctx.require("assign", "Role", {"roleType": "editor"})
        """
        result = self.check_permission(action, subject, resource)
        if not result.allowed:
            from fastapi import HTTPException
            raise HTTPException(
                status_code=403,
                detail=f"Permission denied: {action} {subject} ({result.reason})",
            )

    # =========================================================================
    # Role and granular checks
    # =========================================================================

    def has_role(self, role: Role | str) -> bool:
        """True if the user's role ranks at or above `role`."""
        if self.role is None:
            return False
        return at_least(self.role, role)

    def has_granular(self, permission: Permission | str) -> bool:
        try:
            return Permission(permission) in self.permissions
        except ValueError:
            return False

    # =========================================================================
    # Constructors
    # =========================================================================

    @classmethod
    def anonymous(cls) -> AuthContext:
        """Create an anonymous context (no user, no ability)."""
        return cls()

    @classmethod
    def system(cls) -> AuthContext:
        """Create a system context (full access for internal operations)."""
        return cls(
            user_id=SYSTEM_USER_ID,
            role=Role.ADMINISTRATOR,
            ability=compile_ability(Role.ADMINISTRATOR, SYSTEM_USER_ID),
            permissions=frozenset(Permission),
        )


# =============================================================================
# Context Resolution
# =============================================================================


async def get_auth_context(
    user_id: str | None,
    role_service: RoleService,
    registry: RoleRegistry,
    email: str | None = None,
) -> AuthContext:
    """
    Resolve the full auth context for a user.

    Looks up the role (falls back to member), its config, and compiles the
    ability for (role, user_id).
    """
    if not user_id:
        return AuthContext.anonymous()

    role = parse_role(await role_service.get_user_role(user_id, use_cache=False)) or Role.MEMBER
    config = await registry.get_role_config(role)

    ability = compile_ability(
        role,
        user_id,
        cache_enabled=get_settings().permission_cache_enabled,
    )

    return AuthContext(
        user_id=user_id,
        user_email=email,
        role=role,
        ability=ability,
        permissions=config.permissions if config else frozenset(),
    )

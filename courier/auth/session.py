"""
Permission session - the long-lived authorization state of one client.

A session follows the identity provider and the role store through the
event bus. Whenever the (user, role) pair changes it compiles a new
ability and swaps the AuthContext reference; the old ability and its cache
are simply dropped. A check that runs between a change notification and
the swap sees the previous ability. Callers that need the new state must
await `rebuild()` (or the publish that triggered it) first.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any, Callable

from courier.auth.ability import PermissionCheckResult
from courier.auth.capabilities import Action, Permission, Role, Subject
from courier.auth.context import AuthContext, BulkPermissionResult, CheckLike, get_auth_context
from courier.auth.identity import IdentityProvider
from courier.auth.registry import RoleRegistry
from courier.auth.service import RoleService
from courier.core.events import IDENTITY_CHANGED, ROLE_CHANGED, Event, EventBus, Subscription
from courier.integrations.sentry import set_user

logger = logging.getLogger(__name__)

Navigate = Callable[[str], Any]

_NOT_READY = PermissionCheckResult(allowed=False, reason="Permissions not ready")


class PermissionSession:
    """
    Authorization API bound to whoever is currently signed in.

    Usage:
        session = PermissionSession(identity, role_service, registry, bus, router.push)
        await session.start()
        if session.can("create", "Content"):
            ...
        session.requires_permission("manage", "Print", "/dashboard")
    """

    def __init__(
        self,
        identity: IdentityProvider,
        role_service: RoleService,
        registry: RoleRegistry,
        bus: EventBus,
        navigate: Navigate | None = None,
    ):
        self.identity = identity
        self.role_service = role_service
        self.registry = registry
        self.bus = bus
        self.navigate = navigate

        self.context: AuthContext | None = None
        self.is_loading = False
        self.error: str | None = None
        self._subscriptions: list[Subscription] = []

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> None:
        """Subscribe to identity and role changes and build the initial context."""
        self._subscriptions = [
            self.bus.subscribe("identity.*", self._on_identity_event),
            self.bus.subscribe(ROLE_CHANGED, self._on_role_changed),
        ]
        await self.rebuild()

    def stop(self) -> None:
        for subscription in self._subscriptions:
            self.bus.unsubscribe(subscription)
        self._subscriptions = []

    async def _on_identity_event(self, event: Event) -> list[Event]:
        if event.event_type == IDENTITY_CHANGED and event.user_id:
            self.role_service.invalidate(event.user_id)
        await self.rebuild()
        return []

    async def _on_role_changed(self, event: Event) -> list[Event]:
        if self.user_id is not None and event.user_id == self.user_id:
            self.role_service.invalidate(event.user_id)
            await self.rebuild()
        return []

    async def rebuild(self) -> None:
        """Recompile the ability if the (user, role) pair changed."""
        user = self.identity.current_user()
        if user is None:
            if self.context is not None:
                logger.debug("No user authenticated, clearing ability")
            self.context = None
            set_user(None)
            return

        self.is_loading = True
        self.error = None
        try:
            role = await self.role_service.get_user_role(user.id)
            if self.context is not None and (self.context.user_id, self.context.role) == (user.id, role):
                return

            self.context = await get_auth_context(
                user.id, self.role_service, self.registry, email=user.email
            )
            set_user(user.id, user.email, role=role.value)
            logger.debug(f"Ability initialized for user {user.id} with role {role.value}")

        except Exception as e:
            self.context = None
            self.error = str(e) or "Failed to initialize permissions"
            logger.error(f"Error initializing ability for user {user.id}: {e}")
        finally:
            self.is_loading = False

    # =========================================================================
    # State
    # =========================================================================

    @property
    def is_ready(self) -> bool:
        return self.context is not None and not self.is_loading

    @property
    def user_id(self) -> str | None:
        return self.context.user_id if self.context else None

    @property
    def role(self) -> Role | None:
        return self.context.role if self.context else None

    # =========================================================================
    # Authorization API
    # =========================================================================

    def can(
        self,
        action: Action | str,
        subject: Subject | str,
        resource: Any = None,
        field: str | None = None,
    ) -> bool:
        if self.context is None:
            logger.warning(f"Ability not initialized, denying {action} on {subject}")
            return False
        return self.context.can(action, subject, resource, field)

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
        if self.context is None:
            return _NOT_READY
        return self.context.check_permission(action, subject, resource, field)

    def check_bulk_permissions(self, checks: Iterable[CheckLike]) -> BulkPermissionResult:
        return (self.context or AuthContext.anonymous()).check_bulk_permissions(checks)

    def has_any_permission(self, checks: Iterable[CheckLike]) -> bool:
        return self.context is not None and self.context.has_any_permission(checks)

    def has_all_permissions(self, checks: Iterable[CheckLike]) -> bool:
        return self.context is not None and self.context.has_all_permissions(checks)

    def get_allowed_actions(self, subject: Subject | str, resource: Any = None) -> list[Action]:
        if self.context is None:
            return []
        return self.context.get_allowed_actions(subject, resource)

    def has_role(self, role: Role | str) -> bool:
        return self.context is not None and self.context.has_role(role)

    def has_granular(self, permission: Permission | str) -> bool:
        return self.context is not None and self.context.has_granular(permission)

    def clear_cache(self) -> None:
        if self.context is not None and self.context.ability is not None:
            self.context.ability.clear_cache()

    def requires_permission(
        self,
        action: Action | str,
        subject: Subject | str,
        fallback_route: str = "/",
    ) -> bool:
        """
        Route guard. Denied (or not yet ready) callers are sent to the fallback.
        """
        if not self.is_ready:
            logger.warning(f"Permission check for {action} on {subject} called before ready")
            self._redirect(fallback_route)
            return False

        allowed = self.can(action, subject)
        if not allowed:
            logger.warning(f"Permission denied for {action} on {subject}, redirecting to {fallback_route}")
            self._redirect(fallback_route)
        return allowed

    def _redirect(self, route: str) -> None:
        if self.navigate is not None:
            self.navigate(route)

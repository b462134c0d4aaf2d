"""
Policies - the clean interface for route authorization.

Usage in route handlers:
    ctx: AuthContext = Depends(require_ability("approve", "Content"))
    ctx: AuthContext = Depends(require_role(Role.MODERATOR))
    ctx: AuthContext = Depends(require_permission("user:role:assign"))

Design:
- every `require_*()` returns a FastAPI dependency that resolves to AuthContext
- it extracts the user from the bearer token and resolves role + ability
  through the services on `app.state`
- if denied, raises 403; if allowed, the route gets the AuthContext
"""

from __future__ import annotations

import logging
from typing import Callable

from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from courier.auth.capabilities import Action, Permission, Role, Subject
from courier.auth.context import AuthContext, get_auth_context
from courier.auth.tokens import TokenError, decode_token
from courier.config import get_settings

logger = logging.getLogger(__name__)


# =============================================================================
# Token Handling
# =============================================================================


# Optional bearer (doesn't fail if no token)
optional_bearer = HTTPBearer(auto_error=False)


async def get_user_from_token(
    credentials: HTTPAuthorizationCredentials | None = Depends(optional_bearer),
) -> str | None:
    """
    Extract user_id from the bearer token.

    Handles:
    - Real JWT tokens (validated with secret)
    - Dev tokens like "user_123" or "dev_abc" (non-production only)
    """
    if not credentials:
        return None

    token = credentials.credentials

    try:
        return decode_token(token, expected_type="access").sub
    except TokenError:
        pass  # Fall through to dev mode

    if not get_settings().is_production:
        if token.startswith("user_") or token.startswith("dev_"):
            return token

    logger.debug("Rejected bearer token")
    return None


# =============================================================================
# Policy
# =============================================================================


class Policy:
    """
    A policy that can be checked against an AuthContext.

    Checks run in order: authentication, minimum role, granular
    permissions, then the (action, subject) ability check.
    """

    def __init__(
        self,
        action: Action | str | None = None,
        subject: Subject | str | None = None,
        permissions: list[Permission | str] | None = None,
        require_all: bool = True,
        require_auth: bool = True,
        min_role: Role | str | None = None,
    ):
        self.action = action
        self.subject = subject
        self.permissions = permissions or []
        self.require_all_permissions = require_all
        self.require_auth = require_auth
        self.min_role = min_role

    def check(self, ctx: AuthContext) -> tuple[bool, str | None]:
        """
        Check if context satisfies this policy.

        Returns: (allowed, error_message)
        """
        if self.require_auth and ctx.is_anonymous:
            return False, "Authentication required"

        if self.min_role is not None and not ctx.has_role(self.min_role):
            return False, f"Requires {Role(self.min_role).value} role or higher"

        if self.permissions:
            held = [p for p in self.permissions if ctx.has_granular(p)]
            if self.require_all_permissions and len(held) < len(self.permissions):
                missing = [Permission(p).value for p in self.permissions if p not in held]
                return False, f"Missing permissions: {missing}"
            if not self.require_all_permissions and not held:
                return False, f"Requires one of: {[Permission(p).value for p in self.permissions]}"

        if self.action is not None and self.subject is not None:
            result = ctx.check_permission(self.action, self.subject)
            if not result.allowed:
                return False, result.reason or "Permission denied"

        return True, None


# =============================================================================
# Main Interface
# =============================================================================


def require_ability(action: Action | str, subject: Subject | str) -> Callable:
    """
    Require that the user can perform `action` on some `subject`.

    Instance-level checks belong in the handler, via ctx.require(...),
    once the resource is loaded.
    """
    return _create_dependency(Policy(action=action, subject=subject))


def require_role(role: Role | str) -> Callable:
    """Require a minimum role in the hierarchy."""
    return _create_dependency(Policy(min_role=role))


def require_permission(*permissions: Permission | str, require_all: bool = True) -> Callable:
    """Require granular permissions (all by default)."""
    return _create_dependency(Policy(permissions=list(permissions), require_all=require_all))


def require_any_permission(*permissions: Permission | str) -> Callable:
    return require_permission(*permissions, require_all=False)


def require_auth() -> Callable:
    """Just require authentication."""
    return _create_dependency(Policy())


# =============================================================================
# Internal: Create the FastAPI Dependency
# =============================================================================


async def resolve_context(request: Request, user_id: str | None) -> AuthContext:
    """Build the AuthContext for a request from the services on app.state."""
    if not user_id:
        return AuthContext.anonymous()

    state = request.app.state
    return await get_auth_context(
        user_id=user_id,
        role_service=state.role_service,
        registry=state.role_registry,
    )


def _create_dependency(policy: Policy) -> Callable:
    """Create a FastAPI dependency from a policy."""

    async def dependency(
        request: Request,
        user_id: str | None = Depends(get_user_from_token),
    ) -> AuthContext:
        ctx = await resolve_context(request, user_id)

        allowed, error = policy.check(ctx)
        if not allowed:
            status_code = 401 if ctx.is_anonymous and policy.require_auth else 403
            raise HTTPException(status_code=status_code, detail=error)

        return ctx

    return dependency

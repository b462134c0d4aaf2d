"""
Role management service.

Resolves each user's current role and runs the role workflows on top of the
document store: direct assignment, self-service requests with review, and
the append-only transition log.

Role resolution order: user profile -> active role assignment -> member.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any

from pydantic import BaseModel, Field

from courier.auth.capabilities import Role, RoleAssignmentMethod, RoleRequestStatus
from courier.auth.registry import RoleRegistry
from courier.auth.roles import hierarchy_of, parse_role
from courier.config import Settings, get_settings
from courier.core.events import EventBus, role_changed
from courier.core.utils import generate_id, utc_now
from courier.storage.base import Collections, MetadataStorage

logger = logging.getLogger(__name__)


# =============================================================================
# Errors
# =============================================================================


class RoleError(Exception):
    """Base exception for role management errors."""
    pass


class RoleAssignmentError(RoleError):
    """Role cannot be assigned as asked."""
    pass


class RoleRequestError(RoleError):
    """Role request cannot be created or processed."""
    pass


# =============================================================================
# Records
# =============================================================================


class UserProfile(BaseModel):
    id: str
    email: str | None = None
    display_name: str | None = None
    role: Role | None = None


class RoleAssignment(BaseModel):
    user_id: str
    role: Role
    assigned_by: str
    assigned_at: datetime = Field(default_factory=utc_now)
    assignment_method: RoleAssignmentMethod
    is_active: bool = True


class RoleRequest(BaseModel):
    id: str = Field(default_factory=lambda: generate_id("rreq"))
    user_id: str
    requested_role: Role
    current_role: Role
    reason: str = ""
    status: RoleRequestStatus = RoleRequestStatus.PENDING
    requested_at: datetime = Field(default_factory=utc_now)
    expires_at: datetime
    reviewed_at: datetime | None = None
    reviewed_by: str | None = None
    reviewer_notes: str = ""

    def is_expired(self, now: datetime | None = None) -> bool:
        return self.expires_at < (now or utc_now())


class RoleTransition(BaseModel):
    id: str = Field(default_factory=lambda: generate_id("trn"))
    user_id: str
    from_role: Role | None
    to_role: Role
    transition_type: str  # assignment | promotion | demotion | removal
    performed_by: str
    performed_at: datetime = Field(default_factory=utc_now)
    reason: str = ""
    approval_required: bool = False


def classify_transition(from_role: Role | str | None, to_role: Role | str) -> str:
    """Promotion or demotion by rank; same rank (or no prior role) is an assignment."""
    if from_role is None:
        return "assignment"
    before, after = hierarchy_of(from_role), hierarchy_of(to_role)
    if after > before:
        return "promotion"
    if after < before:
        return "demotion"
    return "assignment"


# =============================================================================
# Service
# =============================================================================


class RoleService:
    """
    Role lookups and role workflows.

    Usage:
        service = RoleService(storage, registry, bus)
        role = await service.get_user_role("u1")
        request_id = await service.request_role("u1", "contributor", "I write")
        await service.process_role_request(request_id, "admin", "approved")
    """

    def __init__(
        self,
        storage: MetadataStorage,
        registry: RoleRegistry,
        bus: EventBus | None = None,
        settings: Settings | None = None,
    ):
        self.storage = storage
        self.registry = registry
        self.bus = bus
        self.settings = settings or get_settings()
        self._role_cache: dict[str, Role] = {}

    # =========================================================================
    # Role resolution
    # =========================================================================

    async def get_user_role(self, user_id: str, use_cache: bool = True) -> Role:
        """
        Current role of a user. Lookup failures resolve to member.

        Per-request callers pass use_cache=False to read the store directly.
        """
        if use_cache and user_id in self._role_cache:
            return self._role_cache[user_id]

        try:
            profile = await self.storage.get(Collections.USER_PROFILES, user_id)
            role = parse_role(profile.get("role")) if profile else None

            if role is None:
                assignment = await self.storage.get(Collections.ROLE_ASSIGNMENTS, user_id)
                if assignment and assignment.get("is_active"):
                    role = parse_role(assignment.get("role"))

            role = role or Role.MEMBER
            if use_cache:
                self._remember(user_id, role)
            return role

        except Exception as e:
            logger.error(f"Failed to get user role for {user_id}: {e}")
            return Role.MEMBER

    def _remember(self, user_id: str, role: Role) -> None:
        self._role_cache.pop(user_id, None)
        self._role_cache[user_id] = role
        # Oldest entries go first
        while len(self._role_cache) > self.settings.role_cache_size:
            del self._role_cache[next(iter(self._role_cache))]

    def invalidate(self, user_id: str) -> None:
        """Drop the cached role for a user."""
        self._role_cache.pop(user_id, None)

    async def get_user_profile(self, user_id: str) -> UserProfile | None:
        doc = await self.storage.get(Collections.USER_PROFILES, user_id)
        return UserProfile.model_validate(doc) if doc else None

    async def set_user_profile(
        self,
        user_id: str,
        email: str | None = None,
        display_name: str | None = None,
        role: Role | str | None = None,
    ) -> UserProfile:
        """Create or update a user profile."""
        existing = await self.get_user_profile(user_id)
        profile = existing or UserProfile(id=user_id)

        updates: dict[str, Any] = {}
        if email is not None:
            updates["email"] = email
        if display_name is not None:
            updates["display_name"] = display_name
        if role is not None:
            parsed = parse_role(role)
            if parsed is None:
                raise RoleAssignmentError(f"Invalid role: {role}")
            updates["role"] = parsed

        profile = profile.model_copy(update=updates)
        await self.storage.save(
            Collections.USER_PROFILES, user_id, profile.model_dump(mode="json")
        )
        self.invalidate(user_id)
        return profile

    async def get_dashboard_route(self, user_id: str) -> str:
        """Landing route for the user's role."""
        role = await self.get_user_role(user_id)
        config = await self.registry.get_role_config(role)
        return config.dashboard_route if config else "/"

    # =========================================================================
    # Assignment
    # =========================================================================

    async def assign_role(
        self,
        user_id: str,
        role: Role | str,
        assigned_by: str,
        method: RoleAssignmentMethod | str = RoleAssignmentMethod.ADMIN_ASSIGNED,
        reason: str | None = None,
    ) -> RoleAssignment:
        """
        Assign a role to a user.

        Raises:
            RoleAssignmentError: invalid role or method, or a method the
                role's config does not allow
        """
        parsed = parse_role(role)
        if parsed is None:
            raise RoleAssignmentError(f"Invalid role: {role}")

        try:
            method = RoleAssignmentMethod(method)
        except ValueError:
            raise RoleAssignmentError(f"Invalid assignment method: {method}")

        config = await self.registry.get_role_config(parsed)
        if config is not None and not config.allows_method(method):
            raise RoleAssignmentError(
                f"Role {parsed.value} cannot be granted via {method.value}"
            )

        current = await self.get_user_role(user_id)

        assignment = RoleAssignment(
            user_id=user_id,
            role=parsed,
            assigned_by=assigned_by,
            assignment_method=method,
        )
        await self.storage.save(
            Collections.ROLE_ASSIGNMENTS, user_id, assignment.model_dump(mode="json")
        )
        await self.set_user_profile(user_id, role=parsed)

        await self.record_transition(
            user_id,
            current,
            parsed,
            classify_transition(current, parsed),
            assigned_by,
            reason,
        )

        logger.info(f"Role {parsed.value} assigned to user {user_id} by {assigned_by}")

        if self.bus is not None:
            await self.bus.publish(role_changed(
                user_id=user_id,
                from_role=current.value,
                to_role=parsed.value,
                performed_by=assigned_by,
                method=method.value,
            ))

        return assignment

    # =========================================================================
    # Requests
    # =========================================================================

    async def request_role(self, user_id: str, requested_role: Role | str, reason: str) -> str:
        """
        Submit a self-service role request.

        Returns:
            The new request id

        Raises:
            RoleRequestError: invalid role, the user's current role, or a
                role that cannot be self-requested
        """
        parsed = parse_role(requested_role)
        if parsed is None:
            raise RoleRequestError(f"Invalid role: {requested_role}")

        current = await self.get_user_role(user_id)
        if current == parsed:
            raise RoleRequestError("User already has the requested role")

        config = await self.registry.get_role_config(parsed)
        if config is None or not config.allows_method(RoleAssignmentMethod.SELF_REQUESTED):
            raise RoleRequestError(f"Role {parsed.value} cannot be requested")

        now = utc_now()
        request = RoleRequest(
            user_id=user_id,
            requested_role=parsed,
            current_role=current,
            reason=reason,
            requested_at=now,
            expires_at=now + timedelta(days=self.settings.role_request_ttl_days),
        )
        await self.storage.save(Collections.ROLE_REQUESTS, request.id, request.model_dump(mode="json"))

        logger.info(f"Role request submitted: {user_id} requesting {parsed.value}")
        return request.id

    async def get_role_request(self, request_id: str) -> RoleRequest | None:
        doc = await self.storage.get(Collections.ROLE_REQUESTS, request_id)
        return RoleRequest.model_validate(doc) if doc else None

    async def list_pending_requests(self, user_id: str | None = None) -> list[RoleRequest]:
        filters: dict[str, Any] = {"status": RoleRequestStatus.PENDING.value}
        if user_id:
            filters["user_id"] = user_id
        docs = await self.storage.query(Collections.ROLE_REQUESTS, filters, limit=1000)
        requests = [RoleRequest.model_validate(doc) for doc in docs]
        return sorted(requests, key=lambda r: r.requested_at)

    async def process_role_request(
        self,
        request_id: str,
        reviewer_id: str,
        decision: RoleRequestStatus | str,
        notes: str | None = None,
    ) -> RoleRequest:
        """
        Approve or reject a pending request. Approval assigns the role.

        Raises:
            RoleRequestError: unknown, non-pending or expired request, or a
                decision other than approved/rejected
        """
        try:
            decision = RoleRequestStatus(decision)
        except ValueError:
            raise RoleRequestError(f"Invalid decision: {decision}")
        if decision not in (RoleRequestStatus.APPROVED, RoleRequestStatus.REJECTED):
            raise RoleRequestError(f"Invalid decision: {decision.value}")

        request = await self.get_role_request(request_id)
        if request is None:
            raise RoleRequestError("Role request not found")
        if request.status != RoleRequestStatus.PENDING:
            raise RoleRequestError("Role request is not pending")

        if request.is_expired():
            await self.storage.update(
                Collections.ROLE_REQUESTS, request_id, {"status": RoleRequestStatus.EXPIRED.value}
            )
            raise RoleRequestError("Role request has expired")

        # Assign first: a failed assignment leaves the request pending
        if decision == RoleRequestStatus.APPROVED:
            await self.assign_role(
                request.user_id,
                request.requested_role,
                reviewer_id,
                RoleAssignmentMethod.SELF_REQUESTED,
                f"Role request approved: {request.reason}",
            )

        reviewed = request.model_copy(update={
            "status": decision,
            "reviewed_at": utc_now(),
            "reviewed_by": reviewer_id,
            "reviewer_notes": notes or "",
        })
        await self.storage.save(Collections.ROLE_REQUESTS, request_id, reviewed.model_dump(mode="json"))

        logger.info(f"Role request {request_id} {decision.value} by {reviewer_id}")
        return reviewed

    async def cleanup_expired_requests(self) -> int:
        """Mark pending requests past their expiry as expired. Returns the count."""
        try:
            now = utc_now()
            expired = [r for r in await self.list_pending_requests() if r.is_expired(now)]

            for request in expired:
                await self.storage.update(
                    Collections.ROLE_REQUESTS, request.id, {"status": RoleRequestStatus.EXPIRED.value}
                )

            if expired:
                logger.info(f"Expired {len(expired)} role requests")
            return len(expired)

        except Exception:
            logger.exception("Failed to clean up expired role requests")
            return 0

    # =========================================================================
    # Transitions
    # =========================================================================

    async def record_transition(
        self,
        user_id: str,
        from_role: Role | None,
        to_role: Role,
        transition_type: str,
        performed_by: str,
        reason: str | None = None,
    ) -> RoleTransition | None:
        """Append to the transition log. Failures are logged, never raised."""
        try:
            transition = RoleTransition(
                user_id=user_id,
                from_role=from_role,
                to_role=to_role,
                transition_type=transition_type,
                performed_by=performed_by,
                reason=reason or "",
            )
            await self.storage.save(
                Collections.ROLE_TRANSITIONS, transition.id, transition.model_dump(mode="json")
            )
            return transition

        except Exception as e:
            logger.error(f"Failed to record role transition for {user_id}: {e}")
            return None

    async def list_transitions(self, user_id: str) -> list[RoleTransition]:
        docs = await self.storage.query(Collections.ROLE_TRANSITIONS, {"user_id": user_id}, limit=1000)
        return sorted(
            (RoleTransition.model_validate(doc) for doc in docs),
            key=lambda t: t.performed_at,
        )

"""
Tests for permission sessions, identity events and the auth context.
"""

import pytest
from fastapi import HTTPException

from courier.auth.capabilities import Action, Permission, Role, Subject
from courier.auth.context import AuthContext, get_auth_context
from courier.auth.identity import Identity, StaticIdentityProvider
from courier.auth.session import PermissionSession
from courier.core.events import IDENTITY_CHANGED, IDENTITY_SIGNED_OUT
from courier.storage.base import Collections


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def identity(bus):
    return StaticIdentityProvider(bus)


@pytest.fixture
def redirects():
    return []


@pytest.fixture
async def session(identity, role_service, registry, bus, redirects):
    session = PermissionSession(identity, role_service, registry, bus, navigate=redirects.append)
    await session.start()
    yield session
    session.stop()


# =============================================================================
# Identity provider
# =============================================================================


class TestStaticIdentityProvider:
    async def test_sign_in_and_out_publish(self, identity, bus):
        await identity.sign_in(Identity(id="u1", email="u1@example.org"))
        assert identity.current_user().id == "u1"

        await identity.sign_out()
        assert identity.current_user() is None

        types = [e.event_type for e in bus.get_history()]
        assert types == [IDENTITY_CHANGED, IDENTITY_SIGNED_OUT]
        assert bus.get_history()[0].payload["email"] == "u1@example.org"


# =============================================================================
# Session lifecycle
# =============================================================================


class TestPermissionSession:
    async def test_not_ready_without_identity(self, session):
        assert not session.is_ready
        assert not session.can("read", "Content")
        assert session.check_permission("read", "Content").reason == "Permissions not ready"
        assert session.get_allowed_actions("Content") == []

    async def test_sign_in_builds_ability(self, session, identity):
        await identity.sign_in(Identity(id="u1"))

        assert session.is_ready
        assert session.user_id == "u1"
        assert session.role == Role.MEMBER
        assert session.can("read", "Settings", {"isPublic": True})
        assert not session.can("create", "Content")

    async def test_role_change_rebuilds(self, session, identity, role_service):
        await identity.sign_in(Identity(id="u1"))
        old_ability = session.context.ability

        await role_service.assign_role("u1", "contributor", "admin1")

        assert session.role == Role.CONTRIBUTOR
        assert session.context.ability is not old_ability
        assert session.context.ability.cache_size == 0
        assert session.can("create", "Content")

    async def test_other_users_role_change_is_ignored(self, session, identity, role_service):
        await identity.sign_in(Identity(id="u1"))
        ability = session.context.ability

        await role_service.assign_role("u2", "editor", "admin1")

        assert session.context.ability is ability

    async def test_same_pair_keeps_ability(self, session, identity):
        await identity.sign_in(Identity(id="u1"))
        ability = session.context.ability

        await identity.sign_in(Identity(id="u1"))

        assert session.context.ability is ability

    async def test_switching_users(self, session, identity, role_service):
        await role_service.set_user_profile("u2", role="editor")
        await identity.sign_in(Identity(id="u1"))
        await identity.sign_in(Identity(id="u2"))

        assert session.user_id == "u2"
        assert session.role == Role.EDITOR
        assert session.context.ability.user_id == "u2"

    async def test_sign_out_clears(self, session, identity):
        await identity.sign_in(Identity(id="u1"))
        await identity.sign_out()

        assert session.context is None
        assert not session.can("read", "Settings", {"isPublic": True})

    async def test_stale_until_rebuild(self, session, identity, role_service):
        await identity.sign_in(Identity(id="u1"))

        # A role written without a change event leaves the session stale
        await role_service.set_user_profile("u1", role="editor")
        assert session.role == Role.MEMBER
        assert not session.can("approve", "Content", {"status": "pending"})

        await session.rebuild()
        assert session.role == Role.EDITOR
        assert session.can("approve", "Content", {"status": "pending"})

    async def test_requires_permission(self, session, identity, redirects):
        assert not session.requires_permission("read", "Content", "/login")
        assert redirects == ["/login"]

        await identity.sign_in(Identity(id="u1"))
        assert session.requires_permission("read", "Content")
        assert not session.requires_permission("manage", "Print", "/dashboard")
        assert redirects == ["/login", "/dashboard"]

    async def test_delegated_api(self, session, identity, role_service):
        await role_service.set_user_profile("u1", role="editor")
        await identity.sign_in(Identity(id="u1"))

        assert session.has_role("contributor")
        assert not session.has_role("moderator")
        assert session.has_granular("newsletter:publish")
        assert session.has_any_permission([{"action": "manage", "subject": "Print"},
                                           {"action": "read", "subject": "Content"}])
        assert not session.has_all_permissions([{"action": "manage", "subject": "Print"},
                                                {"action": "read", "subject": "Content"}])
        assert Action.PUBLISH in session.get_allowed_actions("Newsletter")
        assert session.check_bulk_permissions([{"action": "read", "subject": "Content"}]).summary.allowed == 1

    async def test_stop_unsubscribes(self, session, identity):
        session.stop()
        await identity.sign_in(Identity(id="u1"))
        assert session.context is None


# =============================================================================
# AuthContext
# =============================================================================


class TestAuthContext:
    async def test_get_auth_context(self, role_service, registry):
        await role_service.set_user_profile("u1", role="editor")

        ctx = await get_auth_context("u1", role_service, registry, email="u1@example.org")

        assert ctx.role == Role.EDITOR
        assert ctx.user_email == "u1@example.org"
        assert Permission.NEWSLETTER_PUBLISH in ctx.permissions
        assert ctx.can("approve", "Content", {"status": "pending"})

    async def test_resolves_role_from_the_store(self, role_service, registry, storage):
        await role_service.get_user_role("u1")
        await storage.save(Collections.USER_PROFILES, "u1", {"id": "u1", "role": "moderator"})

        ctx = await get_auth_context("u1", role_service, registry)

        assert ctx.role == Role.MODERATOR

    async def test_no_user_is_anonymous(self, role_service, registry):
        ctx = await get_auth_context(None, role_service, registry)
        assert ctx.is_anonymous
        assert not ctx.can("read", "Settings", {"isPublic": True})
        assert ctx.check_permission("read", "Settings").reason == "Not authenticated"

    def test_require_raises_403(self):
        ctx = AuthContext.anonymous()
        with pytest.raises(HTTPException) as exc_info:
            ctx.require(Action.READ, Subject.CONTENT)
        assert exc_info.value.status_code == 403

    def test_system_context(self):
        ctx = AuthContext.system()
        assert ctx.is_system
        assert ctx.can("backup", "System")
        assert ctx.has_granular("system:audit")
        assert ctx.get_allowed_actions("Print") == list(Action)

    def test_invalid_granular_permission(self):
        assert not AuthContext.system().has_granular("root:everything")

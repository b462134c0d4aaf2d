"""
Tests for role configuration, the hierarchy comparator and the registry.
"""

import pytest

from courier.auth.capabilities import (
    Action,
    Permission,
    Role,
    RoleAssignmentMethod,
    describe_permission,
    implied_actions,
)
from courier.auth.registry import RoleRegistry
from courier.auth.roles import (
    DEFAULT_ROLE_CONFIGS,
    ROLE_ORDER,
    RoleConfigError,
    at_least,
    hierarchy_of,
    is_valid_role,
    validate_role_configs,
)
from courier.config_loader import RoleConfigLoader, load_role_configs
from courier.storage.base import Collections


# =============================================================================
# Hierarchy
# =============================================================================


class TestHierarchy:
    def test_ranks_follow_escalation_order(self):
        assert [hierarchy_of(r) for r in ROLE_ORDER] == [1, 2, 3, 4, 5, 6]
        assert ROLE_ORDER[0] == Role.MEMBER
        assert ROLE_ORDER[-1] == Role.ADMINISTRATOR

    def test_unknown_role_ranks_zero(self):
        assert hierarchy_of("superuser") == 0
        assert not is_valid_role("superuser")

    def test_at_least(self):
        assert at_least("editor", "contributor")
        assert at_least(Role.EDITOR, Role.EDITOR)
        assert not at_least("member", "moderator")

    def test_unknown_role_is_below_everything(self):
        assert not at_least("superuser", "member")
        assert at_least("member", "superuser")


class TestCapabilities:
    def test_implied_actions(self):
        assert Action.READ in implied_actions("publish")
        assert Action.APPROVE in implied_actions(Action.MODERATE)
        assert implied_actions("request") == []

    def test_describe_permission(self):
        assert describe_permission("read", "Print") == "View print jobs"
        assert describe_permission(Action.MANAGE, "all") == "Manage everything"


# =============================================================================
# RoleConfig
# =============================================================================


class TestRoleConfig:
    def test_defaults_are_valid(self):
        validate_role_configs(DEFAULT_ROLE_CONFIGS)

    def test_editor_permissions(self):
        editor = DEFAULT_ROLE_CONFIGS[Role.EDITOR]
        assert editor.has_permission("newsletter:publish")
        assert editor.has_permission(Permission.CONTENT_APPROVE)
        assert not editor.has_permission("print:manage")
        assert not editor.has_permission("not:a:permission")

    def test_administrator_has_everything_but_requests(self):
        admin = DEFAULT_ROLE_CONFIGS[Role.ADMINISTRATOR]
        assert admin.has_permission("system:backup")
        assert not admin.has_permission("user:role:request")

    def test_assignment_methods(self):
        assert DEFAULT_ROLE_CONFIGS[Role.CONTRIBUTOR].allows_method("self_requested")
        assert not DEFAULT_ROLE_CONFIGS[Role.MODERATOR].allows_method(
            RoleAssignmentMethod.SELF_REQUESTED
        )
        assert not DEFAULT_ROLE_CONFIGS[Role.MEMBER].allows_method("carrier_pigeon")

    def test_missing_role_rejected(self):
        configs = dict(DEFAULT_ROLE_CONFIGS)
        del configs[Role.EDITOR]
        with pytest.raises(RoleConfigError, match="editor"):
            validate_role_configs(configs)

    def test_wrong_rank_rejected(self):
        configs = dict(DEFAULT_ROLE_CONFIGS)
        configs[Role.EDITOR] = configs[Role.EDITOR].model_copy(update={"hierarchy": 2})
        with pytest.raises(RoleConfigError, match="rank"):
            validate_role_configs(configs)

    def test_mismatched_key_rejected(self):
        configs = dict(DEFAULT_ROLE_CONFIGS)
        configs[Role.EDITOR] = DEFAULT_ROLE_CONFIGS[Role.MODERATOR]
        with pytest.raises(RoleConfigError):
            validate_role_configs(configs)

    def test_document_is_sorted(self):
        doc = DEFAULT_ROLE_CONFIGS[Role.MEMBER].to_document()
        assert doc["role"] == "member"
        assert doc["permissions"] == sorted(doc["permissions"])
        assert doc["assignment_method"] == ["admin_assigned", "auto_domain"]


# =============================================================================
# RoleRegistry
# =============================================================================


class TestRoleRegistry:
    async def test_initialize_seeds_defaults(self, storage):
        registry = RoleRegistry(storage)
        await registry.initialize()

        assert registry.initialized
        docs = await storage.query(Collections.ROLE_CONFIGS)
        assert len(docs) == len(Role)

        config = await registry.get_role_config("editor")
        assert config == DEFAULT_ROLE_CONFIGS[Role.EDITOR]

    async def test_initialize_keeps_stored_configs(self, storage):
        custom = DEFAULT_ROLE_CONFIGS[Role.MEMBER].model_copy(update={"display_name": "Reader"})
        await storage.save(Collections.ROLE_CONFIGS, "member", custom.to_document())

        registry = RoleRegistry(storage)
        await registry.initialize()

        assert (await registry.get_role_config("member")).display_name == "Reader"

    async def test_overrides_win(self, storage):
        override = DEFAULT_ROLE_CONFIGS[Role.EDITOR].model_copy(update={"display_name": "Section Editor"})

        registry = RoleRegistry(storage)
        await registry.initialize({Role.EDITOR: override})

        assert registry.cached("editor").display_name == "Section Editor"
        stored = await storage.get(Collections.ROLE_CONFIGS, "editor")
        assert stored["display_name"] == "Section Editor"

    async def test_unknown_role_returns_none(self, registry):
        assert await registry.get_role_config("superuser") is None
        assert registry.cached("superuser") is None

    async def test_cache_miss_fetches_lazily(self, storage):
        await storage.save(
            Collections.ROLE_CONFIGS, "moderator", DEFAULT_ROLE_CONFIGS[Role.MODERATOR].to_document()
        )
        registry = RoleRegistry(storage)

        assert registry.cached("moderator") is None
        config = await registry.get_role_config("moderator")
        assert config.hierarchy == 5
        assert registry.cached("moderator") is config

    async def test_get_all_in_order(self, registry):
        configs = await registry.get_all_role_configs()
        assert list(configs) == ROLE_ORDER

    async def test_refresh_picks_up_store_changes(self, registry, storage):
        await storage.update(Collections.ROLE_CONFIGS, "contributor", {"description": "Writers"})
        assert registry.cached("contributor").description != "Writers"

        await registry.refresh()
        assert registry.cached("contributor").description == "Writers"

    async def test_refresh_rejects_invalid_store(self, registry, storage):
        await storage.update(Collections.ROLE_CONFIGS, "editor", {"hierarchy": 9})
        with pytest.raises(RoleConfigError):
            await registry.refresh()


# =============================================================================
# YAML overrides
# =============================================================================


class TestRoleConfigLoader:
    def test_load_yaml(self, tmp_path):
        path = tmp_path / "roles.yaml"
        path.write_text(
            "roles:\n"
            "  editor:\n"
            "    display_name: Section Editor\n"
            "    permissions: [content:read, newsletter:read]\n"
        )

        configs = load_role_configs(path)

        editor = configs[Role.EDITOR]
        assert editor.display_name == "Section Editor"
        assert editor.permissions == {Permission.CONTENT_READ, Permission.NEWSLETTER_READ}
        # Untouched fields come from the defaults
        assert editor.hierarchy == 4
        assert Role.MEMBER not in configs

    def test_no_path_means_no_overrides(self):
        assert load_role_configs("") == {}
        assert load_role_configs(None) == {}

    def test_unknown_role_rejected(self):
        with pytest.raises(RoleConfigError, match="superuser"):
            RoleConfigLoader().from_dict({"roles": {"superuser": {}}})

    def test_unknown_permission_rejected(self):
        with pytest.raises(RoleConfigError, match="editor"):
            RoleConfigLoader().from_dict({"roles": {"editor": {"permissions": ["fly:away"]}}})

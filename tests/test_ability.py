"""
Tests for ability compilation, evaluation and the permission cache.
"""

import itertools

import pytest

from courier.auth.ability import (
    CompiledAbility,
    compile_ability,
    fail_safe_ability,
    merge_abilities,
)
from courier.auth.capabilities import Action, Role, Subject
from courier.auth.context import AuthContext
from courier.auth.roles import ROLE_ORDER
from courier.auth.rules import ROLE_RULE_CHAINS, allow, deny


ALL_PAIRS = list(itertools.product(Action, Subject))


class Exploding:
    """A resource whose field access fails."""

    @property
    def id(self):
        raise RuntimeError("storage went away")


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def member():
    return compile_ability(Role.MEMBER, "u1")


@pytest.fixture
def contributor():
    return compile_ability(Role.CONTRIBUTOR, "u1")


@pytest.fixture
def editor():
    return compile_ability(Role.EDITOR, "u1")


@pytest.fixture
def moderator():
    return compile_ability(Role.MODERATOR, "mod1")


@pytest.fixture
def admin():
    return compile_ability(Role.ADMINISTRATOR, "admin1")


# =============================================================================
# Evaluation
# =============================================================================


class TestDenyByDefault:
    @pytest.mark.parametrize("role", list(Role))
    def test_no_allow_rule_means_denied(self, role):
        ability = compile_ability(role, "u1")
        for action, subject in ALL_PAIRS:
            if ability.can(action, subject):
                assert any(
                    not rule.inverted and rule.matches_action(action) and rule.matches_subject(subject)
                    for rule in ability.rules
                ), f"{role.value} may {action.value} {subject.value} without an allow rule"

    def test_member_cannot_touch_newsletters(self, member):
        result = member.check(Action.DELETE, Subject.NEWSLETTER)
        assert not result.allowed
        assert result.reason == "Insufficient permissions"

    def test_empty_ability_denies_everything(self):
        ability = CompiledAbility(role=None, user_id="u1", rules=[])
        assert not any(ability.can(a, s) for a, s in ALL_PAIRS)


class TestLastRuleWins:
    def test_deny_after_allow(self):
        ability = CompiledAbility(role=None, user_id="u1", rules=[
            allow(Action.UPDATE, Subject.CONTENT),
            deny(Action.UPDATE, Subject.CONTENT, {"status": {"$in": ["approved", "published"]}}),
        ])
        assert not ability.can("update", "Content", {"status": "approved"})
        assert ability.can("update", "Content", {"status": "draft"})

    def test_allow_after_deny(self):
        ability = CompiledAbility(role=None, user_id="u1", rules=[
            deny(Action.DELETE, Subject.USER),
            allow(Action.DELETE, Subject.USER),
        ])
        assert ability.can("delete", "User")

    def test_relevant_rule_is_the_last_match(self):
        locked = deny(Action.UPDATE, Subject.CONTENT, {"status": "published"}, reason="Locked")
        ability = CompiledAbility(role=None, user_id="u1", rules=[
            allow(Action.UPDATE, Subject.CONTENT),
            locked,
        ])
        assert ability.relevant_rule_for("update", "Content", {"status": "published"}) is locked

        result = ability.check("update", "Content", {"status": "published"})
        assert result.reason == "Locked"
        assert result.conditions == {"status": "published"}


class TestRoleAbilities:
    def test_administrator_universality(self, admin):
        for action, subject in ALL_PAIRS:
            assert admin.can(action, subject)
            assert admin.can(action, subject, {"id": "x1", "isPublished": True})

    def test_ownership_condition(self, contributor):
        assert contributor.can("update", "Content", {"authorId": "u1", "status": "draft"})
        assert not contributor.can("update", "Content", {"authorId": "u2", "status": "draft"})

    def test_locked_content_for_its_author(self, contributor):
        result = contributor.check("update", "Content", {"authorId": "u1", "status": "published"})
        assert not result.allowed
        assert result.reason == "Approved or published content is locked"

    def test_editor_scenario(self, editor):
        assert editor.can("approve", "Content", {"status": "pending"})
        assert not editor.can("delete", "Newsletter", {"isPublished": True})
        assert editor.can("read", "Settings")

    def test_member_field_restrictions(self, member):
        me = {"id": "u1"}
        assert member.can("update", "User", me)
        assert member.can("update", "User", me, "displayName")

        result = member.check("update", "User", me, "role")
        assert not result.allowed
        assert result.reason == "Members cannot change their own role or status"

        assert not member.can("update", "User", {"id": "u2"})

    def test_canva_gate(self, contributor):
        canva = compile_ability(Role.CANVA_CONTRIBUTOR, "u1")
        design = {"type": "canva", "createdBy": "u1"}

        assert not contributor.can("create", "Design", design)
        assert not contributor.can("export", "Design", design)
        assert canva.can("create", "Design", design)
        assert canva.can("export", "Design", design)
        assert not canva.can("export", "Design", {"createdBy": "u2"})

    def test_moderator_cannot_touch_administrators(self, moderator):
        assert moderator.can("update", "User", {"id": "u2", "role": "editor"}, "role")
        assert not moderator.can("update", "User", {"id": "a1", "role": "administrator"})
        assert not moderator.can("delete", "User", {"id": "u2"})
        assert moderator.can("assign", "Role", {"roleType": "editor"})
        assert not moderator.can("assign", "Role", {"roleType": "administrator"})

    def test_hierarchy_monotonicity(self):
        abilities = {role: compile_ability(role, "u1") for role in ROLE_ORDER}

        for lower, higher in itertools.combinations(ROLE_ORDER, 2):
            granted = [
                (action, subject)
                for rule in abilities[lower].rules
                if not rule.inverted and rule.conditions is None and rule.fields is None
                for action in rule.actions
                for subject in rule.subjects
            ]
            for action, subject in granted:
                assert abilities[higher].can(action, subject), (
                    f"{higher.value} lost {action.value} {subject.value} granted to {lower.value}"
                )


class TestEvaluationErrors:
    def test_unknown_action_denies(self, member):
        result = member.check("fly", "Content")
        assert not result.allowed
        assert result.reason == "Permission check failed"
        assert not member.can("read", "Spaceship")

    def test_exploding_resource_denies(self, admin):
        assert not admin.can("read", "Content", Exploding())

    def test_errors_are_not_cached(self, member):
        member.check("fly", "Content")
        member.check("read", "Content", Exploding())
        assert member.cache_size == 0


# =============================================================================
# Cache
# =============================================================================


class TestPermissionCache:
    def test_second_call_does_not_scan(self, editor):
        first = editor.can("approve", "Content", {"id": "c1", "status": "pending"})
        scans = editor.scan_count
        second = editor.can("approve", "Content", {"id": "c1", "status": "pending"})

        assert first == second
        assert editor.scan_count == scans == 1

    def test_type_level_queries_are_cached(self, member):
        member.can("read", "Content")
        member.can("read", "Content")
        assert member.scan_count == 1

    def test_keys_include_resource_and_field(self, member):
        member.can("update", "User", {"id": "u1"})
        member.can("update", "User", {"id": "u1"}, "role")
        member.can("update", "User", {"id": "u2"})
        assert member.scan_count == 3
        assert member.cache_size == 3

    def test_id_type_is_part_of_the_key(self):
        ability = CompiledAbility(Role.MEMBER, "u1", [allow("read", "Content", {"id": "1"})])

        assert ability.can("read", "Content", {"id": "1"})
        assert not ability.can("read", "Content", {"id": 1})
        assert ability.cache_size == 2

    def test_resources_without_id_bypass(self, contributor):
        draft = {"authorId": "u1", "status": "draft"}
        contributor.can("update", "Content", draft)
        contributor.can("update", "Content", draft)
        assert contributor.scan_count == 2
        assert contributor.cache_size == 0

    def test_clear_cache(self, member):
        member.can("read", "Content")
        member.clear_cache()
        member.can("read", "Content")
        assert member.scan_count == 2

    def test_disabled_cache(self):
        ability = compile_ability(Role.MEMBER, "u1", cache_enabled=False)
        ability.can("read", "Content")
        ability.can("read", "Content")
        assert ability.scan_count == 2


# =============================================================================
# Compilation
# =============================================================================


class TestCompilation:
    def test_unknown_role_compiles_member_rules(self):
        ability = compile_ability("superuser", "u1")
        assert ability.role == Role.MEMBER
        assert not ability.fail_safe
        assert ability.can("read", "Settings", {"isPublic": True})

    def test_broken_chain_yields_fail_safe(self):
        chains = dict(ROLE_RULE_CHAINS)
        chains[Role.EDITOR] = (
            lambda user_id: [allow("read", "Content", {"title": {"$regex": "^News"}})],
        )

        ability = compile_ability(Role.EDITOR, "u1", chains=chains)

        assert ability.fail_safe
        assert len(ability.rules) == 1
        assert ability.can("read", "Settings", {"isPublic": True})
        assert not ability.can("read", "Settings", {"isPublic": False})
        assert not ability.can("read", "Content")

    def test_fail_safe_ability(self):
        ability = fail_safe_ability("u1")
        assert ability.role is None
        assert ability.can(Action.READ, Subject.SETTINGS, {"isPublic": True})

    def test_extra_rules_come_last(self):
        ability = compile_ability(
            Role.ADMINISTRATOR, "admin1",
            extra_rules=[{"action": "delete", "subject": "Backup", "inverted": True}],
        )
        assert not ability.can("delete", "Backup")
        assert ability.can("create", "Backup")

    def test_to_list(self, member):
        rules = member.to_list()
        assert len(rules) == len(member.rules)
        assert rules[0]["subject"] == ["User"]

    def test_merge_keeps_only_allows(self, contributor, caplog):
        canva = compile_ability(Role.CANVA_CONTRIBUTOR, "u1")
        merged = merge_abilities([contributor, canva])

        assert not any(rule.inverted for rule in merged.rules)
        assert merged.can("export", "Design", {"createdBy": "u1"})
        assert "inverted" in caplog.text


# =============================================================================
# Bulk checks
# =============================================================================


class TestBulkChecks:
    def test_member_round_trip(self, member):
        ctx = AuthContext(user_id="u1", role=Role.MEMBER, ability=member)
        checks = [
            {"action": "read", "subject": "Content"},
            {"action": "delete", "subject": "User"},
        ]

        result = ctx.check_bulk_permissions(checks)

        assert result.summary.model_dump() == {"total": 2, "allowed": 1, "denied": 1}
        assert [c.allowed for c in result.checks] == [
            member.can("read", "Content"),
            member.can("delete", "User"),
        ]
        assert result.checks[1].action == "delete"

    def test_bad_entries_deny(self, member):
        ctx = AuthContext(user_id="u1", role=Role.MEMBER, ability=member)
        result = ctx.check_bulk_permissions([{"action": "fly", "subject": "Content"}])
        assert result.summary.denied == 1
        assert result.checks[0].reason == "Permission check failed"

    def test_malformed_entries_deny(self, member):
        ctx = AuthContext(user_id="u1", role=Role.MEMBER, ability=member)
        result = ctx.check_bulk_permissions([
            {"action": "read"},
            {"action": "read", "subject": "Content", "resource": "not-a-dict"},
            {"action": "read", "subject": "Content"},
        ])

        assert result.summary.model_dump() == {"total": 3, "allowed": 1, "denied": 2}
        assert [c.reason for c in result.checks[:2]] == ["Permission check failed"] * 2
        assert result.checks[0].action == "read"
        assert result.checks[0].subject == ""

    def test_malformed_entries_in_any_and_all(self, member):
        ctx = AuthContext(user_id="u1", role=Role.MEMBER, ability=member)
        bad = {"action": "read", "subject": "Content", "resource": "not-a-dict"}
        good = {"action": "read", "subject": "Content"}

        assert not ctx.has_any_permission([bad])
        assert ctx.has_any_permission([bad, good])
        assert not ctx.has_all_permissions([good, bad])

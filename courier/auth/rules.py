"""
Authorization rules and the per-role rule blocks.

A rule is one allow/deny statement over actions x subjects, optionally
narrowed by conditions on the resource and by a field list. Rule order is
significant: when several rules match a query, the one defined last wins.

Each role contributes a block of rules. A role's compiled rule list is the
concatenation of the blocks in ROLE_RULE_CHAINS, lowest tier first, so that
a role's own restrictions come after the broader grants they narrow.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable

from courier.auth.capabilities import Action, Role, Subject
from courier.auth.conditions import And, compile_conditions
from courier.auth.roles import parse_role

logger = logging.getLogger(__name__)


# =============================================================================
# Rule
# =============================================================================


@dataclass(frozen=True)
class Rule:
    """One authorization statement."""

    actions: frozenset[Action]
    subjects: frozenset[Subject]
    conditions: Mapping[str, Any] | None = None
    fields: frozenset[str] | None = None
    inverted: bool = False
    reason: str | None = None
    predicate: And | None = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        predicate = compile_conditions(self.conditions) if self.conditions else None
        object.__setattr__(self, "predicate", predicate)

    def matches_action(self, action: Action) -> bool:
        return action in self.actions or Action.MANAGE in self.actions

    def matches_subject(self, subject: Subject) -> bool:
        return subject in self.subjects or Subject.ALL in self.subjects

    def matches_field(self, field_name: str | None) -> bool:
        if self.fields is None:
            return True
        if field_name is None:
            # Field-scoped denies only apply when a field is asked about
            return not self.inverted
        return field_name in self.fields

    def matches_conditions(self, resource: Any = None) -> bool:
        if self.predicate is None:
            return True
        if resource is None:
            # Type-level query: a conditioned allow means "for some
            # instances"; a conditioned deny cannot be decided
            return not self.inverted
        return self.predicate.matches(resource)

    def matches(
        self,
        action: Action,
        subject: Subject,
        resource: Any = None,
        field_name: str | None = None,
    ) -> bool:
        return (
            self.matches_action(action)
            and self.matches_subject(subject)
            and self.matches_field(field_name)
            and self.matches_conditions(resource)
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "action": sorted(a.value for a in self.actions),
            "subject": sorted(s.value for s in self.subjects),
            "conditions": dict(self.conditions) if self.conditions else None,
            "fields": sorted(self.fields) if self.fields is not None else None,
            "inverted": self.inverted,
            "reason": self.reason,
        }


def _as_set(values: Any, enum: type[Enum]) -> frozenset:
    if isinstance(values, (str, Enum)):
        values = [values]
    return frozenset(enum(v) for v in values)


def allow(
    actions: Action | str | Iterable[Action | str],
    subjects: Subject | str | Iterable[Subject | str],
    conditions: Mapping[str, Any] | None = None,
    fields: Iterable[str] | None = None,
    reason: str | None = None,
) -> Rule:
    """Build an allow rule."""
    return Rule(
        actions=_as_set(actions, Action),
        subjects=_as_set(subjects, Subject),
        conditions=conditions,
        fields=frozenset(fields) if fields is not None else None,
        reason=reason,
    )


def deny(
    actions: Action | str | Iterable[Action | str],
    subjects: Subject | str | Iterable[Subject | str],
    conditions: Mapping[str, Any] | None = None,
    fields: Iterable[str] | None = None,
    reason: str | None = None,
) -> Rule:
    """Build an explicit deny rule."""
    return Rule(
        actions=_as_set(actions, Action),
        subjects=_as_set(subjects, Subject),
        conditions=conditions,
        fields=frozenset(fields) if fields is not None else None,
        inverted=True,
        reason=reason,
    )


def rule_from_dict(data: Mapping[str, Any]) -> Rule:
    """
    Build a rule from its serialized form.

    Accepts {"action", "subject", "conditions"?, "fields"?, "inverted"?, "reason"?}
    where action and subject are a string or a list of strings.
    """
    build = deny if data.get("inverted") else allow
    return build(
        data["action"],
        data["subject"],
        conditions=data.get("conditions"),
        fields=data.get("fields"),
        reason=data.get("reason"),
    )


def validate_rule(data: Mapping[str, Any]) -> bool:
    """Check a serialized rule without raising."""
    try:
        if not data.get("action") or not data.get("subject"):
            return False
        rule_from_dict(data)
        return True
    except Exception as e:
        logger.debug(f"Invalid rule {dict(data)!r}: {e}")
        return False


# =============================================================================
# Rule Blocks
# =============================================================================


A = Action
S = Subject

RuleBlock = Callable[[str], list[Rule]]

_LOCKED_CONTENT = {"status": {"$in": ["approved", "published"]}}
_EDITABLE_CONTENT = ["draft", "rejected"]


def member_rules(user_id: str) -> list[Rule]:
    """Base tier: own account, personal settings and themes, public content."""
    return [
        # Account and profile
        allow(A.READ, S.USER, {"id": user_id}),
        allow(A.UPDATE, S.USER, {"id": user_id},
              ["email", "displayName", "preferences", "notifications"]),
        deny(A.UPDATE, S.USER, {"id": user_id}, ["role", "permissions", "isActive"],
             reason="Members cannot change their own role or status"),

        # Personal settings and themes
        allow(A.READ, S.SETTINGS, {"isPublic": True}),
        allow(A.UPDATE, S.SETTINGS, {"createdBy": user_id}),
        allow(A.CREATE, S.SETTINGS, {"createdBy": user_id}),

        allow(A.READ, S.THEME, {"isPublic": True}),
        allow(A.CREATE, S.THEME, {"createdBy": user_id}),
        allow(A.UPDATE, S.THEME, {"createdBy": user_id}),
        allow(A.DELETE, S.THEME, {"createdBy": user_id}),

        # Public content
        allow(A.READ, S.CONTENT, {"status": "published"}),
        allow(A.READ, S.NEWSLETTER, {"isPublished": True}),

        # Role requests
        allow(A.REQUEST, S.ROLE, {"userId": user_id}),
        allow(A.READ, S.ROLE, {"userId": user_id}),
    ]


def contributor_rules(user_id: str) -> list[Rule]:
    """Own content, non-Canva designs and media."""
    return [
        allow(A.CREATE, S.CONTENT),
        allow(A.READ, S.CONTENT, {"authorId": user_id}),
        allow(A.UPDATE, S.CONTENT,
              {"authorId": user_id, "status": {"$in": _EDITABLE_CONTENT}}),
        allow(A.DELETE, S.CONTENT,
              {"authorId": user_id, "status": {"$in": _EDITABLE_CONTENT}}),

        deny(A.UPDATE, S.CONTENT, _LOCKED_CONTENT,
             reason="Approved or published content is locked"),
        deny(A.DELETE, S.CONTENT, _LOCKED_CONTENT,
             reason="Approved or published content is locked"),

        allow(A.CREATE, S.DESIGN, {"type": {"$in": ["template", "custom"]}}),
        allow(A.READ, S.DESIGN, {"createdBy": user_id}),
        allow(A.UPDATE, S.DESIGN, {"createdBy": user_id}),
        allow(A.DELETE, S.DESIGN, {"createdBy": user_id}),

        deny(A.CREATE, S.DESIGN, {"type": "canva"},
             reason="Canva designs require the Canva contributor role"),
        deny(A.EXPORT, S.DESIGN, reason="Design export requires the Canva contributor role"),

        allow(A.CREATE, S.MEDIA),
        allow(A.READ, S.MEDIA, {"createdBy": user_id}),
        allow(A.UPDATE, S.MEDIA, {"createdBy": user_id}),
        allow(A.DELETE, S.MEDIA, {"createdBy": user_id}),
    ]


def canva_contributor_rules(user_id: str) -> list[Rule]:
    """Canva designs, design export and templates."""
    return [
        allow(A.CREATE, S.DESIGN, {"type": "canva"}),
        allow(A.EXPORT, S.DESIGN, {"createdBy": user_id}),
        allow(A.READ, S.TEMPLATE, {"isPublic": True}),
        allow(A.CREATE, S.TEMPLATE, {"createdBy": user_id}),
        allow(A.UPDATE, S.TEMPLATE, {"createdBy": user_id}),

        allow(A.IMPORT, S.MEDIA),
    ]


def editor_rules(user_id: str) -> list[Rule]:
    """All content, newsletters, taxonomy and templates."""
    return [
        allow(A.READ, S.CONTENT),
        allow(A.UPDATE, S.CONTENT, {"status": {"$in": ["pending", "approved"]}}),
        allow(A.APPROVE, S.CONTENT, {"status": "pending"}),
        allow(A.REJECT, S.CONTENT, {"status": "pending"}),
        allow(A.PUBLISH, S.CONTENT, {"status": "approved"}),

        allow([A.CREATE, A.READ, A.UPDATE, A.PUBLISH], S.NEWSLETTER),
        deny(A.DELETE, S.NEWSLETTER, {"isPublished": True},
             reason="Published newsletters can only be deleted by an administrator"),

        allow([A.CREATE, A.READ, A.UPDATE, A.DELETE], [S.CATEGORY, S.TAG]),

        allow(A.MANAGE, S.TEMPLATE),

        allow(A.READ, S.ANALYTICS, {"type": "content"}),
    ]


def moderator_rules(user_id: str) -> list[Rule]:
    """User and role management, moderation, audit and print workflow."""
    return [
        allow(A.READ, S.USER),
        allow(A.UPDATE, S.USER, fields=["isActive", "role"]),
        deny(A.UPDATE, S.USER, {"role": {"$eq": "administrator"}},
             reason="Administrators can only be modified by administrators"),
        deny(A.DELETE, S.USER, reason="Only administrators can delete users"),

        allow(A.READ, S.ROLE),
        allow(A.ASSIGN, S.ROLE,
              {"roleType": {"$in": ["member", "contributor", "canva_contributor", "editor"]}}),
        deny(A.ASSIGN, S.ROLE, {"roleType": {"$in": ["moderator", "administrator"]}},
             reason="Moderator and administrator roles are assigned by administrators"),

        allow(A.MODERATE, S.CONTENT),
        allow(A.DELETE, S.CONTENT),

        allow(A.READ, S.AUDIT),
        allow(A.READ, S.ANALYTICS, {"type": {"$in": ["content", "user"]}}),

        allow(A.READ, S.PRINT),
        allow(A.MANAGE, S.PRINT),
    ]


def administrator_rules(user_id: str) -> list[Rule]:
    """Full access. Nothing is appended after this block."""
    return [
        allow(A.MANAGE, S.ALL),
        allow(A.DELETE, S.USER),
        allow(A.ASSIGN, S.ROLE),
        allow([A.CONFIGURE, A.BACKUP, A.AUDIT], S.SYSTEM),
    ]


ROLE_RULE_CHAINS: dict[Role, tuple[RuleBlock, ...]] = {
    Role.MEMBER: (member_rules,),
    Role.CONTRIBUTOR: (member_rules, contributor_rules),
    Role.CANVA_CONTRIBUTOR: (member_rules, contributor_rules, canva_contributor_rules),
    Role.EDITOR: (
        member_rules, contributor_rules, canva_contributor_rules, editor_rules,
    ),
    Role.MODERATOR: (
        member_rules, contributor_rules, canva_contributor_rules, editor_rules,
        moderator_rules,
    ),
    # Superset by definition, not by accumulation
    Role.ADMINISTRATOR: (administrator_rules,),
}


def build_rules(
    role: Role | str,
    user_id: str,
    chains: Mapping[Role, tuple[RuleBlock, ...]] | None = None,
) -> list[Rule]:
    """
    Concatenate the rule blocks chained for a role.

    Unknown roles get the member chain.
    """
    chains = ROLE_RULE_CHAINS if chains is None else chains

    parsed = parse_role(role)
    if parsed is None or parsed not in chains:
        logger.warning(f"Unknown role {role!r} for user {user_id}, defaulting to member rules")
        parsed = Role.MEMBER

    rules: list[Rule] = []
    for block in chains[parsed]:
        rules.extend(block(user_id))
    return rules


# =============================================================================
# Field Restrictions
# =============================================================================


# Editable fields per role and subject, for building forms
FIELD_RESTRICTIONS: dict[Role, dict[Subject, list[str]]] = {
    Role.MEMBER: {
        S.USER: ["email", "displayName", "preferences", "notifications"],
        S.SETTINGS: ["theme", "language", "notifications"],
        S.THEME: ["name", "config", "isPublic"],
    },
    Role.CONTRIBUTOR: {
        S.CONTENT: ["title", "content", "type", "tags"],
        S.DESIGN: ["name", "config", "isPublic"],
        S.MEDIA: ["title", "description", "tags"],
    },
    Role.EDITOR: {
        S.CONTENT: ["title", "content", "type", "tags", "status", "featured"],
        S.NEWSLETTER: ["title", "description", "tags", "featured", "isPublished"],
        S.CATEGORY: ["name", "description", "color", "icon"],
    },
    Role.MODERATOR: {
        S.USER: ["isActive", "role"],
        S.ROLE: ["roleType", "expiresAt"],
    },
    Role.ADMINISTRATOR: {},
}


def editable_fields(role: Role | str, subject: Subject | str) -> list[str] | None:
    """
    Fields a role may edit on a subject.

    None means unrestricted (administrators, or no entry for the subject).
    """
    parsed = parse_role(role)
    if parsed is None:
        return []
    return FIELD_RESTRICTIONS.get(parsed, {}).get(Subject(subject))

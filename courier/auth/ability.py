"""
Compiled abilities - the evaluator and its result cache.

A CompiledAbility is the ordered rule list for one (role, user) pair. It is
only valid for that pair: ownership conditions carry the literal user id,
so a new ability must be compiled whenever either changes.

Evaluation scans the rules from last to first; the first hit (i.e. the last
matching rule in definition order) decides. No hit means deny.

Nothing in here raises across `can`, `cannot` or `check`: every failure is
logged and turned into a deny.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict

from courier.auth.capabilities import Action, Role, Subject
from courier.auth.conditions import field_value
from courier.auth.roles import parse_role
from courier.auth.rules import Rule, RuleBlock, allow, build_rules, rule_from_dict
from courier.integrations.sentry import capture_exception

logger = logging.getLogger(__name__)


class PermissionCheckResult(BaseModel):
    """Outcome of one check, with the deciding rule's scope."""

    model_config = ConfigDict(frozen=True)

    allowed: bool
    reason: str | None = None
    conditions: dict[str, Any] | None = None
    fields: list[str] | None = None


_NO_MATCH = PermissionCheckResult(allowed=False, reason="Insufficient permissions")
_CHECK_FAILED = PermissionCheckResult(allowed=False, reason="Permission check failed")


def _result_for(rule: Rule | None) -> PermissionCheckResult:
    if rule is None:
        return _NO_MATCH
    return PermissionCheckResult(
        allowed=not rule.inverted,
        reason=(rule.reason or "Explicitly denied") if rule.inverted else None,
        conditions=dict(rule.conditions) if rule.conditions else None,
        fields=sorted(rule.fields) if rule.fields is not None else None,
    )


class CompiledAbility:
    """
    Ordered rules for one (role, user) pair plus a memo of check results.

    The memo is keyed by action, subject and resource id. It is never
    invalidated piecemeal: a role or identity change means a new ability.
    """

    def __init__(
        self,
        role: Role | None,
        user_id: str,
        rules: Iterable[Rule],
        cache_enabled: bool = True,
        fail_safe: bool = False,
    ):
        self.role = role
        self.user_id = user_id
        self.rules: tuple[Rule, ...] = tuple(rules)
        self.cache_enabled = cache_enabled
        self.fail_safe = fail_safe
        self._cache: dict[str, PermissionCheckResult] = {}
        # Number of rule scans performed; cache hits do not scan
        self.scan_count = 0

    def __repr__(self) -> str:
        role = self.role.value if self.role else None
        return f"CompiledAbility(role={role!r}, user_id={self.user_id!r}, rules={len(self.rules)})"

    # =========================================================================
    # Evaluation
    # =========================================================================

    def relevant_rule_for(
        self,
        action: Action | str,
        subject: Subject | str,
        resource: Any = None,
        field: str | None = None,
    ) -> Rule | None:
        """Return the rule that decides this query, or None."""
        action = Action(action)
        subject = Subject(subject)
        self.scan_count += 1

        for rule in reversed(self.rules):
            if rule.matches(action, subject, resource, field):
                return rule
        return None

    def check(
        self,
        action: Action | str,
        subject: Subject | str,
        resource: Any = None,
        field: str | None = None,
    ) -> PermissionCheckResult:
        """Detailed check. Never raises."""
        try:
            action = Action(action)
            subject = Subject(subject)

            key = self._cache_key(action, subject, resource, field)
            if key is not None and key in self._cache:
                return self._cache[key]

            result = _result_for(self.relevant_rule_for(action, subject, resource, field))

            if key is not None:
                self._cache[key] = result
            return result

        except Exception as e:
            logger.error(
                f"Error checking {action!r} on {subject!r} for user {self.user_id}: {e}"
            )
            capture_exception(e, action=str(action), subject=str(subject), user_id=self.user_id)
            return _CHECK_FAILED

    def can(
        self,
        action: Action | str,
        subject: Subject | str,
        resource: Any = None,
        field: str | None = None,
    ) -> bool:
        return self.check(action, subject, resource, field).allowed

    def cannot(
        self,
        action: Action | str,
        subject: Subject | str,
        resource: Any = None,
        field: str | None = None,
    ) -> bool:
        return not self.can(action, subject, resource, field)

    # =========================================================================
    # Cache
    # =========================================================================

    def _cache_key(
        self,
        action: Action,
        subject: Subject,
        resource: Any,
        field: str | None,
    ) -> str | None:
        if not self.cache_enabled:
            return None

        if resource is None:
            resource_key = "no-resource"
        else:
            resource_id = field_value(resource, "id")
            if not isinstance(resource_id, (str, int)):
                # Anonymous resources cannot be told apart, so skip the memo
                return None
            # 1 and "1" can match different rules
            resource_key = f"{type(resource_id).__name__}:{resource_id}"

        key = f"{action.value}:{subject.value}:{resource_key}"
        return f"{key}:{field}" if field else key

    @property
    def cache_size(self) -> int:
        return len(self._cache)

    def clear_cache(self) -> None:
        self._cache.clear()
        logger.debug(f"Permission cache cleared for user {self.user_id}")

    # =========================================================================
    # Serialization
    # =========================================================================

    def to_list(self) -> list[dict[str, Any]]:
        """Rules in definition order, for shipping to a client."""
        return [rule.to_dict() for rule in self.rules]


# =============================================================================
# Compilation
# =============================================================================


def fail_safe_ability(user_id: str, cache_enabled: bool = True) -> CompiledAbility:
    """Minimal ability: public settings are readable, nothing else."""
    return CompiledAbility(
        role=None,
        user_id=user_id,
        rules=[allow(Action.READ, Subject.SETTINGS, {"isPublic": True})],
        cache_enabled=cache_enabled,
        fail_safe=True,
    )


def compile_ability(
    role: Role | str,
    user_id: str,
    chains: Mapping[Role, tuple[RuleBlock, ...]] | None = None,
    extra_rules: Iterable[Rule | Mapping[str, Any]] | None = None,
    cache_enabled: bool = True,
) -> CompiledAbility:
    """
    Compile the ability for a role and acting user.

    Args:
        role: The user's role; unknown roles compile to member rules
        user_id: Acting user id, substituted into ownership conditions
        chains: Rule block chains per role (defaults to ROLE_RULE_CHAINS)
        extra_rules: Rules appended after the role's blocks
        cache_enabled: Whether the ability memoizes check results

    Returns:
        The compiled ability, or the fail-safe ability if compilation failed
    """
    try:
        rules = build_rules(role, user_id, chains)
        for extra in extra_rules or []:
            rules.append(rule_from_dict(extra) if isinstance(extra, Mapping) else extra)

        ability = CompiledAbility(
            role=parse_role(role) or Role.MEMBER,
            user_id=user_id,
            rules=rules,
            cache_enabled=cache_enabled,
        )
        logger.debug(f"Created ability for role {role!r}, user {user_id}: {len(rules)} rules")
        return ability

    except Exception as e:
        logger.error(f"Failed to create ability for role {role!r}, user {user_id}: {e}")
        capture_exception(e, role=str(role), user_id=user_id)
        return fail_safe_ability(user_id, cache_enabled=cache_enabled)


def merge_abilities(abilities: Iterable[CompiledAbility]) -> CompiledAbility:
    """
    Union the allow rules of several abilities.

    Deny rules cannot be merged meaningfully across abilities and are
    dropped with a warning.
    """
    abilities = list(abilities)
    merged: list[Rule] = []

    for ability in abilities:
        for rule in ability.rules:
            if rule.inverted:
                logger.warning(f"Skipping inverted rule in ability merge: {rule.to_dict()}")
                continue
            merged.append(rule)

    user_id = abilities[0].user_id if abilities else ""
    return CompiledAbility(role=None, user_id=user_id, rules=merged)

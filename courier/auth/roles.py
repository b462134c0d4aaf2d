"""
Role configuration and the role hierarchy.

Each role has exactly one RoleConfig: its rank, its granular permission
list and the metadata the dashboard and role-request flows need.

    MEMBER < CONTRIBUTOR < CANVA_CONTRIBUTOR < EDITOR < MODERATOR < ADMINISTRATOR

The hierarchy comparator here is intentionally independent of the rule
engine in ability.py: route gating by rank and fine-grained ability checks
can disagree.
"""

from __future__ import annotations

from collections.abc import Mapping

from pydantic import BaseModel, ConfigDict

from courier.auth.capabilities import Permission, Role, RoleAssignmentMethod


class RoleConfigError(Exception):
    """Raised when the role configuration table violates its invariants."""
    pass


class RoleConfig(BaseModel):
    """Per-role configuration record. Read-only once loaded."""

    model_config = ConfigDict(frozen=True)

    role: Role
    permissions: frozenset[Permission] = frozenset()
    hierarchy: int
    display_name: str
    description: str = ""
    color: str = ""
    icon: str = ""
    dashboard_route: str
    assignment_method: frozenset[RoleAssignmentMethod] = frozenset()
    required_approval: bool = False
    auto_expires_after: int | None = None  # days

    def has_permission(self, permission: Permission | str) -> bool:
        try:
            return Permission(permission) in self.permissions
        except ValueError:
            return False

    def allows_method(self, method: RoleAssignmentMethod | str) -> bool:
        try:
            return RoleAssignmentMethod(method) in self.assignment_method
        except ValueError:
            return False

    def to_document(self) -> dict:
        """Serialize for the document store."""
        data = self.model_dump(mode="json")
        data["permissions"] = sorted(data["permissions"])
        data["assignment_method"] = sorted(data["assignment_method"])
        return data


# =============================================================================
# Hierarchy
# =============================================================================


ROLE_HIERARCHY: dict[Role, int] = {
    Role.MEMBER: 1,
    Role.CONTRIBUTOR: 2,
    Role.CANVA_CONTRIBUTOR: 3,
    Role.EDITOR: 4,
    Role.MODERATOR: 5,
    Role.ADMINISTRATOR: 6,
}

# Escalation order, lowest first
ROLE_ORDER: list[Role] = sorted(ROLE_HIERARCHY, key=ROLE_HIERARCHY.__getitem__)


def parse_role(role: Role | str | None) -> Role | None:
    """Coerce a role identifier, returning None if it is not recognised."""
    if role is None:
        return None
    try:
        return Role(role)
    except ValueError:
        return None


def is_valid_role(role: str) -> bool:
    return parse_role(role) is not None


def hierarchy_of(role: Role | str) -> int:
    """Numeric rank of a role. Unknown roles rank 0."""
    parsed = parse_role(role)
    return ROLE_HIERARCHY[parsed] if parsed else 0


def at_least(role_a: Role | str, role_b: Role | str) -> bool:
    """True if role A ranks at or above role B."""
    return hierarchy_of(role_a) >= hierarchy_of(role_b)


# =============================================================================
# Defaults
# =============================================================================


_ADMIN_ONLY = frozenset({RoleAssignmentMethod.ADMIN_ASSIGNED})
_SELF_SERVICE = frozenset({
    RoleAssignmentMethod.ADMIN_ASSIGNED,
    RoleAssignmentMethod.SELF_REQUESTED,
})

_P = Permission

DEFAULT_ROLE_CONFIGS: dict[Role, RoleConfig] = {
    Role.MEMBER: RoleConfig(
        role=Role.MEMBER,
        permissions=frozenset({
            _P.CONTENT_READ, _P.NEWSLETTER_READ, _P.THEME_READ, _P.THEME_UPDATE,
        }),
        hierarchy=1,
        display_name="Member",
        description="Authenticated community member with basic access",
        color="blue-6",
        icon="account",
        dashboard_route="/dashboard/member",
        assignment_method=frozenset({
            RoleAssignmentMethod.ADMIN_ASSIGNED,
            RoleAssignmentMethod.AUTO_DOMAIN,
        }),
        required_approval=False,
    ),
    Role.CONTRIBUTOR: RoleConfig(
        role=Role.CONTRIBUTOR,
        permissions=frozenset({
            _P.CONTENT_READ, _P.CONTENT_CREATE, _P.CONTENT_UPDATE,
            _P.NEWSLETTER_READ, _P.DESIGN_CREATE,
            _P.THEME_READ, _P.THEME_UPDATE,
        }),
        hierarchy=2,
        display_name="Contributor",
        description="Create and manage content submissions",
        color="green-6",
        icon="edit",
        dashboard_route="/dashboard/contributor",
        assignment_method=_SELF_SERVICE,
        required_approval=True,
    ),
    Role.CANVA_CONTRIBUTOR: RoleConfig(
        role=Role.CANVA_CONTRIBUTOR,
        permissions=frozenset({
            _P.CONTENT_READ, _P.CONTENT_CREATE, _P.CONTENT_UPDATE,
            _P.NEWSLETTER_READ, _P.DESIGN_CREATE, _P.DESIGN_CANVA, _P.DESIGN_EXPORT,
            _P.THEME_READ, _P.THEME_UPDATE,
        }),
        hierarchy=3,
        display_name="Canva Contributor",
        description="Design creation with Canva integration access",
        color="purple-6",
        icon="palette",
        dashboard_route="/dashboard/canva-contributor",
        assignment_method=_SELF_SERVICE,
        required_approval=True,
    ),
    Role.EDITOR: RoleConfig(
        role=Role.EDITOR,
        permissions=frozenset({
            _P.CONTENT_READ, _P.CONTENT_CREATE, _P.CONTENT_UPDATE, _P.CONTENT_APPROVE,
            _P.NEWSLETTER_READ, _P.NEWSLETTER_CREATE, _P.NEWSLETTER_UPDATE,
            _P.NEWSLETTER_PUBLISH,
            _P.DESIGN_CREATE, _P.DESIGN_TEMPLATE,
            _P.USER_READ, _P.THEME_READ, _P.THEME_UPDATE,
        }),
        hierarchy=4,
        display_name="Editor",
        description="Manage newsletter content and approve submissions",
        color="orange-6",
        icon="edit_note",
        dashboard_route="/dashboard/editor",
        assignment_method=_SELF_SERVICE,
        required_approval=True,
    ),
    Role.MODERATOR: RoleConfig(
        role=Role.MODERATOR,
        permissions=frozenset({
            _P.CONTENT_READ, _P.CONTENT_CREATE, _P.CONTENT_UPDATE, _P.CONTENT_APPROVE,
            _P.CONTENT_PUBLISH,
            _P.NEWSLETTER_READ, _P.NEWSLETTER_CREATE, _P.NEWSLETTER_UPDATE,
            _P.USER_READ, _P.USER_UPDATE, _P.USER_ROLE_ASSIGN,
            _P.DESIGN_CREATE, _P.DESIGN_TEMPLATE,
            _P.PRINT_READ, _P.PRINT_CLAIM, _P.PRINT_MANAGE,
            _P.THEME_READ, _P.THEME_UPDATE,
        }),
        hierarchy=5,
        display_name="Moderator",
        description="Approve content submissions and manage user roles",
        color="red-6",
        icon="gavel",
        dashboard_route="/dashboard/moderator",
        assignment_method=_ADMIN_ONLY,
        required_approval=True,
    ),
    Role.ADMINISTRATOR: RoleConfig(
        role=Role.ADMINISTRATOR,
        # Everything except the self-service request permission
        permissions=frozenset(p for p in Permission if p is not _P.USER_ROLE_REQUEST),
        hierarchy=6,
        display_name="Administrator",
        description="Full system access and configuration",
        color="indigo-6",
        icon="admin_panel_settings",
        dashboard_route="/dashboard/administrator",
        assignment_method=_ADMIN_ONLY,
        required_approval=True,
    ),
}


def validate_role_configs(configs: Mapping[Role, RoleConfig]) -> None:
    """
    Check the role table invariants.

    - every role has exactly one config, keyed by its own role
    - ranks match the fixed hierarchy and are strictly increasing
    """
    missing = [r.value for r in ROLE_ORDER if r not in configs]
    if missing:
        raise RoleConfigError(f"Missing role configuration for: {missing}")

    for role, config in configs.items():
        if config.role != role:
            raise RoleConfigError(
                f"Config keyed as '{role.value}' describes role '{config.role.value}'"
            )
        if config.hierarchy != ROLE_HIERARCHY[role]:
            raise RoleConfigError(
                f"Role '{role.value}' has rank {config.hierarchy}, "
                f"expected {ROLE_HIERARCHY[role]}"
            )

    ranks = [configs[r].hierarchy for r in ROLE_ORDER]
    if any(lower >= higher for lower, higher in zip(ranks, ranks[1:])):
        raise RoleConfigError(f"Role ranks are not strictly increasing: {ranks}")

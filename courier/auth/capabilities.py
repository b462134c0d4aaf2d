"""
Actions, subjects, roles and granular permissions.

This defines WHAT users can do, not HOW we check it.
Rule-based checks live in ability.py, flat permission lookups in resolver.py.
"""

from enum import Enum


class Action(str, Enum):
    """Verbs a user can attempt against a subject."""

    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"
    MANAGE = "manage"        # Wildcard: matches every action
    PUBLISH = "publish"
    APPROVE = "approve"
    REJECT = "reject"
    ASSIGN = "assign"
    REQUEST = "request"
    EXPORT = "export"
    IMPORT = "import"
    BACKUP = "backup"
    AUDIT = "audit"
    CONFIGURE = "configure"
    MODERATE = "moderate"
    CLAIM = "claim"


class Subject(str, Enum):
    """Resource types that actions are performed on."""

    CONTENT = "Content"
    NEWSLETTER = "Newsletter"
    USER = "User"
    ROLE = "Role"
    DESIGN = "Design"
    TEMPLATE = "Template"
    THEME = "Theme"
    SYSTEM = "System"
    ANALYTICS = "Analytics"
    PRINT = "Print"
    COMMENT = "Comment"
    CATEGORY = "Category"
    TAG = "Tag"
    MEDIA = "Media"
    FILE = "File"
    SETTINGS = "Settings"
    AUDIT = "Audit"
    BACKUP = "Backup"
    DASHBOARD = "Dashboard"
    REPORT = "Report"
    ALL = "all"              # Wildcard: matches every subject


class Role(str, Enum):
    """Platform roles, in escalation order."""

    MEMBER = "member"                        # Account settings, personal themes
    CONTRIBUTOR = "contributor"              # Content and design creation, no Canva
    CANVA_CONTRIBUTOR = "canva_contributor"  # Contributor plus Canva integration
    EDITOR = "editor"                        # Newsletter content management
    MODERATOR = "moderator"                  # Approvals, role management
    ADMINISTRATOR = "administrator"          # Full system access


class Permission(str, Enum):
    """
    Granular `domain:verb` permissions.

    Orthogonal to the rule engine: each role config carries a flat list of
    these and checks are plain membership.
    """

    # Content
    CONTENT_READ = "content:read"
    CONTENT_CREATE = "content:create"
    CONTENT_UPDATE = "content:update"
    CONTENT_DELETE = "content:delete"
    CONTENT_APPROVE = "content:approve"
    CONTENT_PUBLISH = "content:publish"

    # Newsletter
    NEWSLETTER_READ = "newsletter:read"
    NEWSLETTER_CREATE = "newsletter:create"
    NEWSLETTER_UPDATE = "newsletter:update"
    NEWSLETTER_DELETE = "newsletter:delete"
    NEWSLETTER_PUBLISH = "newsletter:publish"

    # Users and roles
    USER_READ = "user:read"
    USER_UPDATE = "user:update"
    USER_DELETE = "user:delete"
    USER_ROLE_ASSIGN = "user:role:assign"
    USER_ROLE_REQUEST = "user:role:request"

    # Design
    DESIGN_CREATE = "design:create"
    DESIGN_CANVA = "design:canva"
    DESIGN_EXPORT = "design:export"
    DESIGN_TEMPLATE = "design:template"

    # System
    SYSTEM_CONFIG = "system:config"
    SYSTEM_ANALYTICS = "system:analytics"
    SYSTEM_BACKUP = "system:backup"
    SYSTEM_AUDIT = "system:audit"

    # Theme
    THEME_READ = "theme:read"
    THEME_UPDATE = "theme:update"
    THEME_ADMIN = "theme:admin"

    # Print
    PRINT_READ = "print:read"
    PRINT_CLAIM = "print:claim"
    PRINT_MANAGE = "print:manage"


class RoleAssignmentMethod(str, Enum):
    """How a role may be granted."""

    ADMIN_ASSIGNED = "admin_assigned"
    SELF_REQUESTED = "self_requested"
    AUTO_DOMAIN = "auto_domain"
    EXTERNAL_SYNC = "external_sync"


class RoleRequestStatus(str, Enum):
    """Lifecycle of a self-service role request."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXPIRED = "expired"


# =============================================================================
# Action Implications
# =============================================================================


_IMPLIED_ACTIONS: dict[Action, list[Action]] = {
    Action.MANAGE: [
        Action.CREATE, Action.READ, Action.UPDATE,
        Action.DELETE, Action.PUBLISH, Action.APPROVE,
    ],
    Action.MODERATE: [Action.READ, Action.UPDATE, Action.APPROVE, Action.REJECT],
    Action.PUBLISH: [Action.READ, Action.UPDATE],
    Action.APPROVE: [Action.READ],
    Action.UPDATE: [Action.READ],
    Action.DELETE: [Action.READ],
    Action.REJECT: [Action.READ],
    Action.ASSIGN: [Action.READ],
    Action.EXPORT: [Action.READ],
    Action.BACKUP: [Action.READ],
    Action.AUDIT: [Action.READ],
    Action.CONFIGURE: [Action.READ, Action.UPDATE],
    Action.CLAIM: [Action.READ],
}


def implied_actions(action: Action | str) -> list[Action]:
    """Actions a UI may assume once `action` is known to be allowed."""
    return list(_IMPLIED_ACTIONS.get(Action(action), []))


# =============================================================================
# Descriptions
# =============================================================================


_ACTION_LABELS: dict[Action, str] = {
    Action.CREATE: "Create",
    Action.READ: "View",
    Action.UPDATE: "Edit",
    Action.DELETE: "Delete",
    Action.MANAGE: "Manage",
    Action.PUBLISH: "Publish",
    Action.APPROVE: "Approve",
    Action.REJECT: "Reject",
    Action.ASSIGN: "Assign",
    Action.REQUEST: "Request",
    Action.EXPORT: "Export",
    Action.IMPORT: "Import",
    Action.BACKUP: "Backup",
    Action.AUDIT: "Audit",
    Action.CONFIGURE: "Configure",
    Action.MODERATE: "Moderate",
    Action.CLAIM: "Claim",
}

_SUBJECT_LABELS: dict[Subject, str] = {
    Subject.CONTENT: "content",
    Subject.NEWSLETTER: "newsletters",
    Subject.USER: "users",
    Subject.ROLE: "roles",
    Subject.DESIGN: "designs",
    Subject.TEMPLATE: "templates",
    Subject.THEME: "themes",
    Subject.SYSTEM: "system",
    Subject.ANALYTICS: "analytics",
    Subject.PRINT: "print jobs",
    Subject.COMMENT: "comments",
    Subject.CATEGORY: "categories",
    Subject.TAG: "tags",
    Subject.MEDIA: "media",
    Subject.FILE: "files",
    Subject.SETTINGS: "settings",
    Subject.AUDIT: "audit logs",
    Subject.BACKUP: "backups",
    Subject.DASHBOARD: "dashboard",
    Subject.REPORT: "reports",
    Subject.ALL: "everything",
}


def describe_permission(action: Action | str, subject: Subject | str) -> str:
    """Human-readable label, e.g. "View print jobs"."""
    return f"{_ACTION_LABELS[Action(action)]} {_SUBJECT_LABELS[Subject(subject)]}"

"""
Authorization system - rule-based abilities plus granular permissions.

Design principles:
1. A role compiles to an ordered rule list; the last matching rule wins
2. Anything not explicitly allowed is denied
3. Checks never raise: failures are logged and deny
4. Role rank and granular permissions are separate, coarser tools
"""

from courier.auth.ability import (
    CompiledAbility,
    PermissionCheckResult,
    compile_ability,
    fail_safe_ability,
    merge_abilities,
)
from courier.auth.capabilities import (
    Action,
    Permission,
    Role,
    RoleAssignmentMethod,
    RoleRequestStatus,
    Subject,
)
from courier.auth.context import (
    AuthContext,
    BulkPermissionResult,
    PermissionCheck,
    get_auth_context,
)
from courier.auth.identity import Identity, IdentityProvider, StaticIdentityProvider
from courier.auth.policies import (
    Policy,
    require_ability,
    require_any_permission,
    require_auth,
    require_permission,
    require_role,
)
from courier.auth.registry import RoleRegistry
from courier.auth.resolver import PermissionContext, PermissionResolver
from courier.auth.roles import (
    DEFAULT_ROLE_CONFIGS,
    ROLE_HIERARCHY,
    RoleConfig,
    RoleConfigError,
    at_least,
    hierarchy_of,
)
from courier.auth.rules import Rule, allow, deny
from courier.auth.service import (
    RoleAssignmentError,
    RoleError,
    RoleRequestError,
    RoleService,
)
from courier.auth.session import PermissionSession
from courier.auth.routes import router as roles_router

__all__ = [
    # Abilities
    "CompiledAbility",
    "PermissionCheckResult",
    "compile_ability",
    "fail_safe_ability",
    "merge_abilities",
    "Rule",
    "allow",
    "deny",
    # Types
    "Action",
    "Subject",
    "Role",
    "Permission",
    "RoleAssignmentMethod",
    "RoleRequestStatus",
    # Roles
    "RoleConfig",
    "RoleConfigError",
    "RoleRegistry",
    "DEFAULT_ROLE_CONFIGS",
    "ROLE_HIERARCHY",
    "at_least",
    "hierarchy_of",
    # Context
    "AuthContext",
    "BulkPermissionResult",
    "PermissionCheck",
    "get_auth_context",
    "PermissionSession",
    "PermissionContext",
    "PermissionResolver",
    # Identity
    "Identity",
    "IdentityProvider",
    "StaticIdentityProvider",
    # Role management
    "RoleService",
    "RoleError",
    "RoleAssignmentError",
    "RoleRequestError",
    # Policies
    "Policy",
    "require_ability",
    "require_any_permission",
    "require_auth",
    "require_permission",
    "require_role",
    # Router
    "roles_router",
]

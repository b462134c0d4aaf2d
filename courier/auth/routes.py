# =============================================================================
# Role API Routes
# =============================================================================
#
# Endpoints:
#   GET  /roles                              - Role configurations
#   GET  /roles/me                           - Current user's role, permissions, rules
#   POST /roles/check                        - Bulk ability checks
#   POST /roles/assign                       - Assign a role to a user
#   POST /roles/requests                     - Request a role for yourself
#   GET  /roles/requests                     - Pending requests visible to you
#   POST /roles/requests/{request_id}/review - Approve or reject a request
#
# Mutating endpoints check the caller's ability against the concrete role
# resource once it is known, not just the subject type.
#
# =============================================================================

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field

from courier.auth.capabilities import Action, RoleRequestStatus, Subject
from courier.auth.context import AuthContext, BulkPermissionResult, PermissionCheck
from courier.auth.policies import require_auth
from courier.auth.registry import RoleRegistry
from courier.auth.service import RoleAssignment, RoleError, RoleRequest, RoleService

router = APIRouter(prefix="/roles", tags=["roles"])


# =============================================================================
# Dependencies
# =============================================================================


def get_role_service(request: Request) -> RoleService:
    return request.app.state.role_service


def get_role_registry(request: Request) -> RoleRegistry:
    return request.app.state.role_registry


# =============================================================================
# Request/Response Models
# =============================================================================


class MyRoleResponse(BaseModel):
    user_id: str
    role: str
    display_name: str | None = None
    permissions: list[str]
    dashboard_route: str
    rules: list[dict[str, Any]]


class BulkCheckRequest(BaseModel):
    checks: list[PermissionCheck] = Field(min_length=1)


class AssignRoleRequest(BaseModel):
    user_id: str
    role: str
    reason: str | None = None


class CreateRoleRequest(BaseModel):
    role: str
    reason: str = ""


class CreateRoleRequestResponse(BaseModel):
    request_id: str


class ReviewRequest(BaseModel):
    decision: RoleRequestStatus
    notes: str | None = None


# =============================================================================
# Read Endpoints
# =============================================================================


@router.get("")
async def list_roles(
    ctx: AuthContext = Depends(require_auth()),
    registry: RoleRegistry = Depends(get_role_registry),
) -> list[dict[str, Any]]:
    """All role configurations, lowest rank first."""
    configs = await registry.get_all_role_configs()
    return [config.to_document() for config in configs.values()]


@router.get("/me", response_model=MyRoleResponse)
async def get_my_role(
    ctx: AuthContext = Depends(require_auth()),
    registry: RoleRegistry = Depends(get_role_registry),
):
    """The caller's role, granular permissions and compiled rules."""
    config = await registry.get_role_config(ctx.role)
    return MyRoleResponse(
        user_id=ctx.user_id,
        role=ctx.role.value,
        display_name=config.display_name if config else None,
        permissions=sorted(p.value for p in ctx.permissions),
        dashboard_route=config.dashboard_route if config else "/",
        rules=ctx.ability.to_list() if ctx.ability else [],
    )


@router.post("/check", response_model=BulkPermissionResult)
async def check_permissions(
    data: BulkCheckRequest,
    ctx: AuthContext = Depends(require_auth()),
):
    """Evaluate several (action, subject, resource?) queries for the caller."""
    return ctx.check_bulk_permissions(data.checks)


# =============================================================================
# Assignment
# =============================================================================


@router.post("/assign", response_model=RoleAssignment)
async def assign_role(
    data: AssignRoleRequest,
    ctx: AuthContext = Depends(require_auth()),
    role_service: RoleService = Depends(get_role_service),
):
    """Assign a role to another user."""
    ctx.require(Action.ASSIGN, Subject.ROLE, {"roleType": data.role, "userId": data.user_id})

    target_role = await role_service.get_user_role(data.user_id, use_cache=False)
    target = {"id": data.user_id, "role": target_role.value}
    if not ctx.can(Action.UPDATE, Subject.USER, target, "role"):
        raise HTTPException(status_code=403, detail=f"Cannot change the role of user {data.user_id}")

    try:
        return await role_service.assign_role(
            data.user_id,
            data.role,
            assigned_by=ctx.user_id,
            reason=data.reason,
        )
    except RoleError as e:
        raise HTTPException(status_code=400, detail=str(e))


# =============================================================================
# Requests
# =============================================================================


@router.post("/requests", response_model=CreateRoleRequestResponse, status_code=201)
async def create_role_request(
    data: CreateRoleRequest,
    ctx: AuthContext = Depends(require_auth()),
    role_service: RoleService = Depends(get_role_service),
):
    """Request a role for yourself."""
    ctx.require(Action.REQUEST, Subject.ROLE, {"userId": ctx.user_id, "roleType": data.role})

    try:
        request_id = await role_service.request_role(ctx.user_id, data.role, data.reason)
    except RoleError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return CreateRoleRequestResponse(request_id=request_id)


@router.get("/requests", response_model=list[RoleRequest])
async def list_role_requests(
    ctx: AuthContext = Depends(require_auth()),
    role_service: RoleService = Depends(get_role_service),
):
    """Pending requests the caller may see (their own, or all for reviewers)."""
    requests = await role_service.list_pending_requests()
    return [
        r for r in requests
        if ctx.can(Action.READ, Subject.ROLE, {"id": r.id, "userId": r.user_id})
    ]


@router.post("/requests/{request_id}/review", response_model=RoleRequest)
async def review_role_request(
    request_id: str,
    data: ReviewRequest,
    ctx: AuthContext = Depends(require_auth()),
    role_service: RoleService = Depends(get_role_service),
):
    """Approve or reject a pending role request."""
    pending = await role_service.get_role_request(request_id)
    if pending is None:
        raise HTTPException(status_code=404, detail="Role request not found")

    ctx.require(
        Action.ASSIGN,
        Subject.ROLE,
        {"roleType": pending.requested_role.value, "userId": pending.user_id},
    )

    try:
        return await role_service.process_role_request(
            request_id, ctx.user_id, data.decision, data.notes
        )
    except RoleError as e:
        raise HTTPException(status_code=400, detail=str(e))

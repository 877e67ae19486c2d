"""
Role management API endpoints.

Admin-only endpoints for reading and changing user roles, listing users
and reading the role audit log.
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException, Query, Request, status
from pydantic import BaseModel, ConfigDict, Field

from api.deps import get_identity_adapter, get_role_administration
from api.guards import require
from api.middleware.roles import get_current_user
from core.metrics import get_rbac_metrics
from core.rbac.admin import AdminOutcome, RoleChangeResult
from core.rbac.permissions import PERM_AUDIT_SYSTEM, PERM_VIEW_ALL_USERS
from core.rbac.roles import ALL_ROLES, ROLE_PERMISSIONS, list_all_roles

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["admin", "roles"])

_OUTCOME_STATUS = {
    AdminOutcome.INVALID_ROLE: status.HTTP_400_BAD_REQUEST,
    AdminOutcome.SELF_CHANGE: status.HTTP_400_BAD_REQUEST,
    AdminOutcome.INSUFFICIENT_PERMISSION: status.HTTP_403_FORBIDDEN,
    AdminOutcome.TARGET_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    AdminOutcome.WRITE_FAILED: status.HTTP_500_INTERNAL_SERVER_ERROR,
    AdminOutcome.READ_FAILED: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


# ============================================================================
# Request/Response Models
# ============================================================================

class RoleAssignmentRequest(BaseModel):
    """Request to assign a role to a user. The role is validated by the service."""
    role: str = Field(..., description="Role to assign (e.g., 'admin', 'employee')")
    reason: Optional[str] = Field(None, max_length=500, description="Why the role changed")

    model_config = ConfigDict(json_schema_extra={
        "example": {"role": "admin", "reason": "Promoted to security lead"}
    })


class RoleChangeResponse(BaseModel):
    """Response after a role change."""
    success: bool
    user_id: str
    previous_role: Optional[str] = None
    new_role: Optional[str] = None
    message: str
    audit_id: Optional[str] = None

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "success": True,
            "user_id": "user_2abc",
            "previous_role": "employee",
            "new_role": "admin",
            "message": "User role updated from employee to admin",
            "audit_id": "role_audit_log_1",
        }
    })


class UserRoleResponse(BaseModel):
    user_id: str
    role: str


class AuditEntryResponse(BaseModel):
    id: Optional[str] = None
    target_user_id: str
    performed_by: str
    action: str
    previous_role: Optional[str] = None
    new_role: Optional[str] = None
    reason: Optional[str] = None
    timestamp: int


# ============================================================================
# Helpers
# ============================================================================

def _acting_user_id(request: Request) -> str:
    """Caller's id; 401 for anonymous requests."""
    try:
        ctx = get_current_user(request)
    except AttributeError:
        ctx = None
    if ctx is None or not ctx.is_authenticated:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"error": "unauthenticated", "message": "Not authenticated"},
        )
    return ctx.user_id


def _failure(outcome: AdminOutcome, message: str) -> HTTPException:
    return HTTPException(
        status_code=_OUTCOME_STATUS.get(outcome, status.HTTP_500_INTERNAL_SERVER_ERROR),
        detail={"error": outcome.value, "message": message},
    )


def _change_response(result: RoleChangeResult) -> RoleChangeResponse:
    if not result.success:
        raise _failure(result.outcome, result.message)
    return RoleChangeResponse(
        success=True,
        user_id=result.target_user_id,
        previous_role=result.previous_role,
        new_role=result.new_role,
        message=result.message,
        audit_id=result.audit_id,
    )


# ============================================================================
# Endpoints
# ============================================================================

@router.get("/roles")
@require(PERM_VIEW_ALL_USERS)
async def get_roles(request: Request) -> Dict[str, Any]:
    """
    Available roles and the role-permission map.

    **Required Permission**: view_all_users
    """
    return {
        "roles": sorted(ALL_ROLES),
        "details": list_all_roles(),
        "role_permissions": {role: sorted(perms) for role, perms in ROLE_PERMISSIONS.items()},
    }


@router.get("/roles/{user_id}", response_model=UserRoleResponse)
@require(PERM_VIEW_ALL_USERS)
async def get_user_role(request: Request, user_id: str):
    """
    Current role of a user.

    **Required Permission**: view_all_users
    """
    principal = await get_identity_adapter(request).principal_by_id(user_id)
    if principal is None:
        raise _failure(AdminOutcome.TARGET_NOT_FOUND, "User not found")
    return UserRoleResponse(user_id=principal.id, role=principal.role)


@router.put("/roles/{user_id}", response_model=RoleChangeResponse)
async def assign_role(request: Request, user_id: str, assignment: RoleAssignmentRequest):
    """
    Assign a role to a user.

    **Required Permission**: assign_roles (checked by the role service so that
    an invalid role is reported before a missing permission)

    Re-assigning the current role succeeds and is still audited.

    **Example**:
    ```
    PUT /api/admin/roles/user_2abc
    {"role": "admin", "reason": "Promoted to security lead"}
    ```
    """
    acting_id = _acting_user_id(request)
    result = await get_role_administration(request).assign_role(
        target_id=user_id,
        new_role=assignment.role,
        acting_admin_id=acting_id,
        reason=assignment.reason,
    )
    return _change_response(result)


@router.delete("/roles/{user_id}", response_model=RoleChangeResponse)
async def remove_role(request: Request, user_id: str, reason: Optional[str] = Query(None, max_length=500)):
    """Reset a user to the default role."""
    acting_id = _acting_user_id(request)
    result = await get_role_administration(request).remove_role(
        target_id=user_id,
        acting_admin_id=acting_id,
        reason=reason,
    )
    return _change_response(result)


@router.get("/users")
async def list_users(request: Request) -> Dict[str, Any]:
    """
    All users with role, 2FA flag, last training date and compliance status.

    **Required Permission**: view_all_users
    """
    acting_id = _acting_user_id(request)
    settings = request.app.state.settings
    result = await get_role_administration(request).list_all_with_roles(
        acting_id, page_size=settings.USER_LIST_PAGE_SIZE
    )
    if not result.success:
        raise _failure(result.outcome, result.error or "Failed to fetch users")

    users = [summary.to_dict() for summary in result.principals]
    return {"users": users, "total": len(users), "truncated": result.truncated}


@router.get("/audit")
async def get_audit_log(
    request: Request,
    user_id: Optional[str] = None,
    limit: int = Query(100, ge=1, le=500),
) -> Dict[str, Any]:
    """
    Role audit log, newest first, optionally for a single target user.

    **Required Permission**: audit_system
    """
    acting_id = _acting_user_id(request)
    result = await get_role_administration(request).audit_log(acting_id, target_id=user_id, limit=limit)
    if not result.success:
        raise _failure(result.outcome, result.error or "Failed to retrieve audit log")

    entries: List[AuditEntryResponse] = [AuditEntryResponse(**vars(e)) for e in result.entries]
    return {
        "user_id": user_id,
        "audit_entries": [e.model_dump() for e in entries],
        "count": len(entries),
    }


@router.get("/metrics")
@require(PERM_AUDIT_SYSTEM)
async def get_metrics(request: Request) -> Dict[str, Any]:
    """Access-control counters grouped by category."""
    return get_rbac_metrics()

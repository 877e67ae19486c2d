"""
Self-service authorization checks for the signed-in caller.
"""

import logging
from typing import Any, Dict, List

from fastapi import APIRouter, HTTPException, Request, status
from pydantic import BaseModel, ConfigDict, Field

from api.deps import get_compliance_evaluator, get_identity_adapter, get_permission_evaluator
from api.middleware.roles import get_current_user
from core.rbac.permissions import validate_permission
from core.rbac.roles import get_role_display_name, validate_role

logger = logging.getLogger(__name__)

router = APIRouter(tags=["auth"])


class PermissionCheckRequest(BaseModel):
    permission: str = Field(..., description="Permission to check (e.g., 'take_quiz')")


class RoleCheckRequest(BaseModel):
    allowed_roles: List[str] = Field(..., alias="allowedRoles")

    model_config = ConfigDict(populate_by_name=True)


def _require_user_id(request: Request) -> str:
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


@router.post("/api/auth/check-permission")
async def check_permission(request: Request, body: PermissionCheckRequest) -> Dict[str, Any]:
    """Whether the caller's live role holds a permission."""
    user_id = _require_user_id(request)

    if not validate_permission(body.permission):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": "invalid_permission", "message": f"Invalid permission: {body.permission}"},
        )

    identity = get_identity_adapter(request)
    role = await identity.role_of(user_id)
    granted = await get_permission_evaluator(request).has_permission(body.permission, user_id)
    return {"has_permission": granted, "permission": body.permission, "role": role, "user_id": user_id}


@router.post("/api/auth/check-role")
async def check_role(request: Request, body: RoleCheckRequest) -> Dict[str, Any]:
    """Whether the caller's live role is one of `allowed_roles`."""
    user_id = _require_user_id(request)

    invalid = [r for r in body.allowed_roles if not validate_role(r)]
    if not body.allowed_roles or invalid:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": "invalid_roles", "message": f"Invalid roles provided: {invalid}"},
        )

    has_access = await get_permission_evaluator(request).has_role(body.allowed_roles, user_id)
    role = await get_identity_adapter(request).role_of(user_id)
    return {"has_access": has_access, "role": role, "user_id": user_id, "allowed_roles": body.allowed_roles}


@router.get("/api/user")
async def current_user(request: Request) -> Dict[str, Any]:
    """The caller's profile, role, permissions and compliance status."""
    user_id = _require_user_id(request)

    principal = await get_identity_adapter(request).current_principal()
    if principal is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"error": "not_found", "message": "User not found"},
        )

    permissions = await get_permission_evaluator(request).get_user_permissions(principal)
    compliance = await get_compliance_evaluator(request).get_user_compliance_status(principal)

    logger.debug(f"Served profile for {user_id}")
    return {
        "user": principal.to_dict(),
        "role_display_name": get_role_display_name(principal.role),
        "permissions": sorted(permissions),
        "compliance": compliance.to_dict(),
    }

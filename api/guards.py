"""
API endpoint guards for permission-based authorization.

Provides decorators to protect FastAPI routes. Unlike the route guard,
these evaluate against the principal's live role from the identity
oracle, not the session claims.
"""

import logging
from functools import wraps
from typing import Any, Awaitable, Callable, Dict, Optional

from fastapi import HTTPException, Request, status

from api.deps import get_compliance_evaluator, get_permission_evaluator
from api.middleware.roles import RequestContext, get_current_user
from core.metrics import audit_rbac_denial

logger = logging.getLogger(__name__)


# ============================================================================
# Guard Decorators
# ============================================================================

def require(permission: str) -> Callable:
    """
    Decorator to require a specific permission for a FastAPI route.

    The decorated handler must take a `request: Request` parameter.

    Args:
        permission: Permission constant (e.g., PERM_VIEW_ALL_USERS)

    Raises:
        HTTPException: 401 if unauthenticated, 403 if the permission is not held

    Examples:
        >>> @router.get("/users")
        >>> @require(PERM_VIEW_ALL_USERS)
        >>> async def list_users(request: Request):
        >>>     ...
    """
    async def check(request: Request, ctx: RequestContext) -> bool:
        return await get_permission_evaluator(request).has_permission(permission, ctx.user_id)

    return _guard(check, f"@require({permission})", {"permission": permission})


def require_any(*permissions: str) -> Callable:
    """Decorator to require at least one of the listed permissions."""
    async def check(request: Request, ctx: RequestContext) -> bool:
        return await get_permission_evaluator(request).has_any_permission(permissions, ctx.user_id)

    return _guard(check, f"@require_any{permissions}", {"permissions": list(permissions)})


def require_all(*permissions: str) -> Callable:
    """Decorator to require every listed permission."""
    async def check(request: Request, ctx: RequestContext) -> bool:
        return await get_permission_evaluator(request).has_all_permissions(permissions, ctx.user_id)

    return _guard(check, f"@require_all{permissions}", {"permissions": list(permissions)})


def require_compliance() -> Callable:
    """Decorator to require a compliant principal (2FA, current training)."""
    async def check(request: Request, ctx: RequestContext) -> bool:
        return await get_compliance_evaluator(request).is_compliant(ctx.user_id)

    return _guard(check, "@require_compliance()", {"compliance": "required"})


def _guard(
    check: Callable[[Request, RequestContext], Awaitable[bool]],
    label: str,
    detail: Dict[str, Any],
) -> Callable:
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def wrapper(*args, **kwargs) -> Any:
            request = _extract_request_from_args(args, kwargs)

            if request is None:
                logger.error(f"{label} decorator requires Request parameter")
                raise HTTPException(
                    status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                    detail="Internal server error: Request not found"
                )

            try:
                ctx = get_current_user(request)
            except AttributeError:
                logger.error("Request context not available. Is RouteGuardMiddleware configured?")
                raise HTTPException(
                    status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                    detail="Internal server error: User context not available"
                )

            if not ctx.is_authenticated:
                raise HTTPException(
                    status_code=status.HTTP_401_UNAUTHORIZED,
                    detail={"error": "unauthenticated", "message": "Not authenticated"},
                )

            if not await check(request, ctx):
                audit_rbac_denial(
                    user_id=ctx.user_id,
                    role=ctx.role,
                    route=str(request.url.path),
                    method=request.method,
                    permission=detail.get("permission"),
                    metadata=detail,
                )
                logger.warning(f"Access denied: user_id={ctx.user_id}, role={ctx.role}, guard={label}")
                raise HTTPException(
                    status_code=status.HTTP_403_FORBIDDEN,
                    detail={"error": "forbidden", **detail, "message": "Insufficient permissions"},
                )

            logger.debug(f"Access granted: user_id={ctx.user_id}, guard={label}")

            result = func(*args, **kwargs)
            if hasattr(result, "__await__"):
                return await result
            return result

        return wrapper

    return decorator


# ============================================================================
# Helper Functions
# ============================================================================

def _extract_request_from_args(args: tuple, kwargs: dict) -> Optional[Request]:
    """
    Extract Request object from function arguments.

    Returns:
        Request object if found, None otherwise
    """
    if "request" in kwargs:
        return kwargs["request"]

    for arg in args:
        if isinstance(arg, Request):
            return arg

    return None

"""API middleware modules."""

from .roles import (
    RouteGuardMiddleware,
    RequestContext,
    get_current_user,
    require_authenticated,
    get_user_id,
    get_user_role,
)

__all__ = [
    "RouteGuardMiddleware",
    "RequestContext",
    "get_current_user",
    "require_authenticated",
    "get_user_id",
    "get_user_role",
]

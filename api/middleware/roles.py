"""
FastAPI middleware guarding page and API routes by role.

Resolves the session principal, applies the route protection table and
either redirects or forwards the request with the caller's identity
attached to request.state and to the x-user-id / x-user-role headers.
"""

import logging
import time
from typing import Callable, Iterable, Optional, Sequence

from fastapi import Request, Response
from fastapi.responses import RedirectResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from adapters.identity import IdentityAdapter, IdentityOracle
from core.metrics import audit_rbac_denial, record_route_decision, time_operation
from core.rbac.roles import DEFAULT_ROLE
from core.rbac.routes import (
    ERROR_COMPLIANCE_REQUIRED,
    ERROR_TWO_FACTOR_REQUIRED,
    PROTECTED_ROUTES,
    PUBLIC_ROUTE_PATTERNS,
    RouteProtectionRule,
    compliance_redirect,
    forbidden_redirect,
    is_public_path,
    match_route,
    should_guard,
    sign_in_redirect,
)
from core.rbac.session import SessionClaims, SessionResolver
from core.rbac.status import ComplianceEvaluator

logger = logging.getLogger(__name__)

USER_ID_HEADER = "x-user-id"
USER_ROLE_HEADER = "x-user-role"

ROLE_SOURCE_CLAIMS = "claims"
ROLE_SOURCE_ORACLE = "oracle"
ROLE_SOURCE_DEFAULT = "default"


# ============================================================================
# Request State Extensions
# ============================================================================

class RequestContext:
    """
    Request context for the caller's identity and role.

    Attached to request.state by the RouteGuardMiddleware.
    """

    def __init__(
        self,
        user_id: Optional[str] = None,
        role: Optional[str] = None,
        email: Optional[str] = None,
        role_source: Optional[str] = None,
        session: Optional[SessionClaims] = None,
    ):
        self.user_id = user_id
        self.role = role
        self.email = email
        self.role_source = role_source
        self.session = session
        self.is_authenticated: bool = user_id is not None

    @classmethod
    def anonymous(cls) -> "RequestContext":
        return cls()

    def __repr__(self) -> str:
        return (
            f"RequestContext(user_id={self.user_id}, "
            f"role={self.role}, role_source={self.role_source})"
        )


# ============================================================================
# Middleware
# ============================================================================

class RouteGuardMiddleware(BaseHTTPMiddleware):
    """
    Route guard applied to every request.

    Per request:
    1. Static assets and public paths pass through untouched
    2. No verified session: 307 redirect to the sign-in page
    3. First matching protected rule: a role outside its allowed roles is
       redirected to the rule's target with error=insufficient_permissions
    4. Otherwise the request continues with the caller's context attached

    The role comes from session claims while they are younger than
    `claims_max_age_seconds`; older claims, claims without a role, or a
    budget of 0 re-read the role from the identity oracle.
    """

    def __init__(
        self,
        app: ASGIApp,
        session_resolver: SessionResolver,
        identity_oracle: Optional[IdentityOracle] = None,
        rules: Sequence[RouteProtectionRule] = PROTECTED_ROUTES,
        public_patterns: Iterable[str] = PUBLIC_ROUTE_PATTERNS,
        claims_max_age_seconds: int = 60,
        enforce_compliance: bool = False,
        clock: Callable[[], float] = time.time,
    ):
        super().__init__(app)
        self.session_resolver = session_resolver
        self.identity_oracle = identity_oracle
        self.rules = tuple(rules)
        self.public_patterns = tuple(public_patterns)
        self.claims_max_age_seconds = claims_max_age_seconds
        self.enforce_compliance = enforce_compliance
        self.clock = clock

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        path = request.url.path

        if not should_guard(path):
            return await call_next(request)

        # Identity headers are only ever set by this middleware
        _strip_identity_headers(request)

        if is_public_path(path, self.public_patterns):
            record_route_decision("public")
            request.state.ctx = RequestContext.anonymous()
            return await call_next(request)

        with time_operation("rbac.route_guard"):
            try:
                session = self.session_resolver.resolve(
                    authorization_header=request.headers.get("Authorization"),
                    cookies=request.cookies,
                )
            except Exception as e:
                logger.error(f"Error resolving session for {path}: {e}", exc_info=True)
                session = None

            if session is None:
                record_route_decision("unauthenticated")
                logger.debug(f"Unauthenticated request for {request.method} {path}, redirecting to sign-in")
                return RedirectResponse(sign_in_redirect(path), status_code=307)

            role, role_source = await self._resolve_role(session)
            rule = match_route(path, self.rules)

            if rule is not None:
                if not rule.allows(role):
                    record_route_decision("forbidden", rule.path_pattern)
                    audit_rbac_denial(
                        user_id=session.user_id,
                        role=role,
                        route=path,
                        method=request.method,
                        required_roles=list(rule.allowed_roles),
                        metadata={"role_source": role_source},
                    )
                    return RedirectResponse(forbidden_redirect(rule), status_code=307)

                if self.enforce_compliance and (rule.requires_2fa or rule.requires_compliance):
                    error = await self._compliance_error(session.user_id, rule)
                    if error:
                        record_route_decision("noncompliant", rule.path_pattern)
                        audit_rbac_denial(
                            user_id=session.user_id,
                            role=role,
                            route=path,
                            method=request.method,
                            metadata={"error": error},
                        )
                        return RedirectResponse(compliance_redirect(rule, error), status_code=307)

                record_route_decision("allowed", rule.path_pattern)
            else:
                record_route_decision("fallthrough")

        request.state.ctx = RequestContext(
            user_id=session.user_id,
            role=role,
            email=session.email,
            role_source=role_source,
            session=session,
        )
        _set_identity_headers(request, session.user_id, role)

        logger.debug(
            f"Guarded {request.method} {path}: user_id={session.user_id}, "
            f"role={role}, source={role_source}, rule={rule.path_pattern if rule else None}"
        )

        response = await call_next(request)
        response.headers[USER_ID_HEADER] = session.user_id
        response.headers[USER_ROLE_HEADER] = role
        return response

    async def _resolve_role(self, session: SessionClaims):
        """Role of the session principal and where it was read from."""
        if session.role and self._claims_fresh(session):
            return session.role, ROLE_SOURCE_CLAIMS

        if self.identity_oracle is None:
            if session.role:
                return session.role, ROLE_SOURCE_CLAIMS
            return DEFAULT_ROLE, ROLE_SOURCE_DEFAULT

        identity = IdentityAdapter(self.identity_oracle, session_user_id=session.user_id)
        return await identity.role_of(session.user_id), ROLE_SOURCE_ORACLE

    def _claims_fresh(self, session: SessionClaims) -> bool:
        if self.claims_max_age_seconds <= 0:
            return False
        age = session.claims_age_seconds(self.clock())
        return age is not None and age <= self.claims_max_age_seconds

    async def _compliance_error(self, user_id: str, rule: RouteProtectionRule) -> Optional[str]:
        """Redirect error for a rule's 2FA / compliance requirement, or None."""
        if self.identity_oracle is None:
            logger.warning("Compliance enforcement enabled without an identity oracle, denying")
            return ERROR_COMPLIANCE_REQUIRED

        identity = IdentityAdapter(self.identity_oracle, session_user_id=user_id)
        compliance = ComplianceEvaluator(identity)
        principal = await identity.current_principal()

        if rule.requires_2fa and not await compliance.has_2fa(principal):
            return ERROR_TWO_FACTOR_REQUIRED
        if rule.requires_compliance and not await compliance.is_compliant(principal):
            return ERROR_COMPLIANCE_REQUIRED
        return None


def _strip_identity_headers(request: Request) -> None:
    blocked = {USER_ID_HEADER.encode(), USER_ROLE_HEADER.encode()}
    headers = [(k, v) for k, v in request.scope["headers"] if k.lower() not in blocked]
    request.scope["headers"] = headers
    request.__dict__.pop("_headers", None)  # cached Headers view


def _set_identity_headers(request: Request, user_id: str, role: str) -> None:
    headers = list(request.scope["headers"])
    headers.append((USER_ID_HEADER.encode(), user_id.encode()))
    headers.append((USER_ROLE_HEADER.encode(), role.encode()))
    request.scope["headers"] = headers
    request.__dict__.pop("_headers", None)


# ============================================================================
# Helper Functions
# ============================================================================

def get_current_user(request: Request) -> RequestContext:
    """
    Get current user context from request.

    Raises:
        AttributeError: If middleware has not been applied
    """
    if not hasattr(request.state, "ctx"):
        raise AttributeError(
            "Request state does not have 'ctx' attribute. "
            "Ensure RouteGuardMiddleware is configured."
        )

    return request.state.ctx


def require_authenticated(request: Request) -> RequestContext:
    """
    Require that the request is from an authenticated user.

    Raises:
        PermissionError: If user is not authenticated
    """
    ctx = get_current_user(request)

    if not ctx.is_authenticated:
        raise PermissionError("Authentication required")

    return ctx


def get_user_id(request: Request) -> Optional[str]:
    return get_current_user(request).user_id


def get_user_role(request: Request) -> Optional[str]:
    return get_current_user(request).role


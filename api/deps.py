"""
Per-request construction of the access-control services.

The identity oracle and document store are created once by the app factory
and kept on app.state; everything built here is scoped to one request.
Each function takes the Request so it works both as a FastAPI dependency
and when called directly from a guard.
"""

from fastapi import Request

from adapters.identity import IdentityAdapter
from core.rbac.admin import RoleAdministration
from core.rbac.audit import RoleAuditLog
from core.rbac.evaluator import PermissionEvaluator
from core.rbac.status import ComplianceEvaluator


def get_identity_adapter(request: Request) -> IdentityAdapter:
    ctx = getattr(request.state, "ctx", None)
    session_user_id = ctx.user_id if ctx is not None else None
    return IdentityAdapter(request.app.state.identity_oracle, session_user_id=session_user_id)


def get_permission_evaluator(request: Request) -> PermissionEvaluator:
    return PermissionEvaluator(get_identity_adapter(request))


def get_compliance_evaluator(request: Request) -> ComplianceEvaluator:
    return ComplianceEvaluator(get_identity_adapter(request))


def get_role_administration(request: Request) -> RoleAdministration:
    identity = get_identity_adapter(request)
    return RoleAdministration(
        identity=identity,
        evaluator=PermissionEvaluator(identity),
        audit_log=RoleAuditLog(request.app.state.document_store),
        compliance=ComplianceEvaluator(identity),
    )

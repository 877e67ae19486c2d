"""
Role administration: role reassignment, principal listing and audit access.

Every operation returns a result object carrying a discriminated outcome
instead of raising, so callers can present a specific message.
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from adapters.identity import (
    IdentityAdapter,
    Principal,
    UPDATE_NOT_FOUND,
)
from core.metrics import audit_role_change, record_role_change
from .audit import ACTION_ROLE_CHANGED, ACTION_ROLE_REMOVED, RoleAuditEntry, RoleAuditLog
from .evaluator import PermissionEvaluator
from .permissions import PERM_ASSIGN_ROLES, PERM_AUDIT_SYSTEM, PERM_VIEW_ALL_USERS
from .roles import DEFAULT_DEPARTMENT, DEFAULT_ROLE, normalize_role
from .status import STATUS_COMPLIANT, STATUS_NON_COMPLIANT, ComplianceEvaluator

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 100
MAX_PAGE_SIZE = 500
DEFAULT_MAX_USERS = 500


class AdminOutcome(str, Enum):
    SUCCESS = "success"
    INVALID_ROLE = "invalid_role"
    INSUFFICIENT_PERMISSION = "insufficient_permission"
    SELF_CHANGE = "self_change"
    TARGET_NOT_FOUND = "target_not_found"
    WRITE_FAILED = "write_failed"
    READ_FAILED = "read_failed"


_OUTCOME_MESSAGES = {
    AdminOutcome.INVALID_ROLE: "Invalid or missing role",
    AdminOutcome.INSUFFICIENT_PERMISSION: "Insufficient permissions",
    AdminOutcome.SELF_CHANGE: "Cannot change your own role",
    AdminOutcome.TARGET_NOT_FOUND: "User not found",
    AdminOutcome.WRITE_FAILED: "Failed to assign role",
    AdminOutcome.READ_FAILED: "Failed to read users",
}


@dataclass
class RoleChangeResult:
    outcome: AdminOutcome
    target_user_id: str
    previous_role: Optional[str] = None
    new_role: Optional[str] = None
    assigned_by: Optional[str] = None
    audit_id: Optional[str] = None
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.outcome is AdminOutcome.SUCCESS

    @property
    def message(self) -> str:
        if self.success:
            return f"User role updated from {self.previous_role} to {self.new_role}"
        return _OUTCOME_MESSAGES.get(self.outcome, self.outcome.value)


@dataclass
class PrincipalSummary:
    """A principal as listed to administrators, with derived compliance fields."""
    principal: Principal
    compliance_status: str
    compliance_reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = self.principal.to_dict()
        data["department"] = data["department"] or DEFAULT_DEPARTMENT
        data["compliance_status"] = self.compliance_status
        data["compliance_reason"] = self.compliance_reason
        return data


@dataclass
class ListPrincipalsResult:
    outcome: AdminOutcome
    principals: List[PrincipalSummary] = field(default_factory=list)
    truncated: bool = False
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.outcome is AdminOutcome.SUCCESS


@dataclass
class AuditLogResult:
    outcome: AdminOutcome
    entries: List[RoleAuditEntry] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.outcome is AdminOutcome.SUCCESS


def _system_now_ms() -> int:
    return int(time.time() * 1000)


class RoleAdministration:
    """Admin-only role management written through the identity adapter."""

    def __init__(
        self,
        identity: IdentityAdapter,
        evaluator: PermissionEvaluator,
        audit_log: RoleAuditLog,
        compliance: Optional[ComplianceEvaluator] = None,
        now_ms: Callable[[], int] = _system_now_ms,
    ):
        self.identity = identity
        self.evaluator = evaluator
        self.role_audit = audit_log
        self.compliance = compliance or ComplianceEvaluator(identity, now_ms=now_ms)
        self.now_ms = now_ms

    async def assign_role(
        self,
        target_id: str,
        new_role: str,
        acting_admin_id: str,
        reason: Optional[str] = None,
        action: str = ACTION_ROLE_CHANGED,
    ) -> RoleChangeResult:
        """
        Assign `new_role` to `target_id` on behalf of `acting_admin_id`.

        Re-assigning the role a principal already has succeeds and is audited
        with previous_role == new_role.
        """
        role = normalize_role(new_role)
        if role is None:
            return self._finish(RoleChangeResult(AdminOutcome.INVALID_ROLE, target_id, new_role=new_role))

        if not acting_admin_id or not await self.evaluator.has_permission(PERM_ASSIGN_ROLES, acting_admin_id):
            logger.warning(f"Role assignment denied: {acting_admin_id} lacks {PERM_ASSIGN_ROLES}")
            return self._finish(RoleChangeResult(
                AdminOutcome.INSUFFICIENT_PERMISSION, target_id, new_role=role, assigned_by=acting_admin_id
            ))

        if target_id == acting_admin_id:
            logger.warning(f"Self role change rejected for {acting_admin_id}")
            return self._finish(RoleChangeResult(
                AdminOutcome.SELF_CHANGE, target_id, new_role=role, assigned_by=acting_admin_id
            ))

        now = self.now_ms()
        update = await self.identity.update_metadata(target_id, {
            "role": role,
            "roleAssignedBy": acting_admin_id,
            "roleAssignedAt": now,
        })
        if not update.ok:
            outcome = (
                AdminOutcome.TARGET_NOT_FOUND if update.reason == UPDATE_NOT_FOUND
                else AdminOutcome.WRITE_FAILED
            )
            return self._finish(RoleChangeResult(
                outcome, target_id, new_role=role, assigned_by=acting_admin_id, error=update.error
            ))

        previous_role = (update.previous.role if update.previous else None) or DEFAULT_ROLE
        entry = RoleAuditEntry(
            target_user_id=target_id,
            performed_by=acting_admin_id,
            action=action,
            previous_role=previous_role,
            new_role=role,
            reason=reason or "No reason provided",
            timestamp=now,
        )

        audit_id = None
        try:
            audit_id = await self.role_audit.append(entry)
        except Exception as e:
            # The role change already happened; report it and surface the gap in logs
            logger.error(f"Failed to write role audit entry for {target_id}: {e}", exc_info=True)

        audit_role_change(target_id, acting_admin_id, previous_role, role, action, audit_id)
        return self._finish(RoleChangeResult(
            AdminOutcome.SUCCESS,
            target_id,
            previous_role=previous_role,
            new_role=role,
            assigned_by=acting_admin_id,
            audit_id=audit_id,
        ))

    async def remove_role(
        self,
        target_id: str,
        acting_admin_id: str,
        reason: Optional[str] = None,
    ) -> RoleChangeResult:
        """Reset a principal to the default role."""
        return await self.assign_role(
            target_id, DEFAULT_ROLE, acting_admin_id, reason=reason, action=ACTION_ROLE_REMOVED
        )

    async def list_all_with_roles(
        self,
        acting_admin_id: str,
        page_size: int = DEFAULT_PAGE_SIZE,
        max_users: int = DEFAULT_MAX_USERS,
    ) -> ListPrincipalsResult:
        """
        All principals with role and compliance fields, read page by page.

        Stops after `max_users` principals and flags the result as truncated.
        """
        if not acting_admin_id or not await self.evaluator.has_permission(PERM_VIEW_ALL_USERS, acting_admin_id):
            return ListPrincipalsResult(AdminOutcome.INSUFFICIENT_PERMISSION)

        page_size = max(1, min(page_size, MAX_PAGE_SIZE))
        principals: List[Principal] = []
        offset = 0
        truncated = False

        try:
            while True:
                page = await self.identity.list_principals(limit=page_size, offset=offset)
                principals.extend(page)
                if len(principals) >= max_users:
                    truncated = len(principals) > max_users or len(page) == page_size
                    principals = principals[:max_users]
                    break
                if len(page) < page_size:
                    break
                offset += page_size
        except Exception as e:
            logger.error(f"Error listing users: {e}", exc_info=True)
            return ListPrincipalsResult(AdminOutcome.READ_FAILED, error=str(e))

        summaries = []
        for principal in principals:
            decision = self.compliance.evaluate(principal)
            summaries.append(PrincipalSummary(
                principal=principal,
                compliance_status=STATUS_COMPLIANT if decision.compliant else STATUS_NON_COMPLIANT,
                compliance_reason=decision.reason,
            ))

        logger.info(f"Listed {len(summaries)} users for {acting_admin_id} (truncated={truncated})")
        return ListPrincipalsResult(AdminOutcome.SUCCESS, principals=summaries, truncated=truncated)

    async def audit_log(
        self,
        acting_admin_id: str,
        target_id: Optional[str] = None,
        limit: int = 100,
    ) -> AuditLogResult:
        """Role audit entries, newest first, optionally for a single target."""
        if not acting_admin_id or not await self.evaluator.has_permission(PERM_AUDIT_SYSTEM, acting_admin_id):
            return AuditLogResult(AdminOutcome.INSUFFICIENT_PERMISSION)

        try:
            if target_id:
                entries = await self.role_audit.for_target(target_id, limit=limit)
            else:
                entries = await self.role_audit.recent(limit=limit)
        except Exception as e:
            logger.error(f"Error reading role audit log: {e}", exc_info=True)
            return AuditLogResult(AdminOutcome.READ_FAILED, error=str(e))

        return AuditLogResult(AdminOutcome.SUCCESS, entries=entries)

    def _finish(self, result: RoleChangeResult) -> RoleChangeResult:
        record_role_change(result.outcome.value, result.new_role)
        if not result.success:
            logger.info(
                f"Role change {result.outcome.value}: target={result.target_user_id} "
                f"role={result.new_role} by={result.assigned_by}"
            )
        return result

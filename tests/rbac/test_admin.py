"""
Tests for role administration: assignment outcomes, listing and audit access.
"""

from unittest.mock import AsyncMock

import pytest

from adapters.db import DocumentStoreError
from adapters.identity import IdentityOracleError
from core.metrics import get_counter
from core.rbac.admin import AdminOutcome, RoleAdministration
from core.rbac.audit import ACTION_ROLE_CHANGED, ACTION_ROLE_REMOVED, ROLE_AUDIT_TABLE, RoleAuditLog
from core.rbac.evaluator import PermissionEvaluator


@pytest.fixture
def role_admin(identity, document_store, now_ms):
    return RoleAdministration(
        identity,
        PermissionEvaluator(identity),
        RoleAuditLog(document_store),
        now_ms=lambda: now_ms,
    )


# ============================================================================
# Assignment
# ============================================================================

class TestAssignRole:
    """Test role assignment outcomes."""

    @pytest.mark.anyio
    async def test_admin_promotes_employee(self, role_admin, identity, document_store, now_ms):
        result = await role_admin.assign_role("user_employee", "admin", "user_admin", reason="Team lead")

        assert result.success
        assert result.previous_role == "employee"
        assert result.new_role == "admin"
        assert result.assigned_by == "user_admin"
        assert result.message == "User role updated from employee to admin"
        assert result.audit_id is not None

        principal = await identity.principal_by_id("user_employee")
        assert principal.role == "admin"
        assert principal.metadata.role_assigned_by == "user_admin"
        assert principal.metadata.role_assigned_at == now_ms
        assert document_store.count(ROLE_AUDIT_TABLE) == 1

    @pytest.mark.anyio
    async def test_other_metadata_is_preserved(self, role_admin, identity):
        await role_admin.assign_role("user_employee", "admin", "user_admin")

        principal = await identity.principal_by_id("user_employee")
        assert principal.metadata.department == "call_center"
        assert principal.metadata.has_2fa is True

    @pytest.mark.anyio
    async def test_role_is_normalized(self, role_admin):
        result = await role_admin.assign_role("user_employee", "ADMIN", "user_admin")
        assert result.success
        assert result.new_role == "admin"

    @pytest.mark.anyio
    async def test_user_without_role_reports_default_previous(self, role_admin):
        result = await role_admin.assign_role("user_new", "admin", "user_admin")
        assert result.previous_role == "employee"

    @pytest.mark.anyio
    async def test_reassigning_same_role_is_audited(self, role_admin, document_store):
        result = await role_admin.assign_role("user_employee", "employee", "user_admin")

        assert result.success
        assert result.previous_role == result.new_role == "employee"
        assert document_store.count(ROLE_AUDIT_TABLE) == 1

    @pytest.mark.anyio
    async def test_invalid_role(self, role_admin, identity):
        for role in ("superuser", "", None):
            result = await role_admin.assign_role("user_employee", role, "user_admin")
            assert result.outcome is AdminOutcome.INVALID_ROLE
            assert result.message == "Invalid or missing role"
        assert (await identity.principal_by_id("user_employee")).role == "employee"

    @pytest.mark.anyio
    async def test_invalid_role_is_checked_before_permission(self, role_admin):
        result = await role_admin.assign_role("user_admin", "superuser", "user_employee")
        assert result.outcome is AdminOutcome.INVALID_ROLE

    @pytest.mark.anyio
    async def test_employee_cannot_assign(self, role_admin, identity):
        result = await role_admin.assign_role("user_new", "admin", "user_employee")

        assert result.outcome is AdminOutcome.INSUFFICIENT_PERMISSION
        assert (await identity.principal_by_id("user_new")).role == "employee"

    @pytest.mark.anyio
    async def test_permission_is_checked_before_self_change(self, role_admin):
        result = await role_admin.assign_role("user_employee", "admin", "user_employee")
        assert result.outcome is AdminOutcome.INSUFFICIENT_PERMISSION

    @pytest.mark.anyio
    async def test_missing_actor(self, role_admin):
        result = await role_admin.assign_role("user_employee", "admin", None)
        assert result.outcome is AdminOutcome.INSUFFICIENT_PERMISSION

    @pytest.mark.anyio
    async def test_admin_cannot_change_own_role(self, role_admin, identity):
        result = await role_admin.assign_role("user_admin", "employee", "user_admin")

        assert result.outcome is AdminOutcome.SELF_CHANGE
        assert result.message == "Cannot change your own role"
        assert (await identity.principal_by_id("user_admin")).role == "admin"

    @pytest.mark.anyio
    async def test_admin_can_demote_another_admin(self, role_admin):
        result = await role_admin.assign_role("user_admin_2", "employee", "user_admin")
        assert result.success
        assert result.previous_role == "admin"

    @pytest.mark.anyio
    async def test_unknown_target(self, role_admin, document_store):
        result = await role_admin.assign_role("nobody", "admin", "user_admin")

        assert result.outcome is AdminOutcome.TARGET_NOT_FOUND
        assert result.message == "User not found"
        assert document_store.count(ROLE_AUDIT_TABLE) == 0

    @pytest.mark.anyio
    async def test_write_failure(self, role_admin, oracle, document_store):
        oracle.update_user_metadata = AsyncMock(side_effect=IdentityOracleError("upstream", status=502))

        result = await role_admin.assign_role("user_employee", "admin", "user_admin")

        assert result.outcome is AdminOutcome.WRITE_FAILED
        assert result.message == "Failed to assign role"
        assert "upstream" in result.error
        assert document_store.count(ROLE_AUDIT_TABLE) == 0

    @pytest.mark.anyio
    async def test_audit_failure_keeps_the_change(self, identity, caplog):
        store = AsyncMock()
        store.insert.side_effect = DocumentStoreError("audit table unavailable")
        role_admin = RoleAdministration(identity, PermissionEvaluator(identity), RoleAuditLog(store))

        result = await role_admin.assign_role("user_employee", "admin", "user_admin")

        assert result.success
        assert result.audit_id is None
        assert (await identity.principal_by_id("user_employee")).role == "admin"
        assert "Failed to write role audit entry" in caplog.text

    @pytest.mark.anyio
    async def test_outcomes_are_counted(self, role_admin):
        await role_admin.assign_role("user_employee", "admin", "user_admin")
        await role_admin.assign_role("user_admin", "employee", "user_admin")

        assert get_counter("rbac.role_changes", labels={"outcome": "success"}) == 1
        assert get_counter("rbac.role_changes", labels={"outcome": "self_change"}) == 1
        assert get_counter("rbac.role_changes.by_role", labels={"role": "admin"}) == 1


class TestRemoveRole:
    """Test resetting a principal to the default role."""

    @pytest.mark.anyio
    async def test_remove_role(self, role_admin, identity, document_store):
        result = await role_admin.remove_role("user_admin_2", "user_admin", reason="Left the team")

        assert result.success
        assert result.previous_role == "admin"
        assert result.new_role == "employee"
        assert (await identity.principal_by_id("user_admin_2")).role == "employee"

        entries = await RoleAuditLog(document_store).for_target("user_admin_2")
        assert entries[0].action == ACTION_ROLE_REMOVED
        assert entries[0].reason == "Left the team"

    @pytest.mark.anyio
    async def test_remove_own_role(self, role_admin):
        result = await role_admin.remove_role("user_admin", "user_admin")
        assert result.outcome is AdminOutcome.SELF_CHANGE


# ============================================================================
# Listing
# ============================================================================

class TestListAllWithRoles:
    """Test the paged principal listing."""

    @pytest.mark.anyio
    async def test_lists_everyone_with_compliance(self, role_admin):
        result = await role_admin.list_all_with_roles("user_admin")

        assert result.success
        assert not result.truncated
        by_id = {s.principal.id: s for s in result.principals}
        assert set(by_id) == {"user_admin", "user_admin_2", "user_employee", "user_new"}
        assert by_id["user_employee"].compliance_status == "compliant"
        assert by_id["user_new"].compliance_status == "non_compliant"
        assert by_id["user_new"].compliance_reason == "two_factor_required"
        assert by_id["user_new"].principal.role == "employee"

    @pytest.mark.anyio
    async def test_reads_page_by_page(self, role_admin, oracle):
        oracle.list_users = AsyncMock(wraps=oracle.list_users)

        result = await role_admin.list_all_with_roles("user_admin", page_size=1)

        assert len(result.principals) == 4
        offsets = [call.kwargs["offset"] for call in oracle.list_users.call_args_list]
        assert offsets == [0, 1, 2, 3, 4]

    @pytest.mark.anyio
    async def test_truncates_at_max_users(self, role_admin):
        result = await role_admin.list_all_with_roles("user_admin", page_size=2, max_users=3)

        assert result.success
        assert result.truncated
        assert len(result.principals) == 3

    @pytest.mark.anyio
    async def test_summary_dict(self, role_admin):
        result = await role_admin.list_all_with_roles("user_admin")
        data = next(s.to_dict() for s in result.principals if s.principal.id == "user_admin")

        assert data["role"] == "admin"
        assert data["email"] == "admin@example.com"
        assert data["compliance_status"] == "compliant"
        assert data["compliance_reason"] is None

    @pytest.mark.anyio
    async def test_missing_department_defaults_to_call_center(self, role_admin, oracle):
        oracle.add_user("user_ops", public_metadata={"role": "employee", "department": "it_security"})

        result = await role_admin.list_all_with_roles("user_admin")
        by_id = {s.principal.id: s.to_dict() for s in result.principals}

        assert by_id["user_new"]["department"] == "call_center"
        assert by_id["user_ops"]["department"] == "it_security"
        assert by_id["user_new"]["role"] == "employee"

    @pytest.mark.anyio
    async def test_employee_cannot_list(self, role_admin):
        result = await role_admin.list_all_with_roles("user_employee")
        assert result.outcome is AdminOutcome.INSUFFICIENT_PERMISSION
        assert result.principals == []

    @pytest.mark.anyio
    async def test_read_failure(self, role_admin, oracle):
        oracle.list_users = AsyncMock(side_effect=IdentityOracleError("rate limited", status=429))

        result = await role_admin.list_all_with_roles("user_admin")

        assert result.outcome is AdminOutcome.READ_FAILED
        assert "rate limited" in result.error


# ============================================================================
# Audit Log
# ============================================================================

class TestAuditLog:
    """Test audit log access."""

    @pytest.mark.anyio
    async def test_recent_entries_newest_first(self, identity, document_store):
        clock = iter([1000, 2000])
        role_admin = RoleAdministration(
            identity, PermissionEvaluator(identity), RoleAuditLog(document_store), now_ms=lambda: next(clock)
        )
        await role_admin.assign_role("user_employee", "admin", "user_admin")
        await role_admin.assign_role("user_new", "admin", "user_admin")

        result = await role_admin.audit_log("user_admin")

        assert result.success
        assert [e.target_user_id for e in result.entries] == ["user_new", "user_employee"]
        assert result.entries[0].action == ACTION_ROLE_CHANGED
        assert result.entries[1].reason == "No reason provided"

    @pytest.mark.anyio
    async def test_entries_for_target(self, role_admin):
        await role_admin.assign_role("user_employee", "admin", "user_admin")
        await role_admin.assign_role("user_new", "admin", "user_admin")

        result = await role_admin.audit_log("user_admin", target_id="user_new")

        assert [e.target_user_id for e in result.entries] == ["user_new"]
        assert result.entries[0].performed_by == "user_admin"

    @pytest.mark.anyio
    async def test_employee_cannot_read(self, role_admin):
        result = await role_admin.audit_log("user_employee")
        assert result.outcome is AdminOutcome.INSUFFICIENT_PERMISSION

    @pytest.mark.anyio
    async def test_store_failure(self, identity):
        store = AsyncMock()
        store.list_recent.side_effect = DocumentStoreError("timeout")
        role_admin = RoleAdministration(identity, PermissionEvaluator(identity), RoleAuditLog(store))

        result = await role_admin.audit_log("user_admin")

        assert result.outcome is AdminOutcome.READ_FAILED

"""
Tests for RBAC metrics and audit logging.

Verifies that access-control decisions are counted and that denials and
role changes produce audit log entries.
"""

from unittest.mock import patch

import pytest

from core.metrics import (
    audit_rbac_denial,
    audit_role_change,
    get_counter,
    get_histogram_stats,
    get_rbac_metrics,
    record_compliance_evaluation,
    record_permission_check,
    record_role_change,
    record_route_decision,
    reset_metrics,
    time_operation,
)


@pytest.fixture
def mock_logger():
    """Mock audit logger."""
    with patch("core.metrics.audit_logger") as mock_log:
        yield mock_log


class TestPermissionMetrics:
    """Test permission check counters."""

    def test_allowed_and_denied(self):
        record_permission_check(True, "take_quiz", "employee")
        record_permission_check(False, "assign_roles", "employee")
        record_permission_check(False, "assign_roles", None)

        assert get_counter("rbac.allowed") == 1
        assert get_counter("rbac.denied") == 2
        assert get_counter("rbac.denied.by_permission", labels={"permission": "assign_roles"}) == 2
        assert get_counter("rbac.role_distribution", labels={"role": "employee"}) == 2
        assert get_counter("rbac.role_distribution", labels={"role": "unresolved"}) == 1


class TestRouteAndComplianceMetrics:
    """Test route decision and compliance counters."""

    def test_route_decisions(self):
        record_route_decision("allowed", "/admin(.*)")
        record_route_decision("fallthrough")

        assert get_counter("rbac.routes", labels={"decision": "allowed"}) == 1
        assert get_counter(
            "rbac.routes.by_pattern", labels={"decision": "allowed", "pattern": "/admin(.*)"}
        ) == 1

    def test_compliance(self):
        record_compliance_evaluation(True)
        record_compliance_evaluation(False, "training_expired")

        assert get_counter("rbac.compliance", labels={"compliant": "true"}) == 1
        assert get_counter("rbac.compliance.failures", labels={"reason": "training_expired"}) == 1

    def test_role_changes_by_role_only_on_success(self):
        record_role_change("success", "admin")
        record_role_change("self_change", "employee")

        assert get_counter("rbac.role_changes.by_role", labels={"role": "admin"}) == 1
        assert get_counter("rbac.role_changes.by_role", labels={"role": "employee"}) == 0

    def test_time_operation(self):
        with time_operation("rbac.route_guard"):
            pass
        assert get_histogram_stats("rbac.route_guard_latency_ms")["count"] == 1


class TestAuditLogging:
    """Test audit log entries."""

    def test_denial_audit(self, mock_logger):
        audit_rbac_denial(
            user_id="user_employee",
            role="employee",
            route="/admin/users",
            method="GET",
            required_roles=["admin"],
        )

        mock_logger.warning.assert_called_once()
        message = mock_logger.warning.call_args[0][0]
        assert "RBAC_DENIAL" in message
        assert "required_roles=admin" in message
        entry = mock_logger.warning.call_args[1]["extra"]["audit"]
        assert entry["user_id"] == "user_employee"
        assert entry["required_roles"] == ["admin"]
        assert "permission" not in entry
        assert get_counter("rbac.audit.denials") == 1

    def test_anonymous_denial(self, mock_logger):
        audit_rbac_denial(user_id=None, role=None, route="/api/user", permission="take_quiz")

        entry = mock_logger.warning.call_args[1]["extra"]["audit"]
        assert entry["user_id"] == "anonymous"
        assert entry["permission"] == "take_quiz"

    def test_role_change_audit(self, mock_logger):
        audit_role_change("user_employee", "user_admin", "employee", "admin", "role_changed", "audit_1")

        entry = mock_logger.info.call_args[1]["extra"]["audit"]
        assert entry["event"] == "role_changed"
        assert entry["previous_role"] == "employee"
        assert entry["audit_id"] == "audit_1"


class TestRbacMetricsExport:
    """Test grouped metrics export."""

    def test_grouping(self):
        record_permission_check(True, "take_quiz", "employee")
        record_route_decision("forbidden", "/admin(.*)")
        record_role_change("success", "admin")
        with time_operation("rbac.route_guard"):
            pass

        metrics = get_rbac_metrics()

        assert "rbac.allowed" in metrics["authorization"]
        assert "rbac.role_distribution" in metrics["authorization"]
        assert "rbac.routes" in metrics["routes"]
        assert "rbac.role_changes" in metrics["role_changes"]
        assert "rbac.route_guard_latency_ms" in metrics["latency"]

    def test_reset(self):
        record_permission_check(True, "take_quiz", "employee")
        reset_metrics()
        assert get_counter("rbac.allowed") == 0

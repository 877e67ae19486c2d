"""
Permission constants and role-permission lookups.

Defines every permission known to the portal and provides functions to
check whether a role holds a permission.
"""

from typing import Dict, FrozenSet, Iterable, List, Set
import logging

logger = logging.getLogger(__name__)

# ============================================================================
# Permission Constants
# ============================================================================

# System administration
PERM_MANAGE_USERS = "manage_users"
PERM_MANAGE_SYSTEM = "manage_system"
PERM_VIEW_ALL_USERS = "view_all_users"
PERM_ASSIGN_ROLES = "assign_roles"

# Content management
PERM_MANAGE_POLICIES = "manage_policies"
PERM_MANAGE_TRAINING = "manage_training"
PERM_CREATE_QUIZ = "create_quiz"
PERM_EDIT_QUIZ = "edit_quiz"
PERM_DELETE_QUIZ = "delete_quiz"

# Compliance and reporting
PERM_VIEW_COMPLIANCE_REPORTS = "view_compliance_reports"
PERM_EXPORT_DATA = "export_data"
PERM_VIEW_ANALYTICS = "view_analytics"
PERM_MANAGE_CERTIFICATIONS = "manage_certifications"
PERM_AUDIT_SYSTEM = "audit_system"

# Security management
PERM_MANAGE_SECURITY_POLICIES = "manage_security_policies"
PERM_VIEW_SECURITY_INCIDENTS = "view_security_incidents"
PERM_MANAGE_2FA_REQUIREMENTS = "manage_2fa_requirements"

# Employee self-service
PERM_ACCESS_POLICIES = "access_policies"
PERM_ACCESS_TRAINING = "access_training"
PERM_TAKE_QUIZ = "take_quiz"
PERM_VIEW_OWN_RESULTS = "view_own_results"
PERM_VIEW_OWN_PROGRESS = "view_own_progress"
PERM_ACCESS_FAQ = "access_faq"

# PCI DSS and financial compliance
PERM_ACCESS_PCI_TRAINING = "access_pci_training"
PERM_VIEW_DATA_HANDLING_POLICIES = "view_data_handling_policies"
PERM_ACCESS_CALL_SECURITY_TRAINING = "access_call_security_training"


PERMISSION_CATEGORIES: Dict[str, FrozenSet[str]] = {
    "system_administration": frozenset({
        PERM_MANAGE_USERS,
        PERM_MANAGE_SYSTEM,
        PERM_VIEW_ALL_USERS,
        PERM_ASSIGN_ROLES,
    }),
    "content_management": frozenset({
        PERM_MANAGE_POLICIES,
        PERM_MANAGE_TRAINING,
        PERM_CREATE_QUIZ,
        PERM_EDIT_QUIZ,
        PERM_DELETE_QUIZ,
    }),
    "compliance_reporting": frozenset({
        PERM_VIEW_COMPLIANCE_REPORTS,
        PERM_EXPORT_DATA,
        PERM_VIEW_ANALYTICS,
        PERM_MANAGE_CERTIFICATIONS,
        PERM_AUDIT_SYSTEM,
    }),
    "security_management": frozenset({
        PERM_MANAGE_SECURITY_POLICIES,
        PERM_VIEW_SECURITY_INCIDENTS,
        PERM_MANAGE_2FA_REQUIREMENTS,
    }),
    "employee_access": frozenset({
        PERM_ACCESS_POLICIES,
        PERM_ACCESS_TRAINING,
        PERM_TAKE_QUIZ,
        PERM_VIEW_OWN_RESULTS,
        PERM_VIEW_OWN_PROGRESS,
        PERM_ACCESS_FAQ,
    }),
    "financial_compliance": frozenset({
        PERM_ACCESS_PCI_TRAINING,
        PERM_VIEW_DATA_HANDLING_POLICIES,
        PERM_ACCESS_CALL_SECURITY_TRAINING,
    }),
}

# Complete set of all permissions
ALL_PERMISSIONS: FrozenSet[str] = frozenset().union(*PERMISSION_CATEGORIES.values())


# ============================================================================
# Lookup Functions
# ============================================================================

def permissions_for(role: str) -> FrozenSet[str]:
    """
    Get the permission set of a role.

    Total over any input: an empty or unrecognized role yields an empty set
    rather than an error.

    Examples:
        >>> PERM_TAKE_QUIZ in permissions_for("employee")
        True
        >>> permissions_for("unknown")
        frozenset()
    """
    # Import here to avoid circular dependency
    from .roles import ROLE_PERMISSIONS

    if not role or not isinstance(role, str):
        return frozenset()

    return ROLE_PERMISSIONS.get(role.lower(), frozenset())


def role_has_permission(role: str, permission: str) -> bool:
    """
    Check if a role holds a specific permission.

    Args:
        role: Role name (e.g., "admin", "employee")
        permission: Permission constant (e.g., PERM_MANAGE_USERS)

    Returns:
        True if the role holds the permission, False otherwise

    Examples:
        >>> role_has_permission("admin", PERM_MANAGE_USERS)
        True
        >>> role_has_permission("employee", PERM_MANAGE_USERS)
        False
    """
    if permission not in ALL_PERMISSIONS:
        logger.warning(f"Unknown permission: {permission}")
        return False

    return permission in permissions_for(role)


def validate_permission(permission: str) -> bool:
    """Check that a permission name belongs to the closed permission set."""
    return bool(permission) and permission in ALL_PERMISSIONS


def get_missing_permissions(role: str, required: Iterable[str]) -> List[str]:
    """
    Get the required permissions a role does not hold, in request order.

    Examples:
        >>> get_missing_permissions("employee", [PERM_TAKE_QUIZ, PERM_EXPORT_DATA])
        ['export_data']
    """
    owned = permissions_for(role)
    missing: List[str] = []
    seen: Set[str] = set()
    for permission in required:
        if permission not in owned and permission not in seen:
            missing.append(permission)
            seen.add(permission)
    return missing

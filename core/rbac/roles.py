"""
Role definitions and role-to-permission mappings.

Defines the two portal roles and their associated permissions.
"""

from typing import Any, Dict, FrozenSet, Optional
from .permissions import (
    PERMISSION_CATEGORIES,
    ALL_PERMISSIONS,
)


# ============================================================================
# Role Constants
# ============================================================================

ROLE_ADMIN = "admin"
"""System administrators and security managers."""

ROLE_EMPLOYEE = "employee"
"""Call center and data handling staff."""

# Complete set of all roles
ALL_ROLES = frozenset({
    ROLE_ADMIN,
    ROLE_EMPLOYEE,
})

# Least-privileged role; every fallback resolves here
DEFAULT_ROLE = ROLE_EMPLOYEE


# ============================================================================
# Role-to-Permission Mapping
# ============================================================================

_EMPLOYEE_PERMISSIONS: FrozenSet[str] = (
    PERMISSION_CATEGORIES["employee_access"]
    | PERMISSION_CATEGORIES["financial_compliance"]
)

ROLE_PERMISSIONS: Dict[str, FrozenSet[str]] = {
    # Admin: every permission, including everything an employee can do
    ROLE_ADMIN: ALL_PERMISSIONS,

    # Employee: self-service access plus financial services training
    ROLE_EMPLOYEE: _EMPLOYEE_PERMISSIONS,
}


# ============================================================================
# Role Metadata
# ============================================================================

ROLE_DISPLAY_NAMES: Dict[str, str] = {
    ROLE_ADMIN: "Administrator",
    ROLE_EMPLOYEE: "Employee",
}

ROLE_DESCRIPTIONS: Dict[str, str] = {
    ROLE_ADMIN: "System administrators and security managers",
    ROLE_EMPLOYEE: "Call center and data handling staff",
}


# ============================================================================
# Departments
# ============================================================================

DEPT_CALL_CENTER = "call_center"
DEPT_DATA_HANDLING = "data_handling"
DEPT_ADMINISTRATION = "administration"
DEPT_IT_SECURITY = "it_security"
DEPT_MANAGEMENT = "management"

DEPARTMENT_DISPLAY_NAMES: Dict[str, str] = {
    DEPT_CALL_CENTER: "Call Center",
    DEPT_DATA_HANDLING: "Data Handling",
    DEPT_ADMINISTRATION: "Administration",
    DEPT_IT_SECURITY: "IT Security",
    DEPT_MANAGEMENT: "Management",
}

DEFAULT_DEPARTMENT = DEPT_CALL_CENTER


def validate_role(role: Any) -> bool:
    """
    Check if a role is valid.

    Examples:
        >>> validate_role("admin")
        True
        >>> validate_role("manager")
        False
        >>> validate_role("")
        False
    """
    if not role or not isinstance(role, str):
        return False

    return role.lower() in ALL_ROLES


def normalize_role(role: Any) -> Optional[str]:
    """Return the canonical role name, or None if the value is not a role."""
    if not validate_role(role):
        return None
    return role.lower()


def is_admin_role(role: str) -> bool:
    return normalize_role(role) == ROLE_ADMIN


def get_role_display_name(role: str) -> str:
    """Human-readable role name, 'Unknown' for anything outside the catalog."""
    return ROLE_DISPLAY_NAMES.get(normalize_role(role) or "", "Unknown")


def get_department_display_name(department: str) -> str:
    return DEPARTMENT_DISPLAY_NAMES.get(department or "", "Unknown")


def list_all_roles() -> Dict[str, Dict[str, Any]]:
    """
    List all roles with their permissions and descriptions.

    Returns:
        Dictionary mapping role names to their metadata
    """
    return {
        role: {
            "display_name": ROLE_DISPLAY_NAMES[role],
            "description": ROLE_DESCRIPTIONS.get(role, ""),
            "permissions": sorted(ROLE_PERMISSIONS.get(role, frozenset())),
        }
        for role in sorted(ALL_ROLES)
    }

"""
Role-Based Access Control (RBAC) module.

Provides the role, permission and compliance policy catalogs. Evaluators,
the route table and role administration live in their own modules and
are imported from there.
"""

from .roles import (
    ROLE_ADMIN,
    ROLE_EMPLOYEE,
    ALL_ROLES,
    DEFAULT_ROLE,
    ROLE_PERMISSIONS,
    validate_role,
    normalize_role,
    is_admin_role,
    get_role_display_name,
    list_all_roles,
)

from .permissions import (
    PERM_MANAGE_USERS,
    PERM_ASSIGN_ROLES,
    PERM_VIEW_ALL_USERS,
    PERM_AUDIT_SYSTEM,
    PERMISSION_CATEGORIES,
    ALL_PERMISSIONS,
    permissions_for,
    role_has_permission,
    validate_permission,
    get_missing_permissions,
)

from .compliance import (
    ComplianceRequirements,
    ROLE_COMPLIANCE,
    requirements_for,
    can_access_data,
)

__all__ = [
    # Roles
    "ROLE_ADMIN",
    "ROLE_EMPLOYEE",
    "ALL_ROLES",
    "DEFAULT_ROLE",
    "ROLE_PERMISSIONS",
    "validate_role",
    "normalize_role",
    "is_admin_role",
    "get_role_display_name",
    "list_all_roles",
    # Permissions
    "PERM_MANAGE_USERS",
    "PERM_ASSIGN_ROLES",
    "PERM_VIEW_ALL_USERS",
    "PERM_AUDIT_SYSTEM",
    "PERMISSION_CATEGORIES",
    "ALL_PERMISSIONS",
    "permissions_for",
    "role_has_permission",
    "validate_permission",
    "get_missing_permissions",
    # Compliance policy
    "ComplianceRequirements",
    "ROLE_COMPLIANCE",
    "requirements_for",
    "can_access_data",
]

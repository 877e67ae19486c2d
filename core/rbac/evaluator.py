"""
Permission evaluation against live principal data.

Every check resolves the principal through the identity adapter and denies
on any resolution failure: unauthenticated, unknown principal, or an
oracle error all evaluate to False.
"""

import logging
from dataclasses import dataclass, field
from typing import FrozenSet, Iterable, List, Optional

from adapters.identity import IdentityAdapter, PrincipalRef
from core.metrics import record_permission_check
from .permissions import permissions_for
from .roles import DEFAULT_ROLE, ROLE_ADMIN

logger = logging.getLogger(__name__)


@dataclass
class PermissionCheck:
    """Detailed result of a multi-permission check, for explanatory UIs."""
    granted: bool
    role: str
    required: List[str]
    owned: List[str] = field(default_factory=list)
    missing: List[str] = field(default_factory=list)

    def to_dict(self):
        return {
            "granted": self.granted,
            "role": self.role,
            "required": list(self.required),
            "owned": list(self.owned),
            "missing": list(self.missing),
        }


class PermissionEvaluator:
    """Answers permission questions for principals resolved via an IdentityAdapter."""

    def __init__(self, identity: IdentityAdapter):
        self.identity = identity

    async def _resolve_permissions(self, principal_or_id: PrincipalRef):
        """
        Role and permission set of a principal.

        Returns (None, empty set) when the principal cannot be resolved.
        """
        principal = await self.identity.resolve(principal_or_id)
        if principal is None:
            return None, frozenset()
        return principal.role, permissions_for(principal.role)

    async def has_permission(self, permission: str, principal_or_id: PrincipalRef = None) -> bool:
        """
        Check if a principal holds a permission.

        Args:
            permission: Permission constant (e.g., PERM_MANAGE_USERS)
            principal_or_id: Principal, principal id, or None for the current caller

        Returns:
            True only if the principal resolved and its role holds the permission
        """
        role = None
        try:
            role, owned = await self._resolve_permissions(principal_or_id)
            allowed = role is not None and permission in owned
        except Exception as e:
            logger.error(f"Error checking permission {permission}: {e}", exc_info=True)
            allowed = False

        record_permission_check(allowed, permission, role)
        return allowed

    async def has_any_permission(
        self,
        permissions: Iterable[str],
        principal_or_id: PrincipalRef = None,
    ) -> bool:
        """True if the role holds at least one of `permissions`; False for an empty list."""
        required = list(permissions)
        if not required:
            return False

        try:
            role, owned = await self._resolve_permissions(principal_or_id)
        except Exception as e:
            logger.error(f"Error checking permissions {required}: {e}", exc_info=True)
            return False

        return role is not None and any(p in owned for p in required)

    async def has_all_permissions(
        self,
        permissions: Iterable[str],
        principal_or_id: PrincipalRef = None,
    ) -> bool:
        """True iff every permission in `permissions` is held; vacuously True for an empty list."""
        required = list(permissions)
        if not required:
            return True

        try:
            role, owned = await self._resolve_permissions(principal_or_id)
        except Exception as e:
            logger.error(f"Error checking permissions {required}: {e}", exc_info=True)
            return False

        return role is not None and all(p in owned for p in required)

    async def check_permissions(
        self,
        required_permissions: Iterable[str],
        principal_or_id: PrincipalRef = None,
    ) -> PermissionCheck:
        """
        Diagnostic variant reporting exactly which permissions are missing.

        Not a gate: use has_permission / has_all_permissions for enforcement.
        On any failure every required permission is reported missing.
        """
        required = list(dict.fromkeys(required_permissions))

        try:
            role, owned = await self._resolve_permissions(principal_or_id)
        except Exception as e:
            logger.error(f"Error checking permissions {required}: {e}", exc_info=True)
            role, owned = None, frozenset()

        missing = [p for p in required if p not in owned]
        return PermissionCheck(
            granted=role is not None and not missing,
            role=role or DEFAULT_ROLE,
            required=required,
            owned=sorted(owned),
            missing=missing,
        )

    async def get_user_permissions(self, principal_or_id: PrincipalRef = None) -> FrozenSet[str]:
        try:
            _, owned = await self._resolve_permissions(principal_or_id)
        except Exception as e:
            logger.error(f"Error getting user permissions: {e}", exc_info=True)
            return frozenset()
        return owned

    async def is_admin(self, principal_or_id: PrincipalRef = None) -> bool:
        try:
            role, _ = await self._resolve_permissions(principal_or_id)
        except Exception as e:
            logger.error(f"Error checking admin role: {e}", exc_info=True)
            return False
        return role == ROLE_ADMIN

    async def has_role(self, allowed_roles: Iterable[str], principal_or_id: PrincipalRef = None) -> bool:
        allowed = set(allowed_roles)
        try:
            role, _ = await self._resolve_permissions(principal_or_id)
        except Exception as e:
            logger.error(f"Error checking role membership: {e}", exc_info=True)
            return False
        return role is not None and role in allowed

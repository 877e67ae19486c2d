"""
Route protection table and path matching for the route guard.

Rules are evaluated in declaration order and the first matching pattern
decides. Patterns may overlap, so a more specific rule must be declared
before any broader rule that also matches it.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Pattern, Sequence, Tuple
from urllib.parse import urlencode

from .roles import ROLE_ADMIN, ROLE_EMPLOYEE, validate_role

logger = logging.getLogger(__name__)

SIGN_IN_PATH = "/sign-in"
DEFAULT_LANDING_PATH = "/dashboard"

ERROR_INSUFFICIENT_PERMISSIONS = "insufficient_permissions"
ERROR_TWO_FACTOR_REQUIRED = "two_factor_required"
ERROR_COMPLIANCE_REQUIRED = "compliance_required"

PUBLIC_ROUTE_PATTERNS: Tuple[str, ...] = (
    "/",
    "/sign-in(.*)",
    "/sign-up(.*)",
    "/api/webhook(.*)",
)

# Paths the guard never sees: framework internals and static files,
# unless they are API routes.
_GUARDED_PATH = re.compile(
    r"/(?!_next|[^?]*\.(?:html?|css|js(?!on)|jpe?g|webp|png|gif|svg|ttf|woff2?|ico|csv|docx?|xlsx?|zip|webmanifest)).*"
)
_ALWAYS_GUARDED = re.compile(r"/(api|trpc)(.*)")


@dataclass(frozen=True)
class RouteProtectionRule:
    """One row of the route table; `path_pattern` must match the whole path."""
    path_pattern: str
    allowed_roles: Tuple[str, ...]
    requires_compliance: bool = False
    requires_2fa: bool = False
    redirect_target: str = DEFAULT_LANDING_PATH
    _regex: Pattern = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        if not self.allowed_roles:
            raise ValueError(f"Route {self.path_pattern} must allow at least one role")
        invalid = [r for r in self.allowed_roles if not validate_role(r)]
        if invalid:
            raise ValueError(f"Route {self.path_pattern} names unknown roles: {invalid}")
        object.__setattr__(self, "allowed_roles", tuple(self.allowed_roles))
        object.__setattr__(self, "_regex", re.compile(self.path_pattern))

    def matches(self, path: str) -> bool:
        return self._regex.fullmatch(path) is not None

    def allows(self, role: str) -> bool:
        return role in self.allowed_roles

    @property
    def required_role_param(self) -> str:
        return "_or_".join(self.allowed_roles)


PROTECTED_ROUTES: Tuple[RouteProtectionRule, ...] = (
    RouteProtectionRule("/admin(.*)", (ROLE_ADMIN,), requires_compliance=True, requires_2fa=True),
    RouteProtectionRule("/admin/users(.*)", (ROLE_ADMIN,), requires_compliance=True, requires_2fa=True),
    RouteProtectionRule("/admin/policies(.*)", (ROLE_ADMIN,), requires_compliance=True, requires_2fa=True),
    RouteProtectionRule("/admin/training(.*)", (ROLE_ADMIN,), requires_compliance=True, requires_2fa=True),
    RouteProtectionRule("/admin/reports(.*)", (ROLE_ADMIN,), requires_compliance=True, requires_2fa=True),
    RouteProtectionRule("/training(.*)", (ROLE_ADMIN, ROLE_EMPLOYEE), redirect_target=SIGN_IN_PATH),
    RouteProtectionRule("/policies(.*)", (ROLE_ADMIN, ROLE_EMPLOYEE), redirect_target=SIGN_IN_PATH),
    RouteProtectionRule("/profile(.*)", (ROLE_ADMIN, ROLE_EMPLOYEE), redirect_target=SIGN_IN_PATH),
)


def should_guard(path: str) -> bool:
    """Whether the guard runs for a path at all (static assets are skipped)."""
    return bool(_ALWAYS_GUARDED.fullmatch(path) or _GUARDED_PATH.fullmatch(path))


def is_public_path(path: str, patterns: Iterable[str] = PUBLIC_ROUTE_PATTERNS) -> bool:
    return any(re.fullmatch(pattern, path) for pattern in patterns)


def match_route(
    path: str,
    rules: Sequence[RouteProtectionRule] = PROTECTED_ROUTES,
) -> Optional[RouteProtectionRule]:
    """First rule whose pattern matches `path`, or None."""
    for rule in rules:
        if rule.matches(path):
            return rule
    return None


def _with_query(target: str, params: List[Tuple[str, str]]) -> str:
    separator = "&" if "?" in target else "?"
    return f"{target}{separator}{urlencode(params)}"


def sign_in_redirect(path: str) -> str:
    """
    Examples:
        >>> sign_in_redirect("/admin/users")
        '/sign-in?redirect_url=%2Fadmin%2Fusers'
    """
    return _with_query(SIGN_IN_PATH, [("redirect_url", path)])


def forbidden_redirect(rule: RouteProtectionRule) -> str:
    """
    Examples:
        >>> forbidden_redirect(PROTECTED_ROUTES[0])
        '/dashboard?error=insufficient_permissions&required_role=admin'
    """
    return _with_query(rule.redirect_target, [
        ("error", ERROR_INSUFFICIENT_PERMISSIONS),
        ("required_role", rule.required_role_param),
    ])


def compliance_redirect(rule: RouteProtectionRule, error: str) -> str:
    return _with_query(rule.redirect_target, [("error", error)])


def _literal_prefix(pattern: str) -> str:
    """Leading run of the pattern that contains no regex metacharacters."""
    match = re.match(r"[^.^$*+?{}\[\]\\|()]*", pattern)
    return match.group(0) if match else ""


def find_shadowed_rules(
    rules: Sequence[RouteProtectionRule] = PROTECTED_ROUTES,
) -> List[Tuple[RouteProtectionRule, RouteProtectionRule]]:
    """
    Pairs (earlier, later) where the earlier rule matches the later rule's
    literal prefix and therefore decides every request the later rule was
    written for. Heuristic: only the literal prefix is probed.
    """
    shadowed = []
    for index, later in enumerate(rules):
        probe = _literal_prefix(later.path_pattern)
        if not probe:
            continue
        for earlier in rules[:index]:
            if earlier.matches(probe):
                shadowed.append((earlier, later))
                break
    return shadowed


def warn_on_shadowed_rules(rules: Sequence[RouteProtectionRule] = PROTECTED_ROUTES) -> int:
    """Log each shadowed rule whose outcome differs from the rule that shadows it."""
    count = 0
    for earlier, later in find_shadowed_rules(rules):
        if (earlier.allowed_roles, earlier.requires_2fa, earlier.requires_compliance) == (
            later.allowed_roles, later.requires_2fa, later.requires_compliance
        ):
            continue
        count += 1
        logger.warning(
            f"Route rule {later.path_pattern} is shadowed by earlier rule "
            f"{earlier.path_pattern} with a different policy"
        )
    return count

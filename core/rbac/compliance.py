"""
Compliance policy catalog.

Per-role training, quiz, score, refresh and two-factor requirements, plus
the data-sensitivity access table used by the financial compliance rules.
"""

from dataclasses import dataclass
from typing import Dict, FrozenSet, Tuple

from .roles import ROLE_ADMIN, ROLE_EMPLOYEE, ALL_ROLES, DEFAULT_ROLE, normalize_role


MILLIS_PER_DAY = 24 * 60 * 60 * 1000


@dataclass(frozen=True)
class ComplianceRequirements:
    """Static compliance policy for one role."""
    required_training: Tuple[str, ...]
    required_quizzes: Tuple[str, ...]
    minimum_score: int
    refresh_period_days: int
    requires_2fa: bool

    def __post_init__(self):
        if not 0 <= self.minimum_score <= 100:
            raise ValueError(f"minimum_score must be within 0-100, got {self.minimum_score}")
        if self.refresh_period_days <= 0:
            raise ValueError(
                f"refresh_period_days must be positive, got {self.refresh_period_days}"
            )

    def to_dict(self) -> Dict[str, object]:
        return {
            "required_training": list(self.required_training),
            "required_quizzes": list(self.required_quizzes),
            "minimum_score": self.minimum_score,
            "refresh_period_days": self.refresh_period_days,
            "requires_2fa": self.requires_2fa,
        }


ROLE_COMPLIANCE: Dict[str, ComplianceRequirements] = {
    ROLE_ADMIN: ComplianceRequirements(
        required_training=(
            "cybersecurity_fundamentals",
            "data_protection_pci",
            "incident_response",
            "security_management",
            "compliance_overview",
        ),
        required_quizzes=(
            "admin_security_assessment",
            "pci_dss_quiz",
            "incident_response_quiz",
        ),
        minimum_score=90,
        refresh_period_days=90,  # quarterly
        requires_2fa=True,
    ),
    ROLE_EMPLOYEE: ComplianceRequirements(
        required_training=(
            "cybersecurity_fundamentals",
            "password_security",
            "phishing_awareness",
            "data_protection_basics",
            "call_recording_security",
        ),
        required_quizzes=(
            "security_basics_quiz",
            "phishing_quiz",
            "data_handling_quiz",
        ),
        minimum_score=80,
        refresh_period_days=180,  # twice a year
        requires_2fa=True,
    ),
}


def requirements_for(role: str) -> ComplianceRequirements:
    """
    Get the compliance requirements of a role.

    An unrecognized role falls back to the default role's requirements.
    """
    return ROLE_COMPLIANCE[normalize_role(role) or DEFAULT_ROLE]


# ============================================================================
# Data Sensitivity
# ============================================================================

SENSITIVITY_PUBLIC = "public"
SENSITIVITY_INTERNAL = "internal"
SENSITIVITY_CONFIDENTIAL = "confidential"
SENSITIVITY_RESTRICTED = "restricted"  # PCI DSS, customer financial data


@dataclass(frozen=True)
class DataAccessRequirement:
    roles: FrozenSet[str]
    requires_2fa: bool


DATA_ACCESS_REQUIREMENTS: Dict[str, DataAccessRequirement] = {
    SENSITIVITY_PUBLIC: DataAccessRequirement(roles=ALL_ROLES, requires_2fa=False),
    SENSITIVITY_INTERNAL: DataAccessRequirement(roles=ALL_ROLES, requires_2fa=False),
    SENSITIVITY_CONFIDENTIAL: DataAccessRequirement(roles=ALL_ROLES, requires_2fa=True),
    SENSITIVITY_RESTRICTED: DataAccessRequirement(roles=ALL_ROLES, requires_2fa=True),
}


def can_access_data(role: str, sensitivity: str, has_2fa: bool) -> bool:
    """
    Check whether a role may read data of the given sensitivity.

    Unknown sensitivity levels are denied.
    """
    requirement = DATA_ACCESS_REQUIREMENTS.get(sensitivity)
    if requirement is None:
        return False

    if (normalize_role(role) or DEFAULT_ROLE) not in requirement.roles:
        return False

    return has_2fa or not requirement.requires_2fa

"""
Compliance evaluation.

A principal is compliant when, in order:

1. two-factor authentication is enabled, if the role's policy requires it;
2. training is marked complete;
3. the last dated training, if any, is no older than the role's refresh
   period (inclusive).

A completion without a date passes condition 3. Only `is_compliant` is an
enforcement gate; `get_user_compliance_status` is a display breakdown.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from adapters.identity import IdentityAdapter, Principal, PrincipalRef
from core.metrics import record_compliance_evaluation
from .compliance import ComplianceRequirements, MILLIS_PER_DAY, requirements_for
from .roles import DEFAULT_ROLE

logger = logging.getLogger(__name__)

REASON_TWO_FACTOR_REQUIRED = "two_factor_required"
REASON_TRAINING_INCOMPLETE = "training_incomplete"
REASON_TRAINING_EXPIRED = "training_expired"
REASON_UNRESOLVED = "unresolved_principal"

STATUS_COMPLIANT = "compliant"
STATUS_NON_COMPLIANT = "non_compliant"


def _system_now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class ComplianceDecision:
    compliant: bool
    reason: Optional[str] = None


@dataclass
class ComplianceStatus:
    """Per-principal breakdown for display."""
    is_compliant: bool
    role: str
    requirements: ComplianceRequirements
    completed_training: List[str] = field(default_factory=list)
    missing_training: List[str] = field(default_factory=list)
    has_2fa: bool = False
    last_training_date: Optional[int] = None
    reason: Optional[str] = None

    def to_dict(self):
        return {
            "is_compliant": self.is_compliant,
            "role": self.role,
            "requirements": self.requirements.to_dict(),
            "completed_training": list(self.completed_training),
            "missing_training": list(self.missing_training),
            "has_2fa": self.has_2fa,
            "last_training_date": self.last_training_date,
            "reason": self.reason,
        }


def evaluate_compliance(
    principal: Principal,
    now_ms: int,
    requirements: Optional[ComplianceRequirements] = None,
) -> ComplianceDecision:
    """Pure compliance decision for an already-resolved principal."""
    requirements = requirements or requirements_for(principal.role)
    metadata = principal.metadata

    if requirements.requires_2fa and not metadata.has_2fa:
        return ComplianceDecision(False, REASON_TWO_FACTOR_REQUIRED)

    if not metadata.training_complete:
        return ComplianceDecision(False, REASON_TRAINING_INCOMPLETE)

    if metadata.last_training_date is not None:
        days_since_training = (now_ms - metadata.last_training_date) / MILLIS_PER_DAY
        if days_since_training > requirements.refresh_period_days:
            return ComplianceDecision(False, REASON_TRAINING_EXPIRED)

    return ComplianceDecision(True)


class ComplianceEvaluator:
    """Combines stored principal metadata with the compliance policy catalog."""

    def __init__(self, identity: IdentityAdapter, now_ms: Callable[[], int] = _system_now_ms):
        self.identity = identity
        self.now_ms = now_ms

    def evaluate(self, principal: Principal) -> ComplianceDecision:
        return evaluate_compliance(principal, self.now_ms())

    async def is_compliant(self, principal_or_id: PrincipalRef = None) -> bool:
        """Enforcement gate. Any resolution failure evaluates to False."""
        try:
            principal = await self.identity.resolve(principal_or_id)
            if principal is None:
                decision = ComplianceDecision(False, REASON_UNRESOLVED)
            else:
                decision = self.evaluate(principal)
        except Exception as e:
            logger.error(f"Error checking compliance: {e}", exc_info=True)
            decision = ComplianceDecision(False, REASON_UNRESOLVED)

        record_compliance_evaluation(decision.compliant, decision.reason)
        if not decision.compliant:
            logger.debug(f"Principal not compliant: reason={decision.reason}")
        return decision.compliant

    async def has_2fa(self, principal_or_id: PrincipalRef = None) -> bool:
        try:
            principal = await self.identity.resolve(principal_or_id)
        except Exception as e:
            logger.error(f"Error checking 2FA status: {e}", exc_info=True)
            return False
        return principal is not None and principal.metadata.has_2fa

    async def get_user_compliance_status(self, principal_or_id: PrincipalRef) -> ComplianceStatus:
        """
        Detailed compliance breakdown: missing training is the role's required
        training minus what the principal has completed, in policy order.
        """
        try:
            principal = await self.identity.resolve(principal_or_id)
        except Exception as e:
            logger.error(f"Error getting compliance status: {e}", exc_info=True)
            principal = None

        if principal is None:
            return ComplianceStatus(
                is_compliant=False,
                role=DEFAULT_ROLE,
                requirements=requirements_for(DEFAULT_ROLE),
                reason=REASON_UNRESOLVED,
            )

        requirements = requirements_for(principal.role)
        completed = list(principal.metadata.completed_training)
        missing = [t for t in requirements.required_training if t not in completed]
        decision = evaluate_compliance(principal, self.now_ms(), requirements)

        return ComplianceStatus(
            is_compliant=decision.compliant,
            role=principal.role,
            requirements=requirements,
            completed_training=completed,
            missing_training=missing,
            has_2fa=principal.metadata.has_2fa,
            last_training_date=principal.metadata.last_training_date,
            reason=decision.reason,
        )

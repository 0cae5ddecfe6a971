"""Pre-request entitlement check against the subscription state."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from ..billing.service import SubscriptionReconciler
from ..entitlements.models import PlanKey
from .quota import UsageQuotaEvaluation, evaluate_usage_quota

logger = logging.getLogger(__name__)


class DenialReason(str, Enum):
    QUOTA_EXCEEDED = "quota_exceeded"
    SUBSCRIPTION_EXPIRED = "subscription_expired"


@dataclass(frozen=True)
class EntitlementDecision:
    """Allow or deny verdict for one gated operation."""

    account_id: str
    plan_key: PlanKey
    usage: UsageQuotaEvaluation
    reason: Optional[DenialReason] = None

    @property
    def allowed(self) -> bool:
        return self.reason is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "account_id": self.account_id,
            "plan_key": self.plan_key.value,
            "allowed": self.allowed,
            "reason": self.reason.value if self.reason else None,
            **self.usage.to_dict(),
        }


@dataclass
class EntitlementGuard:
    """Evaluates whether an account may perform a metered operation.

    The guard never counts usage itself; callers report successful operations
    through :meth:`SubscriptionReconciler.record_usage`.
    """

    reconciler: SubscriptionReconciler

    def check_entitlement(self, account_id: str) -> EntitlementDecision:
        account, expired = self.reconciler.refresh_account(account_id)
        subscription = account.subscription
        usage = evaluate_usage_quota(
            usage_count=account.usage.usage_count,
            usage_limit=account.usage.usage_limit,
        )

        reason: Optional[DenialReason] = None
        if not subscription.is_paid() and not usage.allowed:
            reason = DenialReason.QUOTA_EXCEEDED
        elif expired:
            reason = DenialReason.SUBSCRIPTION_EXPIRED

        decision = EntitlementDecision(
            account_id=account.account_id,
            plan_key=subscription.plan_key,
            usage=usage,
            reason=reason,
        )
        if reason is not None:
            logger.info("Entitlement denied", extra={"entitlement_decision": decision.to_dict()})
        return decision


__all__ = ["DenialReason", "EntitlementDecision", "EntitlementGuard"]

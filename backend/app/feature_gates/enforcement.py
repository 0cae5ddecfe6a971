"""Helpers for enforcing entitlement checks on API and service layers."""
from __future__ import annotations

from .exceptions import FeatureGateError
from .guard import DenialReason, EntitlementDecision

_DENIAL_MESSAGES = {
    DenialReason.QUOTA_EXCEEDED: "Usage limit reached. Please upgrade your plan.",
    DenialReason.SUBSCRIPTION_EXPIRED: "Your subscription has expired. Please renew to continue.",
}


def require_entitlement(decision: EntitlementDecision, *, message: str | None = None) -> EntitlementDecision:
    """Ensure the guard allowed the operation before proceeding.

    Parameters
    ----------
    decision:
        The verdict returned by :meth:`EntitlementGuard.check_entitlement`.
    message:
        Optional human-friendly message explaining the failure. If omitted, a
        default message for the denial reason is used.

    Returns the decision unchanged when it allows the operation.
    """

    if decision.allowed:
        return decision

    reason = decision.reason
    assert reason is not None
    raise FeatureGateError(
        code=reason.value,
        message=message or _DENIAL_MESSAGES[reason],
        detail={
            "plan_key": decision.plan_key.value,
            "usage_count": decision.usage.usage_count,
            "usage_limit": decision.usage.usage_limit,
        },
    )

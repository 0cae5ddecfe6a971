"""Feature gating utilities coordinating entitlement enforcement."""
from .enforcement import require_entitlement
from .exceptions import FeatureGateError
from .guard import DenialReason, EntitlementDecision, EntitlementGuard
from .quota import UsageQuotaEvaluation, evaluate_usage_quota

__all__ = [
    "DenialReason",
    "EntitlementDecision",
    "EntitlementGuard",
    "FeatureGateError",
    "UsageQuotaEvaluation",
    "evaluate_usage_quota",
    "require_entitlement",
]

"""Usage quota evaluation utilities for feature gating."""
from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class UsageQuotaEvaluation:
    """Represents the outcome of a usage quota check."""

    usage_count: int
    usage_limit: int
    remaining: int
    percentage: float
    allowed: bool

    def to_dict(self) -> dict[str, float | int | bool]:
        """Serialize the evaluation for logging or telemetry."""

        return {
            "usage_count": self.usage_count,
            "usage_limit": self.usage_limit,
            "remaining": self.remaining,
            "percentage": self.percentage,
            "allowed": self.allowed,
        }


def evaluate_usage_quota(*, usage_count: int, usage_limit: int) -> UsageQuotaEvaluation:
    """Determine whether one more metered operation fits in the quota."""

    usage_count = max(usage_count, 0)
    usage_limit = max(usage_limit, 0)
    percentage = round(usage_count / usage_limit * 100, 2) if usage_limit else 100.0

    return UsageQuotaEvaluation(
        usage_count=usage_count,
        usage_limit=usage_limit,
        remaining=max(usage_limit - usage_count, 0),
        percentage=percentage,
        allowed=usage_count < usage_limit,
    )

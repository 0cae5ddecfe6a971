"""Domain models for plans and entitlement computation."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple


class PlanKey(str, Enum):
    """Canonical identifiers for subscription plans."""

    FREE = "free"
    BASIC = "basic"
    PREMIUM = "premium"

    @property
    def is_paid(self) -> bool:
        return self is not PlanKey.FREE


@dataclass(frozen=True)
class PlanDefinition:
    """Describes a subscription plan, its price and its usage quota."""

    key: PlanKey
    display_name: str
    price_minor_units: int
    usage_quota: int
    duration_days: Optional[int] = None
    currency: str = "USD"
    features: Tuple[str, ...] = ()

    @property
    def is_paid(self) -> bool:
        return self.price_minor_units > 0

    @property
    def price_display(self) -> str:
        """Format the price as a decimal string accepted by payment providers."""

        whole, cents = divmod(self.price_minor_units, 100)
        return f"{whole}.{cents:02d}"

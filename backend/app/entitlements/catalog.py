"""Static catalog definitions for subscription plans."""
from __future__ import annotations

from typing import Dict, List, Optional, Union

from .models import PlanDefinition, PlanKey

SUBSCRIPTION_PERIOD_DAYS = 30

PLAN_CATALOG: Dict[PlanKey, PlanDefinition] = {
    PlanKey.FREE: PlanDefinition(
        key=PlanKey.FREE,
        display_name="Free",
        price_minor_units=0,
        usage_quota=5,
        features=(
            "5 AI generations per month",
            "Basic content types",
            "Standard quality",
            "No download options",
        ),
    ),
    PlanKey.BASIC: PlanDefinition(
        key=PlanKey.BASIC,
        display_name="Basic",
        price_minor_units=999,
        usage_quota=50,
        duration_days=SUBSCRIPTION_PERIOD_DAYS,
        features=(
            "50 AI generations per month",
            "All content types",
            "High quality content",
            "Download as PDF and Markdown",
        ),
    ),
    PlanKey.PREMIUM: PlanDefinition(
        key=PlanKey.PREMIUM,
        display_name="Premium",
        price_minor_units=1999,
        # Effectively unlimited.
        usage_quota=9999,
        duration_days=SUBSCRIPTION_PERIOD_DAYS,
        features=(
            "Unlimited AI generations",
            "All content types",
            "Highest quality content",
            "All download options",
            "Priority support",
        ),
    ),
}

FREE_PLAN = PLAN_CATALOG[PlanKey.FREE]


def get_plan_definition(plan_key: PlanKey) -> PlanDefinition:
    """Return a plan definition, raising if unsupported."""

    try:
        return PLAN_CATALOG[plan_key]
    except KeyError as exc:  # pragma: no cover - guarded by static catalog
        raise KeyError(f"Unknown plan key: {plan_key}") from exc


def find_plan(raw_plan_id: Union[PlanKey, str, None]) -> Optional[PlanDefinition]:
    """Look up a plan by its public identifier, returning ``None`` when unknown."""

    if isinstance(raw_plan_id, PlanKey):
        return PLAN_CATALOG.get(raw_plan_id)
    if not raw_plan_id:
        return None
    try:
        plan_key = PlanKey(str(raw_plan_id).strip().lower())
    except ValueError:
        return None
    return PLAN_CATALOG.get(plan_key)


def list_plans() -> List[PlanDefinition]:
    return list(PLAN_CATALOG.values())


def purchasable_plans() -> List[PlanDefinition]:
    return [plan for plan in PLAN_CATALOG.values() if plan.is_paid]

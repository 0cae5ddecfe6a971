"""Plan catalog and plan-level entitlement definitions."""

from .catalog import (
    FREE_PLAN,
    PLAN_CATALOG,
    SUBSCRIPTION_PERIOD_DAYS,
    find_plan,
    get_plan_definition,
    list_plans,
    purchasable_plans,
)
from .models import PlanDefinition, PlanKey

__all__ = [
    "FREE_PLAN",
    "PLAN_CATALOG",
    "SUBSCRIPTION_PERIOD_DAYS",
    "PlanDefinition",
    "PlanKey",
    "find_plan",
    "get_plan_definition",
    "list_plans",
    "purchasable_plans",
]

"""Plan resolution rules applied at billing boundaries."""
from __future__ import annotations

from typing import Optional, Union

from ..entitlements.catalog import find_plan, get_plan_definition
from ..entitlements.models import PlanDefinition, PlanKey
from .exceptions import ValidationError

WEBHOOK_FALLBACK_PLAN = PlanKey.BASIC


def resolve_purchasable_plan(plan_id: Union[PlanKey, str, None]) -> PlanDefinition:
    """Return the paid plan for ``plan_id`` or raise :class:`ValidationError`."""

    raw = plan_id.value if isinstance(plan_id, PlanKey) else plan_id
    plan = find_plan(raw)
    if plan is None:
        raise ValidationError(
            code="invalid_plan",
            message="Invalid plan selected.",
            detail={"plan_id": str(raw)},
        )
    if not plan.is_paid:
        raise ValidationError(
            code="invalid_plan",
            message="The free plan cannot be purchased.",
            detail={"plan_id": plan.key.value},
        )
    return plan


def resolve_webhook_plan(plan_id: Optional[str]) -> PlanDefinition:
    """Webhook payloads do not always carry a plan, so unknown ids fall back to basic."""

    plan = find_plan(plan_id)
    if plan is None or not plan.is_paid:
        return get_plan_definition(WEBHOOK_FALLBACK_PLAN)
    return plan


__all__ = ["WEBHOOK_FALLBACK_PLAN", "resolve_purchasable_plan", "resolve_webhook_plan"]

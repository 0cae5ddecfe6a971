"""API schemas for billing endpoints."""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from ..billing import CaptureOutcome, StartUpgradeResult, SubscriptionView, WebhookResult
from ..entitlements.models import PlanDefinition, PlanKey


class PlanResponse(BaseModel):
    id: PlanKey
    name: str
    price: int = Field(description="Price in minor currency units")
    price_display: str = Field(alias="priceDisplay")
    currency: str
    usage_limit: int = Field(alias="usageLimit")
    duration_days: Optional[int] = Field(alias="durationDays", default=None)
    features: list[str] = Field(default_factory=list)

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_plan(cls, plan: PlanDefinition) -> "PlanResponse":
        return cls(
            id=plan.key,
            name=plan.display_name,
            price=plan.price_minor_units,
            price_display=plan.price_display,
            currency=plan.currency,
            usage_limit=plan.usage_quota,
            duration_days=plan.duration_days,
            features=list(plan.features),
        )


class PlanListResponse(BaseModel):
    plans: list[PlanResponse]

    model_config = ConfigDict(populate_by_name=True)


class StartUpgradeRequest(BaseModel):
    plan_id: str = Field(alias="planId", min_length=1)

    model_config = ConfigDict(populate_by_name=True)


class StartUpgradeResponse(BaseModel):
    order_id: str = Field(alias="orderId")
    approval_link: Optional[str] = Field(alias="approvalLink", default=None)
    plan_id: PlanKey = Field(alias="planId")

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_result(cls, result: StartUpgradeResult) -> "StartUpgradeResponse":
        return cls(order_id=result.order_id, approval_link=result.approval_link, plan_id=result.plan_key)


class ConfirmCaptureRequest(BaseModel):
    order_id: str = Field(alias="orderId", min_length=1)

    model_config = ConfigDict(populate_by_name=True)


class ConfirmCaptureResponse(BaseModel):
    success: bool = True
    order_id: str = Field(alias="orderId")
    status: str
    plan_id: PlanKey = Field(alias="planId")
    already_applied: bool = Field(alias="alreadyApplied", default=False)

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_outcome(cls, outcome: CaptureOutcome) -> "ConfirmCaptureResponse":
        return cls(
            order_id=outcome.order_id,
            status=outcome.status,
            plan_id=outcome.plan_key,
            already_applied=outcome.already_applied,
        )


class SubscriptionViewResponse(BaseModel):
    status: PlanKey
    plan_id: PlanKey = Field(alias="planId")
    start_date: Optional[datetime] = Field(alias="startDate", default=None)
    end_date: Optional[datetime] = Field(alias="endDate", default=None)
    is_active: bool = Field(alias="isActive")
    days_remaining: Optional[int] = Field(alias="daysRemaining", default=None)
    usage_count: int = Field(alias="usageCount")
    usage_limit: int = Field(alias="usageLimit")
    usage_percentage: float = Field(alias="usagePercentage")
    pending_order_id: Optional[str] = Field(alias="pendingOrderId", default=None)

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_view(cls, view: SubscriptionView) -> "SubscriptionViewResponse":
        return cls(
            status=view.status,
            plan_id=view.plan_key,
            start_date=view.start_date,
            end_date=view.end_date,
            is_active=view.is_active,
            days_remaining=view.days_remaining,
            usage_count=view.usage_count,
            usage_limit=view.usage_limit,
            usage_percentage=view.usage_percentage,
            pending_order_id=view.pending_order_id,
        )


class WebhookResponse(BaseModel):
    received: bool
    outcome: str
    event_id: Optional[str] = Field(alias="eventId", default=None)

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_result(cls, result: WebhookResult) -> "WebhookResponse":
        return cls(
            received=result.outcome.value != "rejected",
            outcome=result.outcome.value,
            event_id=result.event_id or None,
        )

"""Domain models for the billing system."""
from __future__ import annotations

import math
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from ..entitlements.catalog import FREE_PLAN
from ..entitlements.models import PlanDefinition, PlanKey


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SubscriptionPhase(str, Enum):
    """Tagged lifecycle state derived from a billing account."""

    FREE = "free"
    PENDING_PAYMENT = "pending_payment"
    ACTIVE = "active"
    EXPIRED = "expired"


class Subscription(BaseModel):
    """Subscription state embedded in a user's billing account.

    Instances are immutable; every transition builds a new value and the store
    replaces the previous one in a single write.
    """

    status: PlanKey = PlanKey.FREE
    plan_key: PlanKey = PlanKey.FREE
    customer_id: Optional[str] = Field(default=None, description="Payer id assigned by the payment provider")
    order_id: Optional[str] = Field(default=None, description="Order whose payment activated the plan")
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    last_payment_at: Optional[datetime] = None
    last_payment_amount: Optional[int] = Field(default=None, ge=0)

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @model_validator(mode="after")
    def _free_plan_never_expires(self) -> "Subscription":
        if self.status == PlanKey.FREE and self.end_date is not None:
            raise ValueError("free subscriptions cannot carry an end_date")
        return self

    @classmethod
    def activated(
        cls,
        plan: PlanDefinition,
        *,
        now: datetime,
        order_id: str,
        customer_id: Optional[str],
    ) -> "Subscription":
        """Build the state of a freshly paid subscription period."""

        end_date = now + timedelta(days=plan.duration_days) if plan.duration_days else None
        return cls(
            status=plan.key,
            plan_key=plan.key,
            customer_id=customer_id,
            order_id=order_id,
            start_date=now,
            end_date=end_date,
            last_payment_at=now,
            last_payment_amount=plan.price_minor_units,
        )

    def reverted(self) -> "Subscription":
        """Return the free state, keeping the payer and payment history."""

        return Subscription(
            customer_id=self.customer_id,
            last_payment_at=self.last_payment_at,
            last_payment_amount=self.last_payment_amount,
        )

    def is_paid(self) -> bool:
        return self.status != PlanKey.FREE

    def is_active(self, now: datetime) -> bool:
        if not self.is_paid():
            return False
        return self.end_date is None or self.end_date > now

    def is_stale(self, now: datetime) -> bool:
        """Paid subscriptions whose period ended must be downgraded on next read."""

        return self.is_paid() and self.end_date is not None and self.end_date < now

    def days_remaining(self, now: datetime) -> Optional[int]:
        if self.end_date is None:
            return None
        remaining = (self.end_date - now).total_seconds() / 86400
        return max(0, math.ceil(remaining))


class PendingPayment(BaseModel):
    """Order created with the provider and awaiting capture or webhook."""

    order_id: str = Field(min_length=1)
    plan_key: str = Field(description="Plan id as requested; validated again when applied")
    created_at: datetime = Field(default_factory=_utcnow)

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class UsageCounter(BaseModel):
    """Metered generation usage for the current plan."""

    usage_count: int = Field(default=0, ge=0)
    usage_limit: int = Field(default=FREE_PLAN.usage_quota, ge=0)

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @property
    def is_exhausted(self) -> bool:
        return self.usage_count >= self.usage_limit

    @property
    def percentage(self) -> float:
        if self.usage_limit <= 0:
            return 100.0
        return round(self.usage_count / self.usage_limit * 100, 2)


class BillingAccount(BaseModel):
    """Per-user billing record; the single source of truth for entitlement."""

    account_id: str
    subscription: Subscription = Field(default_factory=Subscription)
    pending: Optional[PendingPayment] = None
    usage: UsageCounter = Field(default_factory=UsageCounter)
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    def phase(self, now: datetime) -> SubscriptionPhase:
        if self.subscription.is_stale(now):
            return SubscriptionPhase.EXPIRED
        if self.pending is not None:
            return SubscriptionPhase.PENDING_PAYMENT
        if self.subscription.is_paid():
            return SubscriptionPhase.ACTIVE
        return SubscriptionPhase.FREE


class AccountPatch(BaseModel):
    """A complete state transition applied to an account in one atomic write."""

    subscription: Optional[Subscription] = None
    pending: Optional[PendingPayment] = None
    clear_pending: bool = False
    usage_limit: Optional[int] = Field(default=None, ge=0)
    reset_usage: bool = False

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @model_validator(mode="after")
    def _pending_is_set_or_cleared(self) -> "AccountPatch":
        if self.pending is not None and self.clear_pending:
            raise ValueError("a patch cannot both set and clear the pending payment")
        return self

    def apply(self, account: BillingAccount, *, now: datetime) -> BillingAccount:
        """Return ``account`` with this patch applied, mirroring the store's semantics."""

        update: Dict[str, object] = {"updated_at": now}
        if self.subscription is not None:
            update["subscription"] = self.subscription
        if self.clear_pending:
            update["pending"] = None
        elif self.pending is not None:
            update["pending"] = self.pending
        usage = account.usage
        if self.usage_limit is not None:
            usage = usage.model_copy(update={"usage_limit": self.usage_limit})
        if self.reset_usage:
            usage = usage.model_copy(update={"usage_count": 0})
        update["usage"] = usage
        return account.model_copy(update=update)


class Order(BaseModel):
    """Provider-side order created for a plan purchase."""

    order_id: str
    status: str
    approval_link: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class CaptureResult(BaseModel):
    """Outcome of finalizing an approved order."""

    order_id: str
    status: str
    payer_id: Optional[str] = None
    reference_id: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @property
    def is_completed(self) -> bool:
        return self.status.upper() == "COMPLETED"


class OrderDetails(BaseModel):
    """Read-only snapshot of an order used for reconciliation audits."""

    order_id: str
    status: str
    payer_id: Optional[str] = None
    reference_id: Optional[str] = None
    amount: Optional[str] = None
    currency: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class StartUpgradeResult(BaseModel):
    """Returned to the client so it can redirect the payer for approval."""

    order_id: str
    approval_link: Optional[str] = None
    plan_key: PlanKey

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class CaptureOutcome(BaseModel):
    """Result of confirming a captured payment."""

    order_id: str
    status: str
    plan_key: PlanKey
    already_applied: bool = False

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class SubscriptionView(BaseModel):
    """Dashboard representation of an account's subscription and usage."""

    status: PlanKey
    plan_key: PlanKey
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    is_active: bool
    days_remaining: Optional[int] = None
    usage_count: int
    usage_limit: int
    usage_percentage: float
    pending_order_id: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @classmethod
    def from_account(cls, account: BillingAccount, *, now: datetime) -> "SubscriptionView":
        subscription = account.subscription
        return cls(
            status=subscription.status,
            plan_key=subscription.plan_key,
            start_date=subscription.start_date,
            end_date=subscription.end_date,
            is_active=subscription.is_active(now),
            days_remaining=subscription.days_remaining(now),
            usage_count=account.usage.usage_count,
            usage_limit=account.usage.usage_limit,
            usage_percentage=account.usage.percentage,
            pending_order_id=account.pending.order_id if account.pending else None,
        )


class BillingAuditEventType(str, Enum):
    """Audit event categories emitted by the billing subsystem."""

    ORDER_CREATED = "order_created"
    ORDER_CANCELED = "order_canceled"
    SUBSCRIPTION_ACTIVATED = "subscription_activated"
    SUBSCRIPTION_REVERTED = "subscription_reverted"
    SUBSCRIPTION_EXPIRED = "subscription_expired"
    WEBHOOK_REJECTED = "webhook_rejected"
    WEBHOOK_IGNORED = "webhook_ignored"


class BillingAuditEvent(BaseModel):
    """Structured audit event for analytics and notifications."""

    event_type: BillingAuditEventType
    account_id: Optional[str] = None
    order_id: Optional[str] = None
    metadata: Dict[str, str] = Field(default_factory=dict)
    occurred_at: datetime = Field(default_factory=_utcnow)

    model_config = ConfigDict(populate_by_name=True, frozen=True)

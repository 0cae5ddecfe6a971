"""Subscription reconciler coordinating checkout, capture and webhook flows."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, List, Mapping, Optional, Protocol, Tuple, Union

from ..entitlements.catalog import FREE_PLAN, list_plans
from ..entitlements.models import PlanDefinition, PlanKey
from .exceptions import AccountNotFoundError, PaymentNotCompleted, StateConflict, ValidationError
from .gateway import PaymentGateway
from .models import (
    AccountPatch,
    BillingAccount,
    BillingAuditEvent,
    BillingAuditEventType,
    CaptureOutcome,
    OrderDetails,
    PendingPayment,
    StartUpgradeResult,
    Subscription,
    SubscriptionView,
    UsageCounter,
)
from .plans import resolve_purchasable_plan, resolve_webhook_plan
from .webhooks import (
    WebhookEvent,
    WebhookEventKind,
    WebhookOutcome,
    WebhookResult,
    decode_webhook_body,
)

logger = logging.getLogger(__name__)


class AccountRepository(Protocol):
    """Persistence operations required by the reconciler.

    Implementations must apply each :class:`AccountPatch` atomically and honour
    ``expected_status`` as a compare-and-set guard on the subscription status.
    """

    def create_account(self, account_id: str) -> BillingAccount:
        ...

    def get_account(self, account_id: str) -> Optional[BillingAccount]:
        ...

    def find_account_by_order(self, order_id: str) -> Optional[BillingAccount]:
        ...

    def update_account(
        self,
        account_id: str,
        patch: AccountPatch,
        *,
        expected_status: Optional[PlanKey] = None,
    ) -> Optional[BillingAccount]:
        ...

    def increment_usage(self, account_id: str) -> Optional[BillingAccount]:
        ...


class BillingEventLogger(Protocol):
    """Captures structured billing audit events."""

    def log(self, event: BillingAuditEvent) -> None:
        ...


WebhookHandler = Callable[[WebhookEvent], WebhookResult]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class SubscriptionReconciler:
    """Drives the subscription state machine.

    Capture callbacks and provider webhooks are two delivery paths for the same
    payment, so every transition is idempotent: applying an order that is
    already active on the account is a no-op. State is only written after the
    provider has confirmed, never before.
    """

    repository: AccountRepository
    gateway: PaymentGateway
    event_logger: BillingEventLogger
    clock: Callable[[], datetime] = field(default=_utcnow)

    def list_plans(self) -> List[PlanDefinition]:
        return list_plans()

    def open_account(self, account_id: str) -> BillingAccount:
        """Create the free billing record for a new user, or return the existing one."""

        return self.repository.create_account(account_id)

    def refresh_account(self, account_id: str) -> Tuple[BillingAccount, bool]:
        """Load an account, downgrading it first when its paid period has ended.

        Returns the current account and whether this call performed the downgrade.
        """

        return self._expire_if_stale(self._load(account_id))

    def get_subscription_view(self, account_id: str) -> SubscriptionView:
        account, _ = self.refresh_account(account_id)
        return SubscriptionView.from_account(account, now=self.clock())

    def start_upgrade(self, account_id: str, plan_id: Union[PlanKey, str, None]) -> StartUpgradeResult:
        plan = resolve_purchasable_plan(plan_id)
        account, _ = self.refresh_account(account_id)

        order = self.gateway.create_order(plan.key, account.account_id)

        pending = PendingPayment(order_id=order.order_id, plan_key=plan.key.value, created_at=self.clock())
        updated = self.repository.update_account(account.account_id, AccountPatch(pending=pending))
        if updated is None:
            raise AccountNotFoundError(code="account_not_found", message="Billing account not found.")
        if account.pending is not None:
            logger.info(
                "Replacing pending order %s with %s for account %s",
                account.pending.order_id,
                order.order_id,
                account.account_id,
            )

        self._log_event(
            BillingAuditEventType.ORDER_CREATED,
            account_id=account.account_id,
            order_id=order.order_id,
            plan=plan.key.value,
        )
        return StartUpgradeResult(order_id=order.order_id, approval_link=order.approval_link, plan_key=plan.key)

    def confirm_capture(self, account_id: str, order_id: Optional[str]) -> CaptureOutcome:
        order_id = (order_id or "").strip()
        if not order_id:
            raise ValidationError(code="missing_order_id", message="Order ID is required.")

        account, _ = self.refresh_account(account_id)
        now = self.clock()
        if account.subscription.order_id == order_id and account.subscription.is_active(now):
            return CaptureOutcome(
                order_id=order_id,
                status="COMPLETED",
                plan_key=account.subscription.plan_key,
                already_applied=True,
            )

        pending = account.pending
        if pending is None or pending.order_id != order_id:
            raise StateConflict(
                code="order_mismatch",
                message="Order ID does not match pending order.",
                detail={"order_id": order_id},
            )
        plan = resolve_purchasable_plan(pending.plan_key)

        capture = self.gateway.capture_order(order_id)
        if not capture.is_completed:
            raise PaymentNotCompleted(
                code="payment_not_completed",
                message="Payment not completed.",
                detail={"order_id": order_id, "provider_status": capture.status},
            )

        self._activate(account, plan, order_id=order_id, payer_id=capture.payer_id, source="capture")
        return CaptureOutcome(order_id=order_id, status="COMPLETED", plan_key=plan.key)

    def cancel_upgrade(self, account_id: str) -> BillingAccount:
        """Abandon the pending checkout, if any."""

        account = self._load(account_id)
        if account.pending is None:
            return account
        updated = self.repository.update_account(account.account_id, AccountPatch(clear_pending=True))
        if updated is None:
            raise AccountNotFoundError(code="account_not_found", message="Billing account not found.")
        self._log_event(
            BillingAuditEventType.ORDER_CANCELED,
            account_id=account.account_id,
            order_id=account.pending.order_id,
            reason="user_canceled",
        )
        return updated

    def audit_pending_order(self, account_id: str) -> Optional[OrderDetails]:
        """Read the provider's view of the pending order without changing local state."""

        account = self._load(account_id)
        if account.pending is None:
            return None
        details = self.gateway.fetch_order(account.pending.order_id)
        logger.info(
            "Pending order %s for account %s is %s at the provider",
            details.order_id,
            account.account_id,
            details.status,
        )
        return details

    def record_usage(self, account_id: str) -> UsageCounter:
        """Count one successful gated operation."""

        updated = self.repository.increment_usage(account_id)
        if updated is None:
            raise AccountNotFoundError(code="account_not_found", message="Billing account not found.")
        return updated.usage

    def handle_webhook(self, headers: Mapping[str, str], raw_body: bytes) -> WebhookResult:
        try:
            payload = decode_webhook_body(raw_body)
        except ValueError as exc:
            logger.warning("Rejected webhook with unreadable body: %s", exc)
            self._log_event(BillingAuditEventType.WEBHOOK_REJECTED, reason="unreadable_body")
            return WebhookResult(outcome=WebhookOutcome.REJECTED, reason="unreadable_body")

        event = WebhookEvent.from_payload(payload)
        if not self.gateway.verify_webhook(headers, raw_body):
            logger.warning(
                "Rejected webhook with invalid signature",
                extra={"webhook_event_id": event.event_id, "webhook_event_type": event.event_type},
            )
            self._log_event(
                BillingAuditEventType.WEBHOOK_REJECTED,
                order_id=event.order_id,
                reason="invalid_signature",
                event_id=event.event_id,
            )
            return WebhookResult(
                outcome=WebhookOutcome.REJECTED,
                event_id=event.event_id,
                event_type=event.event_type,
                reason="invalid_signature",
            )

        handler = self._webhook_handlers().get(event.kind) if event.kind is not None else None
        if handler is None:
            logger.info("Unhandled webhook event: %s", event.event_type)
            return self._ignored(event, "unhandled_event_type")
        return handler(event)

    def _webhook_handlers(self) -> Dict[WebhookEventKind, WebhookHandler]:
        return {
            WebhookEventKind.PAYMENT_CAPTURE_COMPLETED: self._on_capture_completed,
            WebhookEventKind.PAYMENT_CAPTURE_DENIED: self._on_capture_reversed,
            WebhookEventKind.PAYMENT_CAPTURE_REFUNDED: self._on_capture_reversed,
            WebhookEventKind.PAYMENT_CAPTURE_REVERSED: self._on_capture_reversed,
        }

    def _on_capture_completed(self, event: WebhookEvent) -> WebhookResult:
        account = self._account_for_event(event)
        if account is None:
            return self._ignored(event, "unknown_order")

        account, _ = self._expire_if_stale(account)
        if account.subscription.order_id == event.order_id:
            logger.info("Payment for order %s already applied to account %s", event.order_id, account.account_id)
            return self._ignored(event, "already_applied", account_id=account.account_id)
        if account.pending is None or account.pending.order_id != event.order_id:
            logger.info("Order %s is no longer pending for account %s", event.order_id, account.account_id)
            return self._ignored(event, "order_not_pending", account_id=account.account_id)

        plan = resolve_webhook_plan(account.pending.plan_key)
        self._activate(
            account,
            plan,
            order_id=account.pending.order_id,
            payer_id=event.payer_id,
            source="webhook",
        )
        logger.info("Payment completed processed for account: %s", account.account_id)
        return WebhookResult(
            outcome=WebhookOutcome.ACCEPTED,
            event_id=event.event_id,
            event_type=event.event_type,
            account_id=account.account_id,
        )

    def _on_capture_reversed(self, event: WebhookEvent) -> WebhookResult:
        account = self._account_for_event(event)
        if account is None:
            return self._ignored(event, "unknown_order")

        subscription = account.subscription
        if subscription.order_id == event.order_id or not subscription.is_paid():
            patch = AccountPatch(
                subscription=subscription.reverted(),
                clear_pending=True,
                usage_limit=FREE_PLAN.usage_quota,
            )
            audit_type = BillingAuditEventType.SUBSCRIPTION_REVERTED
        else:
            # Only a pending upgrade failed; the plan paid by an earlier order stays.
            patch = AccountPatch(clear_pending=True)
            audit_type = BillingAuditEventType.ORDER_CANCELED

        updated = self.repository.update_account(account.account_id, patch)
        if updated is None:
            logger.info("Account %s disappeared before webhook %s was applied", account.account_id, event.event_id)
            return self._ignored(event, "unknown_account")

        self._log_event(
            audit_type,
            account_id=account.account_id,
            order_id=event.order_id,
            reason=event.event_type,
        )
        logger.info("Payment %s processed for account: %s", event.event_type, account.account_id)
        return WebhookResult(
            outcome=WebhookOutcome.ACCEPTED,
            event_id=event.event_id,
            event_type=event.event_type,
            account_id=account.account_id,
        )

    def _account_for_event(self, event: WebhookEvent) -> Optional[BillingAccount]:
        if not event.order_id:
            logger.warning("Webhook %s (%s) carries no order reference", event.event_id, event.event_type)
            return None
        account = self.repository.find_account_by_order(event.order_id)
        if account is None:
            logger.info("No account found with order ID: %s", event.order_id)
        return account

    def _activate(
        self,
        account: BillingAccount,
        plan: PlanDefinition,
        *,
        order_id: str,
        payer_id: Optional[str],
        source: str,
    ) -> BillingAccount:
        subscription = Subscription.activated(
            plan,
            now=self.clock(),
            order_id=order_id,
            customer_id=payer_id or account.subscription.customer_id,
        )
        patch = AccountPatch(
            subscription=subscription,
            clear_pending=True,
            usage_limit=plan.usage_quota,
            reset_usage=True,
        )
        updated = self.repository.update_account(
            account.account_id,
            patch,
            expected_status=account.subscription.status,
        )
        if updated is None:
            current = self._load(account.account_id)
            if current.subscription.order_id == order_id:
                return current
            raise StateConflict(
                code="stale_pending_state",
                message="Subscription changed while the payment was being applied. Please restart checkout.",
                detail={"order_id": order_id},
            )

        self._log_event(
            BillingAuditEventType.SUBSCRIPTION_ACTIVATED,
            account_id=account.account_id,
            order_id=order_id,
            plan=plan.key.value,
            source=source,
        )
        return updated

    def _expire_if_stale(self, account: BillingAccount) -> Tuple[BillingAccount, bool]:
        if not account.subscription.is_stale(self.clock()):
            return account, False

        expired = account.subscription
        patch = AccountPatch(subscription=expired.reverted(), usage_limit=FREE_PLAN.usage_quota)
        updated = self.repository.update_account(account.account_id, patch, expected_status=expired.status)
        if updated is None:
            return self._load(account.account_id), False

        logger.info("Subscription expired for account %s, downgrading to free tier", account.account_id)
        self._log_event(
            BillingAuditEventType.SUBSCRIPTION_EXPIRED,
            account_id=account.account_id,
            order_id=expired.order_id,
            plan=expired.plan_key.value,
        )
        return updated, True

    def _load(self, account_id: str) -> BillingAccount:
        account = self.repository.get_account(account_id)
        if account is None:
            raise AccountNotFoundError(
                code="account_not_found",
                message="Billing account not found.",
                detail={"account_id": account_id},
            )
        return account

    def _ignored(self, event: WebhookEvent, reason: str, *, account_id: Optional[str] = None) -> WebhookResult:
        self._log_event(
            BillingAuditEventType.WEBHOOK_IGNORED,
            account_id=account_id,
            order_id=event.order_id,
            reason=reason,
            webhook_event_type=event.event_type,
        )
        return WebhookResult(
            outcome=WebhookOutcome.IGNORED,
            event_id=event.event_id,
            event_type=event.event_type,
            account_id=account_id,
            reason=reason,
        )

    def _log_event(
        self,
        event_type: BillingAuditEventType,
        *,
        account_id: Optional[str] = None,
        order_id: Optional[str] = None,
        **metadata: str,
    ) -> None:
        self.event_logger.log(
            BillingAuditEvent(
                event_type=event_type,
                account_id=account_id,
                order_id=order_id,
                metadata={key: str(value) for key, value in metadata.items() if value is not None},
                occurred_at=self.clock(),
            )
        )


__all__ = [
    "AccountRepository",
    "BillingEventLogger",
    "PaymentGateway",
    "SubscriptionReconciler",
]

"""Unit tests for the subscription reconciler."""
from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from typing import Dict, Mapping, Optional, Union

import pytest

from backend.app.billing import (
    AccountNotFoundError,
    AccountPatch,
    BillingAccount,
    BillingAuditEvent,
    BillingAuditEventType,
    CaptureResult,
    Order,
    OrderDetails,
    PaymentNotCompleted,
    PendingPayment,
    StateConflict,
    Subscription,
    SubscriptionPhase,
    SubscriptionReconciler,
    ValidationError,
    WebhookEventKind,
    WebhookOutcome,
)
from backend.app.billing.sandbox import SANDBOX_ORDER_PREFIX, SandboxGateway, sign_sandbox_webhook
from backend.app.billing.service import AccountRepository, BillingEventLogger, PaymentGateway
from backend.app.entitlements.catalog import get_plan_definition
from backend.app.entitlements.models import PlanKey


class FakeClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


def _owns_order(account: BillingAccount, order_id: str) -> bool:
    pending = account.pending
    return account.subscription.order_id == order_id or (pending is not None and pending.order_id == order_id)


class InMemoryAccountRepository(AccountRepository):
    def __init__(self, clock: FakeClock) -> None:
        self.accounts: Dict[str, BillingAccount] = {}
        self.clock = clock

    def create_account(self, account_id: str) -> BillingAccount:
        if account_id not in self.accounts:
            now = self.clock()
            self.accounts[account_id] = BillingAccount(account_id=account_id, created_at=now, updated_at=now)
        return self.accounts[account_id]

    def get_account(self, account_id: str) -> Optional[BillingAccount]:
        return self.accounts.get(account_id)

    def find_account_by_order(self, order_id: str) -> Optional[BillingAccount]:
        for account in self.accounts.values():
            if _owns_order(account, order_id):
                return account
        return None

    def update_account(
        self,
        account_id: str,
        patch: AccountPatch,
        *,
        expected_status: Optional[PlanKey] = None,
    ) -> Optional[BillingAccount]:
        account = self.accounts.get(account_id)
        if account is None:
            return None
        if expected_status is not None and account.subscription.status != expected_status:
            return None
        updated = patch.apply(account, now=self.clock())
        self.accounts[account_id] = updated
        return updated

    def increment_usage(self, account_id: str) -> Optional[BillingAccount]:
        account = self.accounts.get(account_id)
        if account is None:
            return None
        usage = account.usage.model_copy(update={"usage_count": account.usage.usage_count + 1})
        updated = account.model_copy(update={"usage": usage})
        self.accounts[account_id] = updated
        return updated


class FakePaymentGateway(PaymentGateway):
    name = "fake"

    def __init__(self) -> None:
        self.created: list[tuple[str, str]] = []
        self.captured: list[str] = []
        self.fetched: list[str] = []
        self.capture_status = "COMPLETED"
        self.accept_webhooks = True

    def create_order(self, plan_key: Union[PlanKey, str], account_id: str) -> Order:
        order_id = f"ORDER-{len(self.created) + 1}"
        self.created.append((PlanKey(plan_key).value, account_id))
        return Order(order_id=order_id, status="CREATED", approval_link=f"https://provider.test/approve/{order_id}")

    def capture_order(self, order_id: str) -> CaptureResult:
        self.captured.append(order_id)
        return CaptureResult(order_id=order_id, status=self.capture_status, payer_id="PAYER-1")

    def fetch_order(self, order_id: str) -> OrderDetails:
        self.fetched.append(order_id)
        return OrderDetails(order_id=order_id, status="APPROVED", amount="9.99", currency="USD")

    def verify_webhook(self, headers: Mapping[str, str], raw_body: bytes) -> bool:
        return self.accept_webhooks


class FakeEventLogger(BillingEventLogger):
    def __init__(self) -> None:
        self.events: list[BillingAuditEvent] = []

    def log(self, event: BillingAuditEvent) -> None:
        self.events.append(event)

    def types(self) -> list[BillingAuditEventType]:
        return [event.event_type for event in self.events]


def _webhook_body(event_type: str, order_id: Optional[str], *, event_id: str = "WH-1") -> bytes:
    resource: Dict[str, object] = {"id": "CAPTURE-1", "payer": {"payer_id": "PAYER-WEBHOOK"}}
    if order_id is not None:
        resource["supplementary_data"] = {"related_ids": {"order_id": order_id}}
    return json.dumps({"id": event_id, "event_type": event_type, "resource": resource}).encode("utf-8")


@pytest.fixture
def billing_components():
    clock = FakeClock(datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc))
    repository = InMemoryAccountRepository(clock)
    gateway = FakePaymentGateway()
    event_logger = FakeEventLogger()
    service = SubscriptionReconciler(
        repository=repository,
        gateway=gateway,
        event_logger=event_logger,
        clock=clock,
    )
    service.open_account("user-1")
    return repository, gateway, event_logger, clock, service


def _activate(service: SubscriptionReconciler, plan: str = "basic", account_id: str = "user-1") -> str:
    result = service.start_upgrade(account_id, plan)
    service.confirm_capture(account_id, result.order_id)
    return result.order_id


def test_open_account_creates_free_record_once(billing_components):
    repository, _, _, clock, service = billing_components

    account = service.open_account("user-1")

    assert account.subscription.status == PlanKey.FREE
    assert account.usage.usage_count == 0
    assert account.usage.usage_limit == 5
    assert account.phase(clock()) == SubscriptionPhase.FREE
    assert list(repository.accounts) == ["user-1"]


def test_list_plans_reads_catalog(billing_components):
    *_, service = billing_components

    plans = {plan.key: plan for plan in service.list_plans()}

    assert set(plans) == {PlanKey.FREE, PlanKey.BASIC, PlanKey.PREMIUM}
    assert plans[PlanKey.BASIC].price_minor_units == 999
    assert plans[PlanKey.PREMIUM].usage_quota == 9999


def test_start_upgrade_stages_pending_order(billing_components):
    repository, gateway, event_logger, clock, service = billing_components

    result = service.start_upgrade("user-1", "basic")

    account = repository.accounts["user-1"]
    assert result.order_id == "ORDER-1"
    assert result.approval_link == "https://provider.test/approve/ORDER-1"
    assert result.plan_key == PlanKey.BASIC
    assert gateway.created == [("basic", "user-1")]
    assert account.pending is not None
    assert account.pending.order_id == "ORDER-1"
    assert account.pending.plan_key == "basic"
    assert account.subscription.status == PlanKey.FREE
    assert account.phase(clock()) == SubscriptionPhase.PENDING_PAYMENT
    assert event_logger.types() == [BillingAuditEventType.ORDER_CREATED]


def test_start_upgrade_overwrites_previous_pending_order(billing_components):
    repository, _, _, _, service = billing_components

    service.start_upgrade("user-1", "basic")
    service.start_upgrade("user-1", "premium")

    pending = repository.accounts["user-1"].pending
    assert pending is not None
    assert pending.order_id == "ORDER-2"
    assert pending.plan_key == "premium"


@pytest.mark.parametrize("plan_id", ["free", "enterprise", "", None])
def test_start_upgrade_rejects_unpurchasable_plans(billing_components, plan_id):
    repository, gateway, _, _, service = billing_components

    with pytest.raises(ValidationError) as exc:
        service.start_upgrade("user-1", plan_id)

    assert exc.value.code == "invalid_plan"
    assert exc.value.status_code == 400
    assert gateway.created == []
    assert repository.accounts["user-1"].pending is None


def test_start_upgrade_requires_existing_account(billing_components):
    _, gateway, _, _, service = billing_components

    with pytest.raises(AccountNotFoundError):
        service.start_upgrade("ghost", "basic")

    assert gateway.created == []


def test_confirm_capture_activates_plan_in_one_transition(billing_components):
    repository, gateway, event_logger, clock, service = billing_components
    for _ in range(3):
        service.record_usage("user-1")
    result = service.start_upgrade("user-1", "basic")

    outcome = service.confirm_capture("user-1", result.order_id)

    account = repository.accounts["user-1"]
    subscription = account.subscription
    assert outcome.status == "COMPLETED"
    assert outcome.plan_key == PlanKey.BASIC
    assert outcome.already_applied is False
    assert gateway.captured == ["ORDER-1"]
    assert subscription.status == PlanKey.BASIC
    assert subscription.order_id == "ORDER-1"
    assert subscription.customer_id == "PAYER-1"
    assert subscription.start_date == clock()
    assert subscription.end_date == clock() + timedelta(days=30)
    assert subscription.last_payment_amount == 999
    assert account.pending is None
    assert account.usage.usage_count == 0
    assert account.usage.usage_limit == 50
    assert account.phase(clock()) == SubscriptionPhase.ACTIVE
    assert event_logger.types()[-1] == BillingAuditEventType.SUBSCRIPTION_ACTIVATED


def test_confirm_capture_is_idempotent(billing_components):
    repository, gateway, _, clock, service = billing_components
    order_id = _activate(service)
    service.record_usage("user-1")
    first = repository.accounts["user-1"].subscription
    clock.advance(days=2)

    outcome = service.confirm_capture("user-1", order_id)

    subscription = repository.accounts["user-1"].subscription
    assert outcome.already_applied is True
    assert outcome.plan_key == PlanKey.BASIC
    assert gateway.captured == [order_id]
    assert repository.accounts["user-1"].usage.usage_count == 1
    assert subscription.start_date == first.start_date
    assert subscription.end_date == first.end_date


def _stage_pending(repository: InMemoryAccountRepository, order_id: str, plan_key: str) -> None:
    account = repository.accounts["user-1"]
    repository.accounts["user-1"] = account.model_copy(
        update={"pending": PendingPayment(order_id=order_id, plan_key=plan_key, created_at=repository.clock())}
    )


def test_confirm_capture_rejects_unknown_pending_plan(billing_components):
    repository, gateway, event_logger, _, service = billing_components
    _stage_pending(repository, "ORDER-GOLD", "gold")
    before = repository.accounts["user-1"]

    with pytest.raises(ValidationError) as exc:
        service.confirm_capture("user-1", "ORDER-GOLD")

    assert exc.value.code == "invalid_plan"
    assert gateway.captured == []
    assert repository.accounts["user-1"] == before
    assert BillingAuditEventType.SUBSCRIPTION_ACTIVATED not in event_logger.types()


def test_webhook_completion_falls_back_to_basic_for_unknown_plan(billing_components):
    repository, _, _, _, service = billing_components
    _stage_pending(repository, "ORDER-GOLD", "gold")

    webhook = service.handle_webhook({}, _webhook_body("PAYMENT.CAPTURE.COMPLETED", "ORDER-GOLD"))

    account = repository.accounts["user-1"]
    assert webhook.outcome == WebhookOutcome.ACCEPTED
    assert account.subscription.status == PlanKey.BASIC
    assert account.subscription.order_id == "ORDER-GOLD"
    assert account.usage.usage_limit == 50
    assert account.pending is None


def test_confirm_capture_rejects_foreign_order(billing_components):
    repository, gateway, _, _, service = billing_components
    service.start_upgrade("user-1", "basic")
    before = repository.accounts["user-1"]

    with pytest.raises(StateConflict) as exc:
        service.confirm_capture("user-1", "ORDER-OTHER")

    assert exc.value.code == "order_mismatch"
    assert exc.value.status_code == 400
    assert gateway.captured == []
    assert repository.accounts["user-1"] == before


def test_confirm_capture_without_pending_order_conflicts(billing_components):
    *_, service = billing_components

    with pytest.raises(StateConflict):
        service.confirm_capture("user-1", "ORDER-1")


@pytest.mark.parametrize("order_id", ["", "   ", None])
def test_confirm_capture_requires_order_id(billing_components, order_id):
    *_, service = billing_components

    with pytest.raises(ValidationError) as exc:
        service.confirm_capture("user-1", order_id)

    assert exc.value.code == "missing_order_id"


def test_confirm_capture_leaves_state_when_payment_incomplete(billing_components):
    repository, gateway, _, _, service = billing_components
    result = service.start_upgrade("user-1", "premium")
    gateway.capture_status = "PAYER_ACTION_REQUIRED"

    with pytest.raises(PaymentNotCompleted) as exc:
        service.confirm_capture("user-1", result.order_id)

    account = repository.accounts["user-1"]
    assert exc.value.payload["provider_status"] == "PAYER_ACTION_REQUIRED"
    assert account.subscription.status == PlanKey.FREE
    assert account.pending is not None
    assert account.pending.order_id == result.order_id


def test_expired_subscription_is_downgraded_on_read(billing_components):
    repository, _, event_logger, clock, service = billing_components
    _activate(service)
    for _ in range(3):
        service.record_usage("user-1")
    clock.advance(days=31)
    assert repository.accounts["user-1"].phase(clock()) == SubscriptionPhase.EXPIRED

    view = service.get_subscription_view("user-1")

    account = repository.accounts["user-1"]
    assert view.status == PlanKey.FREE
    assert view.is_active is False
    assert view.end_date is None
    assert view.usage_limit == 5
    assert view.usage_count == 3
    assert view.usage_percentage == 60.0
    assert account.subscription.customer_id == "PAYER-1"
    assert account.subscription.last_payment_amount == 999
    assert event_logger.types()[-1] == BillingAuditEventType.SUBSCRIPTION_EXPIRED

    _, expired_again = service.refresh_account("user-1")
    assert expired_again is False


def test_subscription_view_reports_remaining_days(billing_components):
    _, _, _, clock, service = billing_components
    _activate(service, "premium")
    clock.advance(days=10, hours=1)

    view = service.get_subscription_view("user-1")

    assert view.status == PlanKey.PREMIUM
    assert view.is_active is True
    assert view.days_remaining == 20
    assert view.usage_limit == 9999
    assert view.pending_order_id is None


def test_cancel_upgrade_clears_pending_order(billing_components):
    repository, _, event_logger, _, service = billing_components
    service.start_upgrade("user-1", "basic")

    account = service.cancel_upgrade("user-1")

    assert account.pending is None
    assert repository.accounts["user-1"].pending is None
    assert event_logger.types()[-1] == BillingAuditEventType.ORDER_CANCELED
    assert service.cancel_upgrade("user-1").pending is None


def test_audit_pending_order_reads_provider_state(billing_components):
    repository, gateway, _, _, service = billing_components
    assert service.audit_pending_order("user-1") is None

    result = service.start_upgrade("user-1", "basic")
    before = repository.accounts["user-1"]
    details = service.audit_pending_order("user-1")

    assert details is not None
    assert details.order_id == result.order_id
    assert details.status == "APPROVED"
    assert gateway.fetched == [result.order_id]
    assert repository.accounts["user-1"] == before


def test_record_usage_increments_counter(billing_components):
    *_, service = billing_components

    service.record_usage("user-1")
    usage = service.record_usage("user-1")

    assert usage.usage_count == 2
    assert usage.usage_limit == 5

    with pytest.raises(AccountNotFoundError):
        service.record_usage("ghost")


def test_webhook_completion_applies_pending_order(billing_components):
    repository, gateway, event_logger, _, service = billing_components
    result = service.start_upgrade("user-1", "premium")

    webhook = service.handle_webhook({}, _webhook_body("PAYMENT.CAPTURE.COMPLETED", result.order_id))

    account = repository.accounts["user-1"]
    assert webhook.outcome == WebhookOutcome.ACCEPTED
    assert webhook.http_status == 200
    assert webhook.account_id == "user-1"
    assert account.subscription.status == PlanKey.PREMIUM
    assert account.subscription.customer_id == "PAYER-WEBHOOK"
    assert account.usage.usage_limit == 9999
    assert account.pending is None
    assert BillingAuditEventType.SUBSCRIPTION_ACTIVATED in event_logger.types()

    # The capture callback arriving afterwards is a no-op.
    outcome = service.confirm_capture("user-1", result.order_id)
    assert outcome.already_applied is True
    assert gateway.captured == []


def test_webhook_completion_after_capture_is_ignored(billing_components):
    repository, _, event_logger, _, service = billing_components
    order_id = _activate(service)
    service.record_usage("user-1")
    before = repository.accounts["user-1"]

    webhook = service.handle_webhook({}, _webhook_body("PAYMENT.CAPTURE.COMPLETED", order_id))

    ignored = event_logger.events[-1]
    assert webhook.outcome == WebhookOutcome.IGNORED
    assert webhook.http_status == 200
    assert webhook.reason == "already_applied"
    assert repository.accounts["user-1"] == before
    assert ignored.event_type == BillingAuditEventType.WEBHOOK_IGNORED
    assert ignored.account_id == "user-1"
    assert ignored.order_id == order_id
    assert ignored.metadata == {
        "reason": "already_applied",
        "webhook_event_type": "PAYMENT.CAPTURE.COMPLETED",
    }


def test_webhook_with_invalid_signature_is_rejected(billing_components):
    repository, gateway, event_logger, _, service = billing_components
    result = service.start_upgrade("user-1", "basic")
    gateway.accept_webhooks = False
    before = repository.accounts["user-1"]

    webhook = service.handle_webhook({}, _webhook_body("PAYMENT.CAPTURE.COMPLETED", result.order_id))

    assert webhook.outcome == WebhookOutcome.REJECTED
    assert webhook.http_status == 401
    assert webhook.reason == "invalid_signature"
    assert repository.accounts["user-1"] == before
    assert event_logger.types()[-1] == BillingAuditEventType.WEBHOOK_REJECTED


def test_webhook_with_unreadable_body_is_rejected(billing_components):
    *_, service = billing_components

    webhook = service.handle_webhook({}, b"not json")

    assert webhook.outcome == WebhookOutcome.REJECTED
    assert webhook.reason == "unreadable_body"


def test_unhandled_webhook_event_is_ignored(billing_components):
    *_, service = billing_components

    webhook = service.handle_webhook({}, _webhook_body("CHECKOUT.ORDER.APPROVED", "ORDER-1"))

    assert webhook.outcome == WebhookOutcome.IGNORED
    assert webhook.http_status == 200
    assert webhook.reason == "unhandled_event_type"


def test_webhook_for_unknown_order_is_ignored(billing_components):
    *_, service = billing_components

    missing_order = service.handle_webhook({}, _webhook_body("PAYMENT.CAPTURE.COMPLETED", "ORDER-404"))
    missing_reference = service.handle_webhook({}, _webhook_body("PAYMENT.CAPTURE.REFUNDED", None))

    assert missing_order.outcome == WebhookOutcome.IGNORED
    assert missing_order.reason == "unknown_order"
    assert missing_reference.outcome == WebhookOutcome.IGNORED


def test_every_webhook_kind_has_a_handler(billing_components):
    *_, service = billing_components

    assert set(service._webhook_handlers()) == set(WebhookEventKind)


def test_refund_reverts_active_subscription(billing_components):
    repository, _, event_logger, _, service = billing_components
    order_id = _activate(service, "premium")

    webhook = service.handle_webhook({}, _webhook_body("PAYMENT.CAPTURE.REFUNDED", order_id))

    account = repository.accounts["user-1"]
    assert webhook.outcome == WebhookOutcome.ACCEPTED
    assert account.subscription.status == PlanKey.FREE
    assert account.subscription.start_date is None
    assert account.subscription.end_date is None
    assert account.subscription.customer_id == "PAYER-1"
    assert account.usage.usage_limit == 5
    assert account.pending is None
    assert event_logger.types()[-1] == BillingAuditEventType.SUBSCRIPTION_REVERTED


def test_denied_pending_order_keeps_existing_plan(billing_components):
    repository, _, event_logger, _, service = billing_components
    _activate(service, "basic")
    upgrade = service.start_upgrade("user-1", "premium")

    webhook = service.handle_webhook({}, _webhook_body("PAYMENT.CAPTURE.DENIED", upgrade.order_id))

    account = repository.accounts["user-1"]
    assert webhook.outcome == WebhookOutcome.ACCEPTED
    assert account.subscription.status == PlanKey.BASIC
    assert account.usage.usage_limit == 50
    assert account.pending is None
    assert event_logger.types()[-1] == BillingAuditEventType.ORDER_CANCELED


def test_denied_order_on_free_account_clears_pending(billing_components):
    repository, _, _, _, service = billing_components
    result = service.start_upgrade("user-1", "basic")

    webhook = service.handle_webhook({}, _webhook_body("PAYMENT.CAPTURE.DENIED", result.order_id))

    account = repository.accounts["user-1"]
    assert webhook.outcome == WebhookOutcome.ACCEPTED
    assert account.subscription.status == PlanKey.FREE
    assert account.pending is None


class RacingAccountRepository(InMemoryAccountRepository):
    """Simulates another request writing between the read and the guarded write."""

    def __init__(self, clock: FakeClock) -> None:
        super().__init__(clock)
        self.concurrent_patch: Optional[AccountPatch] = None

    def update_account(
        self,
        account_id: str,
        patch: AccountPatch,
        *,
        expected_status: Optional[PlanKey] = None,
    ) -> Optional[BillingAccount]:
        if expected_status is not None and self.concurrent_patch is not None:
            concurrent, self.concurrent_patch = self.concurrent_patch, None
            super().update_account(account_id, concurrent)
        return super().update_account(account_id, patch, expected_status=expected_status)


@pytest.fixture
def racing_components(billing_components):
    _, gateway, event_logger, clock, _ = billing_components
    repository = RacingAccountRepository(clock)
    service = SubscriptionReconciler(
        repository=repository,
        gateway=gateway,
        event_logger=event_logger,
        clock=clock,
    )
    service.open_account("user-1")
    return repository, gateway, clock, service


def test_activation_lost_to_same_order_is_idempotent(racing_components):
    repository, gateway, clock, service = racing_components
    result = service.start_upgrade("user-1", "basic")
    repository.concurrent_patch = AccountPatch(
        subscription=Subscription.activated(
            get_plan_definition(PlanKey.BASIC),
            now=clock(),
            order_id=result.order_id,
            customer_id="PAYER-WEBHOOK",
        ),
        clear_pending=True,
        usage_limit=50,
        reset_usage=True,
    )

    outcome = service.confirm_capture("user-1", result.order_id)

    assert outcome.plan_key == PlanKey.BASIC
    assert repository.accounts["user-1"].subscription.customer_id == "PAYER-WEBHOOK"


def test_activation_lost_to_other_change_conflicts(racing_components):
    repository, _, clock, service = racing_components
    result = service.start_upgrade("user-1", "basic")
    repository.concurrent_patch = AccountPatch(
        subscription=Subscription.activated(
            get_plan_definition(PlanKey.PREMIUM),
            now=clock(),
            order_id="ORDER-ELSEWHERE",
            customer_id=None,
        ),
    )

    with pytest.raises(StateConflict) as exc:
        service.confirm_capture("user-1", result.order_id)

    assert exc.value.code == "stale_pending_state"
    assert repository.accounts["user-1"].subscription.order_id == "ORDER-ELSEWHERE"


@pytest.fixture
def sandbox_components():
    clock = FakeClock(datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc))
    repository = InMemoryAccountRepository(clock)
    gateway = SandboxGateway(return_url="http://localhost:3000/payment/success", webhook_id="WH-SANDBOX")
    service = SubscriptionReconciler(
        repository=repository,
        gateway=gateway,
        event_logger=FakeEventLogger(),
        clock=clock,
    )
    service.open_account("user-1")
    return repository, gateway, clock, service


def _signed_headers(raw_body: bytes, *, webhook_id: str = "WH-SANDBOX") -> Dict[str, str]:
    transmission_id = "tx-1"
    transmission_time = "2024-03-01T12:00:00Z"
    return {
        "PayPal-Transmission-Id": transmission_id,
        "PayPal-Transmission-Time": transmission_time,
        "PayPal-Transmission-Sig": sign_sandbox_webhook(webhook_id, transmission_id, transmission_time, raw_body),
    }


def test_end_to_end_basic_upgrade_with_sandbox(sandbox_components):
    repository, _, clock, service = sandbox_components
    for _ in range(5):
        service.record_usage("user-1")

    result = service.start_upgrade("user-1", "basic")
    assert result.order_id.startswith(SANDBOX_ORDER_PREFIX)
    assert result.approval_link == f"http://localhost:3000/payment/success?token={result.order_id}"

    outcome = service.confirm_capture("user-1", result.order_id)

    view = service.get_subscription_view("user-1")
    assert outcome.status == "COMPLETED"
    assert view.status == PlanKey.BASIC
    assert view.usage_count == 0
    assert view.usage_limit == 50
    assert view.days_remaining == 30
    assert repository.accounts["user-1"].subscription.customer_id == "TESTPAYERID123"


def test_sandbox_signed_webhook_is_accepted(sandbox_components):
    repository, _, _, service = sandbox_components
    result = service.start_upgrade("user-1", "premium")
    body = _webhook_body("PAYMENT.CAPTURE.COMPLETED", result.order_id)

    webhook = service.handle_webhook(_signed_headers(body), body)

    assert webhook.outcome == WebhookOutcome.ACCEPTED
    assert repository.accounts["user-1"].subscription.status == PlanKey.PREMIUM


def test_sandbox_forged_webhook_is_rejected(sandbox_components):
    repository, _, _, service = sandbox_components
    result = service.start_upgrade("user-1", "premium")
    body = _webhook_body("PAYMENT.CAPTURE.COMPLETED", result.order_id)

    webhook = service.handle_webhook(_signed_headers(body, webhook_id="WH-FORGED"), body)

    assert webhook.outcome == WebhookOutcome.REJECTED
    assert repository.accounts["user-1"].subscription.status == PlanKey.FREE

from __future__ import annotations

import logging

import pytest

from backend.app.billing import BillingAuditEvent, BillingAuditEventType, SubscriptionReconciler
from backend.app.billing.repository import PostgresAccountRepository
from backend.app.billing.sandbox import SandboxGateway
from backend.app.feature_gates import EntitlementGuard
from backend.app.services import billing as billing_services


@pytest.fixture
def fresh_wiring(monkeypatch):
    monkeypatch.setattr(billing_services, "load_dotenv", lambda: False)
    for name in ("PAYPAL_CLIENT_ID", "PAYPAL_CLIENT_SECRET", "PAYPAL_WEBHOOK_ID", "PAYPAL_ENVIRONMENT"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("PAYMENT_GATEWAY", "sandbox")
    monkeypatch.setenv("PAYPAL_WEBHOOK_ID", "WH-LOCAL")
    billing_services.get_billing_service.cache_clear()
    billing_services.get_entitlement_guard.cache_clear()
    yield
    billing_services.get_billing_service.cache_clear()
    billing_services.get_entitlement_guard.cache_clear()


def test_billing_service_is_wired_from_environment(fresh_wiring):
    service = billing_services.get_billing_service()

    assert isinstance(service, SubscriptionReconciler)
    assert isinstance(service.gateway, SandboxGateway)
    assert service.gateway.webhook_id == "WH-LOCAL"
    assert isinstance(service.repository, PostgresAccountRepository)
    assert billing_services.get_billing_service() is service


def test_entitlement_guard_shares_the_service(fresh_wiring):
    guard = billing_services.get_entitlement_guard()

    assert isinstance(guard, EntitlementGuard)
    assert guard.reconciler is billing_services.get_billing_service()


def test_logging_event_logger_forwards_audit_events(caplog):
    event = BillingAuditEvent(
        event_type=BillingAuditEventType.SUBSCRIPTION_ACTIVATED,
        account_id="user-1",
        order_id="ORDER-1",
        metadata={"plan": "basic"},
    )

    with caplog.at_level(logging.INFO, logger="billing"):
        billing_services.LoggingBillingEventLogger().log(event)

    assert "subscription_activated" in caplog.text
    assert "account=user-1" in caplog.text
    assert "order=ORDER-1" in caplog.text

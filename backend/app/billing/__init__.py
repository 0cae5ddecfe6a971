"""Billing domain package providing the subscription lifecycle and payment gateways."""

from .config import BillingConfig, load_billing_config
from .exceptions import (
    AccountNotFoundError,
    BillingError,
    GatewayError,
    GatewayErrorCause,
    PaymentNotCompleted,
    StateConflict,
    ValidationError,
    VerificationFailure,
)
from .gateway import PaymentGateway, create_payment_gateway
from .models import (
    AccountPatch,
    BillingAccount,
    BillingAuditEvent,
    BillingAuditEventType,
    CaptureOutcome,
    CaptureResult,
    Order,
    OrderDetails,
    PendingPayment,
    StartUpgradeResult,
    Subscription,
    SubscriptionPhase,
    SubscriptionView,
    UsageCounter,
)
from .service import AccountRepository, BillingEventLogger, SubscriptionReconciler
from .webhooks import WebhookEvent, WebhookEventKind, WebhookOutcome, WebhookResult

__all__ = [
    "AccountNotFoundError",
    "AccountPatch",
    "AccountRepository",
    "BillingAccount",
    "BillingAuditEvent",
    "BillingAuditEventType",
    "BillingConfig",
    "BillingError",
    "BillingEventLogger",
    "CaptureOutcome",
    "CaptureResult",
    "GatewayError",
    "GatewayErrorCause",
    "Order",
    "OrderDetails",
    "PaymentGateway",
    "PaymentNotCompleted",
    "PendingPayment",
    "StartUpgradeResult",
    "StateConflict",
    "Subscription",
    "SubscriptionPhase",
    "SubscriptionReconciler",
    "SubscriptionView",
    "UsageCounter",
    "ValidationError",
    "VerificationFailure",
    "WebhookEvent",
    "WebhookEventKind",
    "WebhookOutcome",
    "WebhookResult",
    "create_payment_gateway",
    "load_billing_config",
]

"""Application wiring for the billing service."""
from __future__ import annotations

import logging
from functools import lru_cache

from dotenv import load_dotenv

from ..billing import (
    BillingAuditEvent,
    BillingEventLogger,
    SubscriptionReconciler,
    create_payment_gateway,
    load_billing_config,
)
from ..billing.repository import PostgresAccountRepository
from ..feature_gates import EntitlementGuard


logger = logging.getLogger("billing")


class LoggingBillingEventLogger(BillingEventLogger):
    """Simple event logger forwarding billing audit events to logging."""

    def log(self, event: BillingAuditEvent) -> None:
        logger.info(
            "Billing event %s account=%s order=%s metadata=%s",
            event.event_type.value,
            event.account_id,
            event.order_id,
            event.metadata,
        )


@lru_cache(maxsize=1)
def get_billing_service() -> SubscriptionReconciler:
    load_dotenv()
    config = load_billing_config()
    gateway = create_payment_gateway(config)
    logger.info("Billing configured with %s gateway", gateway.name)
    return SubscriptionReconciler(
        repository=PostgresAccountRepository(),
        gateway=gateway,
        event_logger=LoggingBillingEventLogger(),
    )


@lru_cache(maxsize=1)
def get_entitlement_guard() -> EntitlementGuard:
    return EntitlementGuard(reconciler=get_billing_service())


__all__ = ["get_billing_service", "get_entitlement_guard", "LoggingBillingEventLogger"]

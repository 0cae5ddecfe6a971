"""Payment gateway interface and strategy selection."""
from __future__ import annotations

import logging
from typing import Mapping, Optional, Protocol, Union

import httpx

from ..entitlements.models import PlanKey
from .config import BillingConfig
from .models import CaptureResult, Order, OrderDetails
from .paypal import PayPalGateway
from .sandbox import SandboxGateway

logger = logging.getLogger(__name__)


class PaymentGateway(Protocol):
    """External payment processor integration."""

    name: str

    def create_order(self, plan_key: Union[PlanKey, str], account_id: str) -> Order:
        """Create a provider order priced from the plan catalog."""

    def capture_order(self, order_id: str) -> CaptureResult:
        """Finalize an order the payer has approved."""

    def fetch_order(self, order_id: str) -> OrderDetails:
        """Read the provider's current view of an order."""

    def verify_webhook(self, headers: Mapping[str, str], raw_body: bytes) -> bool:
        """Return whether a webhook delivery is authentic. Never raises."""


def create_payment_gateway(
    config: BillingConfig,
    *,
    http_client: Optional[httpx.Client] = None,
) -> PaymentGateway:
    if config.sandbox_mode:
        logger.info("Using sandbox payment gateway; no provider calls will be made")
        return SandboxGateway(
            return_url=config.return_url,
            webhook_id=config.paypal_webhook_id,
            currency=config.currency,
        )
    return PayPalGateway.from_config(config, http_client=http_client)


__all__ = ["PaymentGateway", "create_payment_gateway"]

"""Network-free payment gateway used when no provider credentials are configured."""
from __future__ import annotations

import base64
import hashlib
import hmac
import logging
import zlib
from collections import OrderedDict
from typing import Mapping, Union
from uuid import uuid4

from ..entitlements.models import PlanKey
from .exceptions import GatewayError, GatewayErrorCause
from .models import CaptureResult, Order, OrderDetails
from .plans import resolve_purchasable_plan
from .webhooks import normalize_headers

logger = logging.getLogger(__name__)

SANDBOX_ORDER_PREFIX = "TEST-ORDER-"
SANDBOX_PAYER_ID = "TESTPAYERID123"
SANDBOX_REFERENCE_ID = "MOCK_REFERENCE"
SANDBOX_MAX_TRACKED_ORDERS = 1000


def sign_sandbox_webhook(
    webhook_id: str,
    transmission_id: str,
    transmission_time: str,
    raw_body: bytes,
) -> str:
    """Compute the transmission signature the sandbox gateway expects.

    The signed message follows the provider's layout
    ``<transmission id>|<transmission time>|<webhook id>|<crc32 of body>`` and is
    keyed by the webhook id, so local tooling can emit verifiable deliveries.
    """

    message = f"{transmission_id}|{transmission_time}|{webhook_id}|{zlib.crc32(raw_body)}"
    digest = hmac.new(webhook_id.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


class SandboxGateway:
    """Fabricates orders and captures locally so checkout can run without credentials."""

    name = "sandbox"

    def __init__(
        self,
        *,
        return_url: str,
        webhook_id: str,
        currency: str = "USD",
        max_tracked_orders: int = SANDBOX_MAX_TRACKED_ORDERS,
    ) -> None:
        self.return_url = return_url
        self.webhook_id = webhook_id
        self.currency = currency
        self.max_tracked_orders = max_tracked_orders
        # Oldest orders are forgotten first; fetching one afterwards reports CREATED.
        self._orders: "OrderedDict[str, OrderDetails]" = OrderedDict()

    def create_order(self, plan_key: Union[PlanKey, str], account_id: str) -> Order:
        plan = resolve_purchasable_plan(plan_key)
        order_id = f"{SANDBOX_ORDER_PREFIX}{uuid4().hex.upper()}"
        self._orders[order_id] = OrderDetails(
            order_id=order_id,
            status="CREATED",
            reference_id=f"{plan.key.value}_{account_id}",
            amount=plan.price_display,
            currency=self.currency,
        )
        while len(self._orders) > self.max_tracked_orders:
            self._orders.popitem(last=False)
        logger.info("Sandbox order %s created for plan=%s account=%s", order_id, plan.key.value, account_id)
        return Order(
            order_id=order_id,
            status="CREATED",
            approval_link=f"{self.return_url}?token={order_id}",
        )

    def capture_order(self, order_id: str) -> CaptureResult:
        self._require_sandbox_order(order_id)
        known = self._orders.get(order_id)
        reference_id = known.reference_id if known else SANDBOX_REFERENCE_ID
        if known is not None:
            self._orders[order_id] = known.model_copy(
                update={"status": "COMPLETED", "payer_id": SANDBOX_PAYER_ID}
            )
        logger.info("Sandbox order %s captured", order_id)
        return CaptureResult(
            order_id=order_id,
            status="COMPLETED",
            payer_id=SANDBOX_PAYER_ID,
            reference_id=reference_id,
        )

    def fetch_order(self, order_id: str) -> OrderDetails:
        self._require_sandbox_order(order_id)
        known = self._orders.get(order_id)
        if known is not None:
            return known
        return OrderDetails(order_id=order_id, status="CREATED", currency=self.currency)

    def verify_webhook(self, headers: Mapping[str, str], raw_body: bytes) -> bool:
        if not self.webhook_id:
            logger.warning("Sandbox webhook rejected: no webhook id configured")
            return False
        try:
            normalized = normalize_headers(headers)
            transmission_id = normalized.get("paypal-transmission-id")
            transmission_time = normalized.get("paypal-transmission-time")
            signature = normalized.get("paypal-transmission-sig")
            if not (transmission_id and transmission_time and signature):
                return False
            expected = sign_sandbox_webhook(self.webhook_id, transmission_id, transmission_time, raw_body)
            return hmac.compare_digest(expected, signature)
        except Exception:
            logger.exception("Sandbox webhook verification failed")
            return False

    def _require_sandbox_order(self, order_id: str) -> None:
        if not order_id or not order_id.startswith(SANDBOX_ORDER_PREFIX):
            raise GatewayError.from_cause(
                GatewayErrorCause.INVALID_REQUEST,
                "Order not found in sandbox.",
                detail={"order_id": order_id},
            )


__all__ = [
    "SANDBOX_ORDER_PREFIX",
    "SANDBOX_PAYER_ID",
    "SandboxGateway",
    "sign_sandbox_webhook",
]

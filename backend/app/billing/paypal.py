"""PayPal Orders v2 implementation of the payment gateway."""
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Mapping, Optional, Tuple, Union
from urllib.parse import quote

import httpx

from ..entitlements.models import PlanKey
from .config import BillingConfig
from .exceptions import GatewayError, GatewayErrorCause
from .models import CaptureResult, Order, OrderDetails
from .plans import resolve_purchasable_plan
from .webhooks import decode_webhook_body, normalize_headers

logger = logging.getLogger(__name__)

_TOKEN_REFRESH_MARGIN = timedelta(seconds=60)
_APPROVAL_RELS = {"approve", "payer-action"}
_WEBHOOK_HEADERS = {
    "auth_algo": "paypal-auth-algo",
    "cert_url": "paypal-cert-url",
    "transmission_id": "paypal-transmission-id",
    "transmission_sig": "paypal-transmission-sig",
    "transmission_time": "paypal-transmission-time",
}


def _cause_for_status(status_code: int) -> GatewayErrorCause:
    if status_code in (401, 403):
        return GatewayErrorCause.AUTH
    if status_code == 429:
        return GatewayErrorCause.RATE_LIMITED
    if status_code >= 500:
        return GatewayErrorCause.PROVIDER_UNAVAILABLE
    return GatewayErrorCause.INVALID_REQUEST


def _error_from_response(response: httpx.Response) -> GatewayError:
    detail: Dict[str, Any] = {"provider_status": response.status_code}
    try:
        body = response.json()
    except ValueError:
        body = None
    if not isinstance(body, dict):
        body = {}
    for key in ("name", "debug_id", "error", "error_description"):
        if body.get(key):
            detail[key] = str(body[key])
    message = str(body.get("message") or f"Payment provider returned HTTP {response.status_code}.")
    return GatewayError.from_cause(_cause_for_status(response.status_code), message, detail=detail)


class PayPalGateway:
    """Talks to the PayPal REST API over an authenticated HTTPS channel."""

    name = "paypal"

    def __init__(
        self,
        *,
        client_id: str,
        client_secret: str,
        webhook_id: str,
        api_url: str,
        return_url: str,
        cancel_url: str,
        brand_name: str,
        currency: str = "USD",
        timeout: float = 10.0,
        http_client: Optional[httpx.Client] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        if not client_id or not client_secret:
            raise ValueError("PayPal client id and secret must be provided")
        self._credentials: Tuple[str, str] = (client_id, client_secret)
        self.webhook_id = webhook_id
        self.return_url = return_url
        self.cancel_url = cancel_url
        self.brand_name = brand_name
        self.currency = currency
        self._client = http_client or httpx.Client(base_url=api_url, timeout=timeout)
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._access_token: Optional[str] = None
        self._access_token_expires_at: Optional[datetime] = None

    @classmethod
    def from_config(cls, config: BillingConfig, *, http_client: Optional[httpx.Client] = None) -> "PayPalGateway":
        return cls(
            client_id=config.paypal_client_id or "",
            client_secret=config.paypal_client_secret or "",
            webhook_id=config.paypal_webhook_id,
            api_url=config.paypal_api_url,
            return_url=config.return_url,
            cancel_url=config.cancel_url,
            brand_name=config.brand_name,
            currency=config.currency,
            timeout=config.request_timeout_seconds,
            http_client=http_client,
        )

    def close(self) -> None:
        self._client.close()

    def create_order(self, plan_key: Union[PlanKey, str], account_id: str) -> Order:
        plan = resolve_purchasable_plan(plan_key)
        request_body = {
            "intent": "CAPTURE",
            "purchase_units": [
                {
                    "reference_id": f"{plan.key.value}_{account_id}",
                    "custom_id": account_id,
                    "description": f"{plan.display_name} Plan Subscription - Monthly",
                    "amount": {"currency_code": self.currency, "value": plan.price_display},
                }
            ],
            "application_context": {
                "brand_name": self.brand_name,
                "landing_page": "BILLING",
                "user_action": "PAY_NOW",
                "return_url": self.return_url,
                "cancel_url": self.cancel_url,
            },
        }
        payload = self._send(
            "POST",
            "/v2/checkout/orders",
            json=request_body,
            headers={"Prefer": "return=representation"},
        )
        order_id = payload.get("id")
        if not order_id:
            raise GatewayError.from_cause(
                GatewayErrorCause.PROVIDER_UNAVAILABLE,
                "Payment provider did not return an order id.",
            )
        approval_link = next(
            (
                link.get("href")
                for link in payload.get("links") or []
                if isinstance(link, dict) and link.get("rel") in _APPROVAL_RELS
            ),
            None,
        )
        logger.info("PayPal order %s created for plan=%s account=%s", order_id, plan.key.value, account_id)
        return Order(order_id=str(order_id), status=str(payload.get("status") or "CREATED"), approval_link=approval_link)

    def capture_order(self, order_id: str) -> CaptureResult:
        payload = self._send(
            "POST",
            f"/v2/checkout/orders/{quote(order_id, safe='')}/capture",
            json={},
            headers={
                "Prefer": "return=representation",
                "PayPal-Request-Id": f"capture-{order_id}",
            },
        )
        purchase_unit = _first_purchase_unit(payload)
        payer = payload.get("payer") or {}
        logger.info("PayPal order %s capture returned status=%s", order_id, payload.get("status"))
        return CaptureResult(
            order_id=str(payload.get("id") or order_id),
            status=str(payload.get("status") or "UNKNOWN"),
            payer_id=payer.get("payer_id"),
            reference_id=purchase_unit.get("reference_id"),
        )

    def fetch_order(self, order_id: str) -> OrderDetails:
        payload = self._send("GET", f"/v2/checkout/orders/{quote(order_id, safe='')}")
        purchase_unit = _first_purchase_unit(payload)
        amount = purchase_unit.get("amount") or {}
        payer = payload.get("payer") or {}
        return OrderDetails(
            order_id=str(payload.get("id") or order_id),
            status=str(payload.get("status") or "UNKNOWN"),
            payer_id=payer.get("payer_id"),
            reference_id=purchase_unit.get("reference_id"),
            amount=amount.get("value"),
            currency=amount.get("currency_code"),
        )

    def verify_webhook(self, headers: Mapping[str, str], raw_body: bytes) -> bool:
        if not self.webhook_id:
            logger.warning("PayPal webhook rejected: PAYPAL_WEBHOOK_ID is not configured")
            return False
        try:
            normalized = normalize_headers(headers)
            verification = {field: normalized.get(header) for field, header in _WEBHOOK_HEADERS.items()}
            missing = sorted(field for field, value in verification.items() if not value)
            if missing:
                logger.warning("PayPal webhook rejected: missing headers %s", ", ".join(missing))
                return False
            verification["webhook_id"] = self.webhook_id
            verification["webhook_event"] = decode_webhook_body(raw_body)
            payload = self._send("POST", "/v1/notifications/verify-webhook-signature", json=verification)
        except Exception:
            logger.warning("PayPal webhook signature verification failed", exc_info=True)
            return False
        return payload.get("verification_status") == "SUCCESS"

    def _bearer_token(self) -> str:
        now = self._clock()
        if (
            self._access_token
            and self._access_token_expires_at is not None
            and now < self._access_token_expires_at
        ):
            return self._access_token

        payload = self._send(
            "POST",
            "/v1/oauth2/token",
            data={"grant_type": "client_credentials"},
            auth=self._credentials,
        )
        token = payload.get("access_token")
        if not token:
            raise GatewayError.from_cause(GatewayErrorCause.AUTH, "Payment provider did not issue an access token.")
        expires_in = int(payload.get("expires_in") or 0)
        self._access_token = str(token)
        self._access_token_expires_at = now + max(timedelta(seconds=expires_in) - _TOKEN_REFRESH_MARGIN, timedelta(0))
        return self._access_token

    def _send(
        self,
        method: str,
        path: str,
        *,
        json: Optional[Dict[str, Any]] = None,
        data: Optional[Dict[str, str]] = None,
        headers: Optional[Dict[str, str]] = None,
        auth: Optional[Tuple[str, str]] = None,
    ) -> Dict[str, Any]:
        request_headers = {"Accept": "application/json", **(headers or {})}
        if auth is None:
            request_headers["Authorization"] = f"Bearer {self._bearer_token()}"

        try:
            response = self._client.request(
                method,
                path,
                json=json,
                data=data,
                headers=request_headers,
                auth=auth,
            )
        except httpx.TimeoutException as exc:
            raise GatewayError.from_cause(
                GatewayErrorCause.PROVIDER_UNAVAILABLE,
                "Payment provider timed out.",
                detail={"path": path},
            ) from exc
        except httpx.HTTPError as exc:
            raise GatewayError.from_cause(
                GatewayErrorCause.PROVIDER_UNAVAILABLE,
                "Payment provider is unreachable.",
                detail={"path": path},
            ) from exc

        if response.status_code == 401 and auth is None:
            self._access_token = None
            self._access_token_expires_at = None
        if response.is_error:
            error = _error_from_response(response)
            logger.warning(
                "PayPal request failed",
                extra={"paypal_path": path, "paypal_status": response.status_code, "gateway_cause": error.cause.value},
            )
            raise error

        if not response.content:
            return {}
        try:
            body = response.json()
        except ValueError as exc:
            raise GatewayError.from_cause(
                GatewayErrorCause.PROVIDER_UNAVAILABLE,
                "Payment provider returned an unreadable response.",
                detail={"path": path},
            ) from exc
        return body if isinstance(body, dict) else {}


def _first_purchase_unit(payload: Mapping[str, Any]) -> Dict[str, Any]:
    units = payload.get("purchase_units") or []
    if units and isinstance(units[0], dict):
        return units[0]
    return {}


__all__ = ["PayPalGateway"]

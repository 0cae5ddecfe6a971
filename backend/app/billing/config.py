"""Payment gateway configuration helpers."""
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional

PAYPAL_SANDBOX_API_URL = "https://api-m.sandbox.paypal.com"
PAYPAL_LIVE_API_URL = "https://api-m.paypal.com"

_PLACEHOLDER_CLIENT_IDS = {"", "sb"}
_GATEWAY_MODES = {"auto", "paypal", "sandbox"}


@dataclass(frozen=True)
class BillingConfig:
    """Configuration for the payment gateway and checkout redirects."""

    gateway_mode: str
    paypal_client_id: Optional[str]
    paypal_client_secret: Optional[str]
    paypal_webhook_id: str
    paypal_environment: str
    frontend_url: str
    brand_name: str
    currency: str
    request_timeout_seconds: float

    @property
    def sandbox_mode(self) -> bool:
        """Whether the network-free sandbox gateway should be used."""

        if self.gateway_mode == "sandbox":
            return True
        if self.gateway_mode == "paypal":
            return False
        return (self.paypal_client_id or "") in _PLACEHOLDER_CLIENT_IDS

    @property
    def paypal_api_url(self) -> str:
        if self.paypal_environment == "live":
            return PAYPAL_LIVE_API_URL
        return PAYPAL_SANDBOX_API_URL

    @property
    def return_url(self) -> str:
        return f"{self.frontend_url}/payment/success"

    @property
    def cancel_url(self) -> str:
        return f"{self.frontend_url}/payment/cancel"


def _to_float(value: Optional[str], *, default: float) -> float:
    if value is None or value == "":
        return default
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Expected float value, got {value!r}") from exc


def load_billing_config(env: Optional[Mapping[str, str]] = None) -> BillingConfig:
    """Load :class:`BillingConfig` from environment variables."""

    env_mapping = os.environ if env is None else env

    gateway_mode = (env_mapping.get("PAYMENT_GATEWAY") or "auto").strip().lower() or "auto"
    if gateway_mode not in _GATEWAY_MODES:
        raise ValueError(f"PAYMENT_GATEWAY must be one of {sorted(_GATEWAY_MODES)}, got {gateway_mode!r}")

    paypal_environment = (env_mapping.get("PAYPAL_ENVIRONMENT") or "sandbox").strip().lower()
    if paypal_environment not in {"sandbox", "live"}:
        raise ValueError("PAYPAL_ENVIRONMENT must be 'sandbox' or 'live'")

    timeout = _to_float(env_mapping.get("PAYMENT_TIMEOUT_SECONDS"), default=10.0)
    if timeout <= 0:
        raise ValueError("PAYMENT_TIMEOUT_SECONDS must be positive")

    frontend_url = env_mapping.get("FRONTEND_URL", "http://localhost:3000")

    return BillingConfig(
        gateway_mode=gateway_mode,
        paypal_client_id=(env_mapping.get("PAYPAL_CLIENT_ID") or "").strip() or None,
        paypal_client_secret=env_mapping.get("PAYPAL_CLIENT_SECRET") or None,
        paypal_webhook_id=(env_mapping.get("PAYPAL_WEBHOOK_ID") or "").strip(),
        paypal_environment=paypal_environment,
        frontend_url=frontend_url.rstrip("/"),
        brand_name=env_mapping.get("PAYMENT_BRAND_NAME", "AI Content Generator"),
        currency=(env_mapping.get("PAYMENT_CURRENCY") or "USD").strip().upper(),
        request_timeout_seconds=timeout,
    )


__all__ = ["BillingConfig", "load_billing_config", "PAYPAL_LIVE_API_URL", "PAYPAL_SANDBOX_API_URL"]

"""Normalized webhook events delivered by the payment provider."""
from __future__ import annotations

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from fastapi import status
from pydantic import BaseModel, ConfigDict, Field


class WebhookEventKind(str, Enum):
    """Provider event types that change subscription state."""

    PAYMENT_CAPTURE_COMPLETED = "PAYMENT.CAPTURE.COMPLETED"
    PAYMENT_CAPTURE_DENIED = "PAYMENT.CAPTURE.DENIED"
    PAYMENT_CAPTURE_REFUNDED = "PAYMENT.CAPTURE.REFUNDED"
    PAYMENT_CAPTURE_REVERSED = "PAYMENT.CAPTURE.REVERSED"

    @classmethod
    def from_event_type(cls, event_type: Optional[str]) -> Optional["WebhookEventKind"]:
        if not event_type:
            return None
        try:
            return cls(event_type.strip().upper())
        except ValueError:
            return None


class WebhookOutcome(str, Enum):
    """Result reported back to the HTTP layer for a webhook delivery."""

    ACCEPTED = "accepted"
    IGNORED = "ignored"
    REJECTED = "rejected"

    @property
    def http_status(self) -> int:
        if self is WebhookOutcome.REJECTED:
            return status.HTTP_401_UNAUTHORIZED
        return status.HTTP_200_OK


class WebhookEvent(BaseModel):
    """Fields of a provider event that the reconciler acts on."""

    event_id: str
    event_type: str
    kind: Optional[WebhookEventKind] = None
    order_id: Optional[str] = None
    payer_id: Optional[str] = None
    resource_id: Optional[str] = None
    custom_id: Optional[str] = None
    payload: Dict[str, Any] = Field(default_factory=dict)
    received_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "WebhookEvent":
        resource = _as_dict(payload.get("resource"))
        related_ids = _as_dict(_as_dict(resource.get("supplementary_data")).get("related_ids"))
        payer = _as_dict(resource.get("payer"))
        event_type = str(payload.get("event_type") or "")
        return cls(
            event_id=str(payload.get("id") or ""),
            event_type=event_type,
            kind=WebhookEventKind.from_event_type(event_type),
            order_id=_optional_str(related_ids.get("order_id")),
            payer_id=_optional_str(payer.get("payer_id")),
            resource_id=_optional_str(resource.get("id")),
            custom_id=_optional_str(resource.get("custom_id")),
            payload=dict(payload),
        )


class WebhookResult(BaseModel):
    """What happened to a webhook delivery."""

    outcome: WebhookOutcome
    event_id: Optional[str] = None
    event_type: Optional[str] = None
    account_id: Optional[str] = None
    reason: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @property
    def http_status(self) -> int:
        return self.outcome.http_status


def decode_webhook_body(raw_body: bytes) -> Dict[str, Any]:
    """Decode a raw webhook body, raising ``ValueError`` when it is not a JSON object."""

    try:
        payload = json.loads(raw_body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ValueError("webhook body is not valid JSON") from exc
    if not isinstance(payload, dict):
        raise ValueError("webhook body must be a JSON object")
    return payload


def normalize_headers(headers: Mapping[str, str]) -> Dict[str, str]:
    return {str(key).lower(): str(value) for key, value in headers.items()}


def _as_dict(value: object) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _optional_str(value: object) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


__all__ = [
    "WebhookEvent",
    "WebhookEventKind",
    "WebhookOutcome",
    "WebhookResult",
    "decode_webhook_body",
    "normalize_headers",
]

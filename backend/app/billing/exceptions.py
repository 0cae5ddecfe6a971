"""Typed errors raised by the billing core.

Every error carries a machine readable ``code``, a human message and the HTTP
status the API layer should answer with. The core never builds responses
itself; routers call :meth:`BillingError.to_http_exception` or read
:attr:`BillingError.payload`.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from fastapi import HTTPException, status


@dataclass
class BillingError(Exception):
    """Base class for billing failures surfaced to API callers."""

    code: str
    message: str
    status_code: int = status.HTTP_400_BAD_REQUEST
    detail: Optional[Mapping[str, Any]] = None

    def __post_init__(self) -> None:
        base_detail: Dict[str, Any] = {"error": self.code, "message": self.message}
        if self.detail:
            base_detail.update(self.detail)
        object.__setattr__(self, "_payload", base_detail)
        super().__init__(self.message)

    @property
    def payload(self) -> Mapping[str, Any]:
        """Serialized representation suitable for JSON responses."""

        return self._payload

    def to_http_exception(self) -> HTTPException:
        """Convert the domain error into a FastAPI HTTPException."""

        return HTTPException(status_code=self.status_code, detail=dict(self.payload))


@dataclass
class ValidationError(BillingError):
    """Bad input such as an unknown plan id or a missing order id."""

    status_code: int = status.HTTP_400_BAD_REQUEST


@dataclass
class AccountNotFoundError(BillingError):
    """The billing account referenced by the caller does not exist."""

    status_code: int = status.HTTP_404_NOT_FOUND


@dataclass
class StateConflict(BillingError):
    """The request does not match the stored checkout state.

    Callers should prompt the user to restart checkout.
    """

    status_code: int = status.HTTP_400_BAD_REQUEST


@dataclass
class PaymentNotCompleted(BillingError):
    """The provider accepted the capture call but did not complete payment."""

    status_code: int = status.HTTP_400_BAD_REQUEST


@dataclass
class VerificationFailure(BillingError):
    """A webhook could not be authenticated."""

    status_code: int = status.HTTP_401_UNAUTHORIZED


class GatewayErrorCause(str, Enum):
    """Coarse classification of payment provider failures."""

    INVALID_REQUEST = "invalid_request"
    AUTH = "auth"
    RATE_LIMITED = "rate_limited"
    PROVIDER_UNAVAILABLE = "provider_unavailable"


@dataclass
class GatewayError(BillingError):
    """The payment provider rejected a call or could not be reached."""

    status_code: int = status.HTTP_502_BAD_GATEWAY
    cause: GatewayErrorCause = GatewayErrorCause.PROVIDER_UNAVAILABLE

    def __post_init__(self) -> None:
        if self.cause == GatewayErrorCause.RATE_LIMITED:
            self.status_code = status.HTTP_429_TOO_MANY_REQUESTS
        self.detail = {"cause": self.cause.value, **dict(self.detail or {})}
        super().__post_init__()

    @classmethod
    def from_cause(
        cls,
        cause: GatewayErrorCause,
        message: str,
        *,
        detail: Optional[Mapping[str, Any]] = None,
    ) -> "GatewayError":
        return cls(code=f"gateway_{cause.value}", message=message, cause=cause, detail=detail)


__all__ = [
    "AccountNotFoundError",
    "BillingError",
    "GatewayError",
    "GatewayErrorCause",
    "PaymentNotCompleted",
    "StateConflict",
    "ValidationError",
    "VerificationFailure",
]

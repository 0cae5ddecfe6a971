"""Custom exceptions used for feature gating enforcement."""
from __future__ import annotations

from dataclasses import dataclass

from fastapi import status

from ..billing.exceptions import BillingError


@dataclass
class FeatureGateError(BillingError):
    """An entitlement denial; the code names the :class:`DenialReason`."""

    status_code: int = status.HTTP_403_FORBIDDEN

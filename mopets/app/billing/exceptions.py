"""Exceptions raised by the billing subsystem."""
from __future__ import annotations

from typing import Any, Dict, Mapping, Optional

from fastapi import HTTPException, status


class BillingError(Exception):
    """Represents a billing failure surfaced to API callers."""

    code = "billing_error"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, *, detail: Optional[Mapping[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.detail = dict(detail or {})

    @property
    def payload(self) -> Mapping[str, Any]:
        """Serialized representation suitable for JSON responses."""

        base: Dict[str, Any] = {"error": self.code, "message": self.message}
        base.update(self.detail)
        return base

    def to_http_exception(self) -> HTTPException:
        """Convert the domain error into a FastAPI HTTPException."""

        return HTTPException(status_code=self.status_code, detail=dict(self.payload))


class BillingConfigurationError(BillingError):
    """Stripe credentials or price configuration are missing or invalid."""

    code = "billing_misconfigured"


class NotFoundError(BillingError):
    """The account or its billing customer does not exist."""

    code = "not_found"
    status_code = status.HTTP_404_NOT_FOUND


class ValidationError(BillingError):
    """The request is missing mode-specific fields."""

    code = "invalid_request"
    status_code = status.HTTP_400_BAD_REQUEST


class UpstreamLookupError(BillingError):
    """A stored provider object could not be retrieved."""

    code = "upstream_lookup_failed"
    status_code = status.HTTP_502_BAD_GATEWAY


class CheckoutCreationError(BillingError):
    code = "checkout_failed"


class PortalCreationError(BillingError):
    code = "portal_failed"


class InvalidSignatureError(BillingError):
    """Webhook payload failed authentication."""

    code = "invalid_signature"
    status_code = status.HTTP_400_BAD_REQUEST


class WebhookHandlerError(BillingError):
    """An event-specific handler raised while processing a verified event."""

    code = "webhook_handler_failed"


class UnmappedPriceError(BillingError):
    """A price identifier has no tier under strict price mapping."""

    code = "unmapped_price"


__all__ = [
    "BillingConfigurationError",
    "BillingError",
    "CheckoutCreationError",
    "InvalidSignatureError",
    "NotFoundError",
    "PortalCreationError",
    "UnmappedPriceError",
    "UpstreamLookupError",
    "ValidationError",
    "WebhookHandlerError",
]

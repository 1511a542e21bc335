"""
Billing Exceptions

Error taxonomy shared by the gateway, the reconciler and the scheduled jobs.
Each class carries the HTTP status the API layer answers with.
"""
from typing import Any, Dict, Optional


class BillingError(Exception):
    """Base class for every billing failure surfaced to a caller."""

    status_code = 500
    code = "billing_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.code, "message": self.message, **self.details}


class ConfigurationError(BillingError):
    """Missing Stripe secret, webhook secret, price mapping or free plan."""

    status_code = 503
    code = "configuration_error"


class NotFound(BillingError):
    status_code = 404
    code = "not_found"


class PreconditionFailed(BillingError):
    """
    Billing state does not support the requested operation.

    `requires_checkout` tells the front-end to fall back to a checkout session.
    """

    status_code = 400
    code = "precondition_failed"

    def __init__(self, message: str, requires_checkout: bool = False):
        details = {"requiresCheckout": True} if requires_checkout else None
        super().__init__(message, details)
        self.requires_checkout = requires_checkout


class Unauthorized(BillingError):
    status_code = 401
    code = "unauthorized"


class SignatureInvalid(BillingError):
    status_code = 400
    code = "signature_invalid"


class TransientUpstream(BillingError):
    """A Stripe call failed. Not retried here; the trigger's retry policy applies."""

    status_code = 500
    code = "upstream_error"

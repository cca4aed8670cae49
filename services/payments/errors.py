# services/payments/errors.py
"""
Error taxonomy for the payment flow. Each error knows the HTTP status it maps
to, a stable machine-checkable code, and whether the caller may retry.
"""

from __future__ import annotations


class PaymentError(Exception):
    status_code = 400
    error_code = "PAYMENT_ERROR"
    retryable = False

    def __init__(self, message: str, *, error_code: str | None = None):
        super().__init__(message)
        self.message = message
        if error_code:
            self.error_code = error_code

    def to_dict(self) -> dict:
        return {
            "success": False,
            "message": self.message,
            "error": self.error_code,
            "retryable": self.retryable,
        }


class WebhookFormatError(PaymentError):
    error_code = "INVALID_PAYLOAD"


class SignatureMismatch(PaymentError):
    error_code = "INVALID_SIGNATURE"


class OrderRejected(PaymentError):
    error_code = "ORDER_REJECTED"


class Forbidden(PaymentError):
    status_code = 403
    error_code = "FORBIDDEN"


class NotFound(PaymentError):
    status_code = 404
    error_code = "NOT_FOUND"


class ProviderUnavailable(PaymentError):
    status_code = 503
    error_code = "PROVIDER_UNAVAILABLE"
    retryable = True


class FeatureDisabled(PaymentError):
    status_code = 503
    error_code = "FEATURE_DISABLED"


class InvalidTransition(PaymentError):
    """A status change the lifecycle does not allow. Never leaves the Applying step."""
    status_code = 409
    error_code = "INVALID_TRANSITION"

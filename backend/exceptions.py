"""
Custom exception classes for payment-provider (Stripe) operations.
"""


class PaymentProviderError(Exception):
    """Raised when Stripe rejects a request or cannot be reached."""

    def __init__(self, message: str, status_code: int | None = None, code: str | None = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code


class PaymentProviderTimeout(PaymentProviderError):
    """Raised when a Stripe call exceeds its timeout."""
    pass


class ResourceMissingError(PaymentProviderError):
    """Raised when the Stripe object does not exist (already deleted)."""
    pass

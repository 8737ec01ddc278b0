"""
Custom domain exceptions for consistent error handling.

These exceptions are mapped to HTTP status codes by the global exception handler
in main.py.
"""
from fastapi import HTTPException, status


class DomainError(HTTPException):
    """Base class for all domain-specific errors."""
    def __init__(self, message: str, status_code: int = status.HTTP_400_BAD_REQUEST, details: dict | None = None):
        super().__init__(status_code=status_code, detail=message)
        self.message = message
        self.details = details or {}


class NotFoundError(DomainError):
    """Resource not found (404)."""
    def __init__(self, resource_type: str, identifier: str, details: dict | None = None):
        message = f"{resource_type} not found: {identifier}"
        super().__init__(message, status_code=status.HTTP_404_NOT_FOUND, details=details)


class ValidationError(DomainError):
    """Validation error (400)."""
    def __init__(self, message: str, field: str | None = None, details: dict | None = None):
        if field:
            message = f"Validation error on {field}: {message}"
        super().__init__(message, status_code=status.HTTP_400_BAD_REQUEST, details=details)


class PermissionDeniedError(DomainError):
    """Permission denied (403)."""
    def __init__(self, message: str = "Permission denied", details: dict | None = None):
        super().__init__(message, status_code=status.HTTP_403_FORBIDDEN, details=details)


class UnauthorizedError(DomainError):
    """Unauthorized access (401)."""
    def __init__(self, message: str = "Unauthorized", details: dict | None = None):
        super().__init__(message, status_code=status.HTTP_401_UNAUTHORIZED, details=details)


class ConflictError(DomainError):
    """Resource conflict (409)."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message, status_code=status.HTTP_409_CONFLICT, details=details)


# ── Order core ──────────────────────────────────────────────────────


class PaymentNotConfirmedError(DomainError):
    """Stripe session could not be resolved or is not paid (402)."""
    def __init__(self, message: str = "Payment not confirmed", details: dict | None = None):
        super().__init__(message, status_code=status.HTTP_402_PAYMENT_REQUIRED, details=details)


class InvalidSessionMetadataError(ValidationError):
    """Checkout session metadata is missing or malformed (400)."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message, field="session.metadata", details=details)


class BuyerMismatchError(PermissionDeniedError):
    """Session belongs to a different buyer (403). Never retried."""
    def __init__(self, message: str = "Checkout session belongs to a different buyer", details: dict | None = None):
        super().__init__(message, details=details)


class AlreadyTerminalError(ConflictError):
    """Order is already cancelled or archived (409)."""
    def __init__(self, order_id: int, order_status: str):
        super().__init__(
            f"Order {order_id} is already {order_status}",
            details={"order_id": order_id, "status": order_status},
        )


class ItemNoLongerAvailableError(ConflictError):
    """
    One or more puppies were claimed by someone else (409).

    Recoverable: the client should refresh the cart and retry.
    """
    def __init__(self, puppy_ids: list[int]):
        super().__init__(
            f"Puppies no longer available: {', '.join(str(p) for p in puppy_ids)}",
            details={"puppy_ids": puppy_ids, "action": "refresh_cart"},
        )


class CatalogSyncFailedError(DomainError):
    """Stripe catalog write failed after the retry budget (502)."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message, status_code=status.HTTP_502_BAD_GATEWAY, details=details)

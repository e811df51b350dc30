"""
Error Taxonomy — typed exceptions mapped to JSON error bodies at the API boundary.
"""
from typing import Optional


class StorefrontError(Exception):
    """Base class for all errors surfaced to API clients."""

    status_code: int = 500
    error_code: str = "INTERNAL_ERROR"

    def __init__(self, detail: str = "", error_code: Optional[str] = None):
        super().__init__(detail)
        self.detail = detail or self.__class__.__name__
        if error_code:
            self.error_code = error_code


class ValidationError(StorefrontError):
    status_code = 400
    error_code = "VALIDATION_ERROR"


class AuthError(StorefrontError):
    status_code = 401
    error_code = "AUTH_REQUIRED"


class ForbiddenError(AuthError):
    status_code = 403
    error_code = "FORBIDDEN"


class NotFoundError(StorefrontError):
    status_code = 404
    error_code = "NOT_FOUND"


class RateLimitedError(StorefrontError):
    status_code = 429
    error_code = "RATE_LIMITED"

    def __init__(self, detail: str = "Too many requests. Please try again later.", retry_after: int = 60):
        super().__init__(detail)
        self.retry_after = max(1, int(retry_after))


class SignatureError(StorefrontError):
    """Fatal for the attempt; never retried."""
    status_code = 400
    error_code = "INVALID_SIGNATURE"


class StockError(StorefrontError):
    """Fatal for the attempt; the shopper can pick alternatives."""
    status_code = 409
    error_code = "OUT_OF_STOCK"


class AmountMismatchError(StorefrontError):
    status_code = 409
    error_code = "AMOUNT_MISMATCH"


class ConflictError(StorefrontError):
    """Uniqueness violation from a concurrent write."""
    status_code = 409
    error_code = "CONFLICT"


class GatewayError(StorefrontError):
    """Transient gateway failure; resolved later by the reconciliation sweep."""
    status_code = 502
    error_code = "GATEWAY_ERROR"


class GatewayTimeoutError(GatewayError):
    status_code = 504
    error_code = "GATEWAY_TIMEOUT"

"""Custom exceptions for application-specific error handling."""

from __future__ import annotations

from typing import Optional, Dict, Any


class VerificationServiceException(Exception):
    """Base exception for all application errors."""

    def __init__(
        self,
        message: str,
        *,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        status_code: int = 400,
        headers: Optional[Dict[str, str]] = None,
    ):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        self.status_code = status_code
        self.headers = headers
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "error_code": self.error_code,
            "details": self.details,
        }


class NotFoundError(VerificationServiceException):
    """Raised when a requested resource is not found."""

    def __init__(self, message: str = "not_found", *, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, error_code="NOT_FOUND", details=details, status_code=404)


class ConflictError(VerificationServiceException):
    """Raised when a request conflicts with current state."""

    def __init__(self, message: str = "conflict", *, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, error_code="CONFLICT", details=details, status_code=409)


class BadRequestError(VerificationServiceException):
    """Raised when request is invalid."""

    def __init__(self, message: str = "bad_request", *, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, error_code="BAD_REQUEST", details=details, status_code=400)


class RateLimitExceeded(VerificationServiceException):
    """Raised when a client exceeds rate limits."""

    def __init__(self, *, retry_after: int, limit: int, window_seconds: int):
        headers = {
            "Retry-After": str(retry_after),
            "X-RateLimit-Limit": str(limit),
            "X-RateLimit-Window": str(window_seconds),
        }
        super().__init__(
            "rate_limit_exceeded",
            error_code="RATE_LIMIT",
            details={"retry_after": retry_after, "limit": limit, "window_seconds": window_seconds},
            status_code=429,
            headers=headers,
        )


# ===== ACCOUNT EXCEPTIONS =====


class AccountException(VerificationServiceException):
    """Base exception for account precondition failures."""


class AccountNotFound(AccountException):
    """Raised when the account does not exist."""

    def __init__(self, message: str = "account_not_found"):
        super().__init__(message, error_code="ACCOUNT_NOT_FOUND", status_code=404)


class AccountAlreadyVerified(AccountException):
    """Raised when a token is requested for an account that is already verified."""

    def __init__(self, message: str = "account_already_verified"):
        super().__init__(message, error_code="ACCOUNT_ALREADY_VERIFIED", status_code=409)


# ===== TOKEN EXCEPTIONS =====


class VerificationError(VerificationServiceException):
    """Base exception for rejected verification tokens."""


class DuplicateToken(VerificationError):
    """Raised when a freshly generated token value already exists."""

    def __init__(self, message: str = "duplicate_token"):
        super().__init__(message, error_code="DUPLICATE_TOKEN", status_code=409)


class TokenNotFound(VerificationError):
    """Raised when the token is unknown."""

    def __init__(self, message: str = "token_not_found"):
        super().__init__(message, error_code="TOKEN_NOT_FOUND", status_code=404)


class TokenExpired(VerificationError):
    """Raised when the token is past its expiry; a new link must be requested."""

    def __init__(self, message: str = "token_expired"):
        super().__init__(
            message,
            error_code="TOKEN_EXPIRED",
            details={"resend_allowed": True},
            status_code=410,
        )


class TokenAlreadyConsumed(VerificationError):
    """Raised when the token was already used or superseded."""

    def __init__(self, message: str = "token_already_consumed", *, account_verified: bool = False):
        super().__init__(
            message,
            error_code="TOKEN_ALREADY_CONSUMED",
            details={"account_verified": account_verified},
            status_code=409,
        )


# ===== DELIVERY EXCEPTIONS =====


class DeliveryException(VerificationServiceException):
    """Base exception for notification delivery errors."""


class DeliveryTransientFailure(DeliveryException):
    """Raised when the mail transport fails in a way worth retrying."""

    def __init__(self, message: str = "delivery_transient_failure"):
        super().__init__(message, error_code="DELIVERY_TRANSIENT", status_code=503)


class DeliveryPermanentFailure(DeliveryException):
    """Raised when the mail transport rejects the message for good."""

    def __init__(self, message: str = "delivery_permanent_failure"):
        super().__init__(message, error_code="DELIVERY_PERMANENT", status_code=502)


# ===== CONFIGURATION / AUTH EXCEPTIONS =====


class InvalidConfigurationError(VerificationServiceException):
    """Raised when configuration is invalid."""

    def __init__(self, message: str, setting: Optional[str] = None):
        details = {"setting": setting} if setting else {}
        super().__init__(message, error_code="INVALID_CONFIG", details=details, status_code=500)


class InvalidAPIKeyError(VerificationServiceException):
    """Raised when the operator API key is missing or invalid."""

    def __init__(self, message: str = "Invalid API key"):
        super().__init__(message, error_code="INVALID_API_KEY", status_code=401)

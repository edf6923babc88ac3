from __future__ import annotations

from typing import Any, Dict, Optional


class BaseAPIException(Exception):
    """Base exception for all API errors."""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.code = code or self.__class__.__name__
        self.details = details or {}
        self.headers = headers or {}
        super().__init__(self.message)

    def to_body(self) -> Dict[str, Any]:
        """Render the error in the public response shape."""
        body: Dict[str, Any] = {
            "success": False,
            "error": self.code,
            "message": self.message,
        }
        body.update(self.details)
        return body


class ValidationError(BaseAPIException):
    """Validation error."""
    def __init__(self, message: str = "Validation error", **kwargs):
        kwargs.setdefault("code", "VALIDATION_ERROR")
        super().__init__(message, status_code=400, **kwargs)


class AuthenticationError(BaseAPIException):
    """Authentication failed."""
    def __init__(self, message: str = "Authentication failed", **kwargs):
        kwargs.setdefault("code", "UNAUTHORIZED")
        super().__init__(message, status_code=401, **kwargs)


class AuthorizationError(BaseAPIException):
    """Authorization failed."""
    def __init__(self, message: str = "Authorization failed", **kwargs):
        kwargs.setdefault("code", "FORBIDDEN")
        super().__init__(message, status_code=403, **kwargs)


class NotFoundError(BaseAPIException):
    """Resource not found."""
    def __init__(self, message: str = "Resource not found", **kwargs):
        kwargs.setdefault("code", "NOT_FOUND")
        super().__init__(message, status_code=404, **kwargs)


class ConflictError(BaseAPIException):
    """Resource conflict."""
    def __init__(self, message: str = "Resource conflict", **kwargs):
        kwargs.setdefault("code", "CONFLICT")
        super().__init__(message, status_code=409, **kwargs)


class DuplicateLeadError(ConflictError):
    """Same normalized phone already submitted today.

    A soft reject: the caller should treat it as a resubmission of an order
    that already exists, not as a system fault.
    """
    def __init__(self, message: str = "Duplicate lead: this phone number already has an order today", **kwargs):
        kwargs.setdefault("code", "DUPLICATE_LEAD")
        super().__init__(message, **kwargs)


class ConcurrentTransitionConflict(ConflictError):
    """Lead changed between read and conditional write."""
    def __init__(self, message: str = "Lead was modified concurrently, reload and retry", **kwargs):
        kwargs.setdefault("code", "CONCURRENT_TRANSITION")
        super().__init__(message, **kwargs)


class InvalidTransitionError(BaseAPIException):
    """Status transition not allowed by the lead lifecycle."""
    def __init__(self, message: str = "Invalid status transition", **kwargs):
        kwargs.setdefault("code", "INVALID_TRANSITION")
        super().__init__(message, status_code=400, **kwargs)


class RateLimitError(BaseAPIException):
    """Rate limit exceeded."""
    def __init__(self, message: str = "Rate limit exceeded", retry_after: Optional[int] = None, **kwargs):
        kwargs.setdefault("code", "RATE_LIMIT_EXCEEDED")
        super().__init__(message, status_code=429, **kwargs)
        self.retry_after = retry_after
        if retry_after is not None:
            self.details.setdefault("retryAfter", retry_after)
            self.headers.setdefault("Retry-After", str(retry_after))


class NoPayoutConfiguredError(BaseAPIException):
    """Product has neither an override nor a default payout (data integrity fault)."""
    def __init__(self, message: str = "No payout configured for product", **kwargs):
        kwargs.setdefault("code", "NO_PAYOUT_CONFIGURED")
        super().__init__(message, status_code=500, **kwargs)


class DatabaseError(BaseAPIException):
    """Database error."""
    def __init__(self, message: str = "Database error", **kwargs):
        kwargs.setdefault("code", "DATABASE_ERROR")
        super().__init__(message, status_code=500, **kwargs)

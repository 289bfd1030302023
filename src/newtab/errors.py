"""Classified failures shared by every provider and the Google session manager.

The taxonomy is closed: Auth, RateLimit, Network and Validation. Errors that
already belong to one of these kinds cross layer boundaries unchanged; anything
else is wrapped once into :class:`ProviderOperationError` with an operation
label.
"""

from __future__ import annotations

import email.utils
import math
from datetime import datetime, timezone
from typing import Any, Optional

SESSION_EXPIRED_MESSAGE = "Session expired. Please sign in again."


class ProviderError(RuntimeError):
    """Base class for every classified provider failure."""

    code = "provider_error"
    default_user_message = "Something went wrong. Please try again."

    def __init__(self, message: str, *, user_message: Optional[str] = None) -> None:
        super().__init__(message)
        self.user_message = user_message or self.default_user_message


class AuthError(ProviderError):
    """Token missing, invalid, expired or rejected by the remote service."""

    code = "auth"
    default_user_message = "Authentication failed. Please sign in again."

    @classmethod
    def unauthorized(cls, message: str) -> "AuthError":
        return cls(message)

    @classmethod
    def not_signed_in(cls, message: str = "Not signed in") -> "AuthError":
        return cls(message, user_message="Please sign in to continue.")


class SessionExpiredError(AuthError):
    """Raised once the access token can be neither refreshed nor reused."""

    code = "session_expired"
    default_user_message = SESSION_EXPIRED_MESSAGE

    def __init__(self, message: str = SESSION_EXPIRED_MESSAGE) -> None:
        super().__init__(message)


class RateLimitError(ProviderError):
    """HTTP 429 from the remote service."""

    code = "rate_limit"
    default_user_message = "Too many requests. Please wait a moment."

    def __init__(self, message: str, *, retry_after: Optional[int] = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after

    @classmethod
    def from_header(cls, value: Optional[str], message: str) -> "RateLimitError":
        return cls(message, retry_after=parse_retry_after(value))


class NetworkError(ProviderError):
    """Transport failure or a 5xx response."""

    code = "network"
    default_user_message = "Network error. Check your connection and try again."

    def __init__(self, message: str, *, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status

    @classmethod
    def from_status(cls, status: int, reason: str = "") -> "NetworkError":
        detail = f"{status} {reason}".strip()
        return cls(f"Server error: {detail}", status=status)

    @classmethod
    def from_exception(cls, exc: BaseException) -> "NetworkError":
        error = cls(f"Network request failed: {exc}")
        error.__cause__ = exc
        return error


class ValidationError(ProviderError):
    """Malformed input, malformed stored data, or a non-auth 4xx response."""

    code = "validation"
    default_user_message = "The request could not be completed."

    def __init__(self, message: str, *, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status

    @classmethod
    def invalid_response(
        cls, message: str, *, status: Optional[int] = None
    ) -> "ValidationError":
        return cls(message, status=status)

    @classmethod
    def parse_error(
        cls, message: str, cause: Optional[BaseException] = None
    ) -> "ValidationError":
        error = cls(message)
        if cause is not None:
            error.__cause__ = cause
        return error


class ProviderOperationError(ProviderError):
    """An unclassified failure wrapped with the operation that raised it."""

    code = "operation_failed"

    def __init__(self, operation: str, cause: BaseException) -> None:
        super().__init__(f"{operation} failed: {cause}")
        self.operation = operation
        self.__cause__ = cause


def parse_retry_after(value: Optional[str]) -> Optional[int]:
    """Parse a Retry-After header given as delta-seconds or an HTTP date."""

    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    try:
        return max(0, math.ceil(float(text)))
    except ValueError:
        pass
    try:
        when = email.utils.parsedate_to_datetime(text)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    delta = (when - datetime.now(timezone.utc)).total_seconds()
    return max(0, math.ceil(delta))


def classify_status(
    status: int,
    *,
    message: str,
    retry_after: Optional[str] = None,
    reason: str = "",
) -> ProviderError:
    """Map an HTTP status code onto the taxonomy."""

    if status in (401, 403):
        return AuthError.unauthorized(message)
    if status == 429:
        return RateLimitError.from_header(retry_after, message)
    if 400 <= status < 500:
        return ValidationError.invalid_response(message, status=status)
    return NetworkError.from_status(status, reason)


def classify_google_error(exc: Any, operation: str) -> ProviderError:
    """Classify a ``googleapiclient.errors.HttpError`` (or transport failure)."""

    if isinstance(exc, ProviderError):
        return exc
    resp = getattr(exc, "resp", None)
    status = getattr(resp, "status", None)
    if status is not None:
        try:
            status_code = int(status)
        except (TypeError, ValueError):
            status_code = 0
        if status_code:
            retry_after = resp.get("retry-after") if hasattr(resp, "get") else None
            reason = getattr(resp, "reason", "") or ""
            return classify_status(
                status_code,
                message=f"{operation} failed: HTTP {status_code} {reason}".strip(),
                retry_after=retry_after,
                reason=reason,
            )
    if isinstance(exc, (OSError, TimeoutError)):
        return NetworkError.from_exception(exc)
    return wrap_error(exc, operation)


def wrap_error(exc: BaseException, operation: str) -> ProviderError:
    """Return ``exc`` if already classified, otherwise wrap it once."""

    if isinstance(exc, ProviderError):
        return exc
    return ProviderOperationError(operation, exc)


__all__ = [
    "SESSION_EXPIRED_MESSAGE",
    "ProviderError",
    "AuthError",
    "SessionExpiredError",
    "RateLimitError",
    "NetworkError",
    "ValidationError",
    "ProviderOperationError",
    "parse_retry_after",
    "classify_status",
    "classify_google_error",
    "wrap_error",
]

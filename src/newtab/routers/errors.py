"""Translate classified provider failures into HTTP responses."""

from __future__ import annotations

import logging

from fastapi import HTTPException, status

from newtab.errors import (
    AuthError,
    NetworkError,
    ProviderError,
    RateLimitError,
    ValidationError,
)
from newtab.services.google_auth import SignInCancelledError

logger = logging.getLogger(__name__)


def to_http_exception(exc: ProviderError) -> HTTPException:
    detail = {"error": exc.code, "message": str(exc), "user_message": exc.user_message}
    headers = None

    if isinstance(exc, SignInCancelledError):
        status_code = status.HTTP_409_CONFLICT
    elif isinstance(exc, AuthError):
        status_code = status.HTTP_401_UNAUTHORIZED
    elif isinstance(exc, RateLimitError):
        status_code = status.HTTP_429_TOO_MANY_REQUESTS
        if exc.retry_after is not None:
            headers = {"Retry-After": str(exc.retry_after)}
    elif isinstance(exc, ValidationError):
        status_code = status.HTTP_400_BAD_REQUEST
    elif isinstance(exc, NetworkError):
        status_code = status.HTTP_502_BAD_GATEWAY
    else:
        status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    logger.warning("%s -> HTTP %d: %s", type(exc).__name__, status_code, exc)
    return HTTPException(status_code=status_code, detail=detail, headers=headers)


__all__ = ["to_http_exception"]

"""Persisted Google OAuth token state in the local storage area."""

from __future__ import annotations

import datetime
import logging
from typing import Callable, Optional

from newtab.storage import StorageArea
from newtab.utils.datetime_utils import from_epoch_ms, local_now, to_epoch_ms

logger = logging.getLogger(__name__)

TOKEN_KEY = "google_oauth_token"
TOKEN_EXPIRY_KEY = "google_oauth_token_expiry"
USER_EMAIL_KEY = "google_user_email"
SCOPES_KEY = "google_granted_scopes"

DEFAULT_TOKEN_LIFETIME_SECONDS = 3600
REFRESH_BUFFER = datetime.timedelta(minutes=5)

TASKS_SCOPE = "https://www.googleapis.com/auth/tasks"
CALENDAR_SCOPE = "https://www.googleapis.com/auth/calendar.events"
CALENDAR_READONLY_SCOPE = "https://www.googleapis.com/auth/calendar.readonly"
EMAIL_SCOPE = "https://www.googleapis.com/auth/userinfo.email"
MEET_SCOPE = CALENDAR_SCOPE
SCOPES = [TASKS_SCOPE, CALENDAR_READONLY_SCOPE, CALENDAR_SCOPE, EMAIL_SCOPE]


def _lifetime_seconds(expires_in: object) -> int:
    try:
        seconds = int(str(expires_in))
    except (TypeError, ValueError):
        return DEFAULT_TOKEN_LIFETIME_SECONDS
    return seconds if seconds > 0 else DEFAULT_TOKEN_LIFETIME_SECONDS


class TokenStore:
    """Read and write the token, its expiry, the email and granted scopes."""

    def __init__(
        self,
        storage: StorageArea,
        *,
        now: Callable[[], datetime.datetime] = local_now,
    ) -> None:
        self._storage = storage
        self._now = now

    async def get_access_token(self) -> Optional[str]:
        return await self._storage.get(TOKEN_KEY, None)

    async def get_user_email(self) -> Optional[str]:
        return await self._storage.get(USER_EMAIL_KEY, None)

    async def get_expiry(self) -> Optional[datetime.datetime]:
        raw = await self._storage.get(TOKEN_EXPIRY_KEY, None)
        if raw is None:
            return None
        try:
            return from_epoch_ms(int(raw))
        except (TypeError, ValueError):
            logger.warning("Ignoring malformed token expiry %r", raw)
            return None

    async def store_tokens(
        self,
        access_token: str,
        expires_in: object = None,
        email: Optional[str] = None,
    ) -> datetime.datetime:
        """Persist a token with ``expiry = now + expires_in`` seconds."""

        lifetime = _lifetime_seconds(expires_in)
        expiry = self._now() + datetime.timedelta(seconds=lifetime)

        await self._storage.set(TOKEN_KEY, access_token)
        await self._storage.set(TOKEN_EXPIRY_KEY, to_epoch_ms(expiry))
        if email:
            await self._storage.set(USER_EMAIL_KEY, email)

        logger.info(
            "Tokens stored (email=%s, expires in %d minutes, at %s)",
            email,
            round(lifetime / 60),
            expiry.isoformat(),
        )
        return expiry

    async def store_scopes(self, scope: str) -> None:
        await self._storage.set(SCOPES_KEY, scope)

    async def get_scopes(self) -> list[str]:
        scopes = await self._storage.get(SCOPES_KEY, "")
        return [scope for scope in str(scopes or "").split(" ") if scope]

    async def clear_tokens(self) -> None:
        logger.info("Clearing stored Google tokens")
        for key in (TOKEN_KEY, TOKEN_EXPIRY_KEY, USER_EMAIL_KEY, SCOPES_KEY):
            await self._storage.remove(key)

    async def is_token_expired(self) -> bool:
        expiry = await self.get_expiry()
        if expiry is None:
            return True
        return self._now() > expiry

    async def needs_refresh(self) -> bool:
        expiry = await self.get_expiry()
        if expiry is None:
            return True
        return self._now() > expiry - REFRESH_BUFFER


__all__ = [
    "TOKEN_KEY",
    "TOKEN_EXPIRY_KEY",
    "USER_EMAIL_KEY",
    "SCOPES_KEY",
    "SCOPES",
    "MEET_SCOPE",
    "REFRESH_BUFFER",
    "DEFAULT_TOKEN_LIFETIME_SECONDS",
    "TokenStore",
]

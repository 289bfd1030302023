"""Thin wrappers over Google's OAuth endpoints and API client builders."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

import google.oauth2.credentials
import httpx
from googleapiclient.discovery import build

logger = logging.getLogger(__name__)

TOKENINFO_URL = "https://www.googleapis.com/oauth2/v1/tokeninfo"
USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"
REVOKE_URL = "https://oauth2.googleapis.com/revoke"


@dataclass(frozen=True, slots=True)
class TokenInfo:
    """Subset of the tokeninfo introspection response."""

    scope: str = ""
    expires_in: Optional[int] = None
    email: Optional[str] = None


class GoogleOAuthAPI:
    """Token introspection, user info and revocation over ``httpx``."""

    def __init__(self, client: httpx.AsyncClient | None = None, timeout: float = 10.0) -> None:
        self._client = client
        self._timeout = timeout

    async def _get(self, url: str, **kwargs: Any) -> httpx.Response:
        if self._client is not None:
            return await self._client.get(url, **kwargs)
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            return await client.get(url, **kwargs)

    async def _post(self, url: str, **kwargs: Any) -> httpx.Response:
        if self._client is not None:
            return await self._client.post(url, **kwargs)
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            return await client.post(url, **kwargs)

    async def validate_token(self, token: str) -> Optional[TokenInfo]:
        """Return token details when Google accepts ``token``, otherwise None."""

        if not token:
            return None
        try:
            response = await self._get(TOKENINFO_URL, params={"access_token": token})
        except httpx.HTTPError as exc:
            logger.error("Token validation error: %s", exc)
            return None

        if response.status_code != 200:
            try:
                detail = response.json().get("error")
            except ValueError:
                detail = None
            logger.warning("Token validation failed: %s", detail or response.status_code)
            return None

        data = response.json()
        expires_in = data.get("expires_in")
        return TokenInfo(
            scope=data.get("scope", "") or "",
            expires_in=int(expires_in) if expires_in is not None else None,
            email=data.get("email"),
        )

    async def fetch_user_email(self, token: str) -> Optional[str]:
        try:
            response = await self._get(
                USERINFO_URL, headers={"Authorization": f"Bearer {token}"}
            )
        except httpx.HTTPError as exc:
            logger.warning("Failed to fetch user email: %s", exc)
            return None
        if response.status_code != 200:
            logger.warning("Failed to fetch user email: %s", response.status_code)
            return None
        return response.json().get("email")

    async def revoke_token(self, token: str) -> None:
        """Revoke ``token`` remotely; raises on transport or HTTP failure."""

        response = await self._post(
            REVOKE_URL,
            data={"token": token},
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )
        response.raise_for_status()


def _credentials_for(token: str) -> Any:
    return google.oauth2.credentials.Credentials(token=token)


def build_tasks_service(token: str) -> Any:
    """Google Tasks API service authorized with a bare access token."""

    return build("tasks", "v1", credentials=_credentials_for(token), cache_discovery=False)


def build_calendar_service(token: str) -> Any:
    """Google Calendar API service authorized with a bare access token."""

    return build("calendar", "v3", credentials=_credentials_for(token), cache_discovery=False)


__all__ = [
    "TokenInfo",
    "GoogleOAuthAPI",
    "build_tasks_service",
    "build_calendar_service",
]

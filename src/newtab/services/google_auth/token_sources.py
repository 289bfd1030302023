"""Strategies for obtaining Google access tokens."""

from __future__ import annotations

import asyncio
import datetime
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, List, Optional, Protocol

import google.oauth2.credentials
from google.auth.exceptions import RefreshError
from google.auth.transport.requests import Request
from google_auth_oauthlib.flow import InstalledAppFlow

from newtab.errors import AuthError

from .implicit_flow import ImplicitFlow, OAuthFlowError

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class TokenGrant:
    access_token: str
    expires_in: Optional[int] = None


class TokenSource(Protocol):
    """How a token is acquired and given up."""

    async def acquire(self, interactive: bool) -> Optional[TokenGrant]: ...

    async def revoke(self, token: str) -> None: ...


def _seconds_until(expiry: Optional[datetime.datetime]) -> Optional[int]:
    if expiry is None:
        return None
    # google-auth keeps expiry as naive UTC
    now = datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None)
    return max(0, int((expiry - now).total_seconds()))


class InstalledAppTokenSource:
    """Host token API backed by ``google_auth_oauthlib``'s installed-app flow.

    Refresh-capable credentials are cached as JSON under the data directory so
    silent renewal works across restarts.
    """

    def __init__(
        self,
        *,
        client_secrets_path: Path,
        credentials_path: Path,
        scopes: List[str],
        flow_factory: Optional[Callable[[], Any]] = None,
    ) -> None:
        self._client_secrets_path = client_secrets_path
        self._credentials_path = credentials_path
        self._scopes = list(scopes)
        self._flow_factory = flow_factory or self._default_flow

    def _default_flow(self) -> Any:
        if not self._client_secrets_path.exists():
            raise AuthError(
                f"Client secrets file not found at {self._client_secrets_path}."
                " Download it from Google Cloud Console."
            )
        return InstalledAppFlow.from_client_secrets_file(
            str(self._client_secrets_path), scopes=self._scopes
        )

    def _load_credentials(self) -> Optional[Any]:
        if not self._credentials_path.exists():
            return None
        try:
            return google.oauth2.credentials.Credentials.from_authorized_user_file(
                str(self._credentials_path), self._scopes
            )
        except ValueError as exc:
            logger.warning(
                "Ignoring unreadable credentials at %s: %s", self._credentials_path, exc
            )
            return None

    def _store_credentials(self, credentials: Any) -> None:
        self._credentials_path.parent.mkdir(parents=True, exist_ok=True)
        self._credentials_path.write_text(credentials.to_json(), encoding="utf-8")

    def _acquire_blocking(self, interactive: bool) -> Optional[TokenGrant]:
        credentials = self._load_credentials()

        if credentials is not None and credentials.refresh_token:
            try:
                credentials.refresh(Request())
            except RefreshError as exc:
                logger.warning("Stored Google credentials could not be refreshed: %s", exc)
                credentials = None
            else:
                self._store_credentials(credentials)
                return TokenGrant(credentials.token, _seconds_until(credentials.expiry))

        if credentials is not None and credentials.valid:
            return TokenGrant(credentials.token, _seconds_until(credentials.expiry))

        if not interactive:
            return None

        flow = self._flow_factory()
        credentials = flow.run_local_server(port=0, open_browser=True)
        self._store_credentials(credentials)
        return TokenGrant(credentials.token, _seconds_until(credentials.expiry))

    async def acquire(self, interactive: bool) -> Optional[TokenGrant]:
        return await asyncio.to_thread(self._acquire_blocking, interactive)

    async def revoke(self, token: str) -> None:
        """Forget the cached credentials; the caller revokes remotely."""

        if self._credentials_path.exists():
            self._credentials_path.unlink()
            logger.info("Removed cached Google credentials at %s", self._credentials_path)


class ImplicitFlowTokenSource:
    """Web-app variant: popup for consent, hidden frame for silent renewal."""

    def __init__(self, flow: ImplicitFlow) -> None:
        self._flow = flow

    @property
    def flow(self) -> ImplicitFlow:
        return self._flow

    async def acquire(self, interactive: bool) -> Optional[TokenGrant]:
        if interactive:
            token, expires_in = await self._flow.sign_in_with_popup()
            return TokenGrant(token, expires_in)

        try:
            token, expires_in = await self._flow.refresh_access_token()
        except OAuthFlowError as exc:
            logger.warning("Silent token refresh failed: %s", exc)
            return None
        return TokenGrant(token, expires_in)

    async def revoke(self, token: str) -> None:
        # Implicit grants carry no local state beyond the stored token.
        return None


__all__ = [
    "TokenGrant",
    "TokenSource",
    "InstalledAppTokenSource",
    "ImplicitFlowTokenSource",
]

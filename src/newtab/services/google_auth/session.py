"""Google session state machine shared by the Google task and calendar providers.

States are ``SIGNED_OUT``, ``UNKNOWN`` (a stored email exists but the token is
unverified) and ``AUTHENTICATED``. A refresh in flight is reported through
``AuthState.refreshing`` without leaving ``AUTHENTICATED``.
"""

from __future__ import annotations

import datetime
import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, List, Optional

from newtab.errors import AuthError, SessionExpiredError
from newtab.storage import StorageArea
from newtab.utils.datetime_utils import local_now

from .api import GoogleOAuthAPI
from .token_sources import TokenSource
from .token_store import MEET_SCOPE, TokenStore

logger = logging.getLogger(__name__)


class AuthStatus(str, Enum):
    SIGNED_OUT = "signed_out"
    UNKNOWN = "unknown"
    AUTHENTICATED = "authenticated"


@dataclass(frozen=True, slots=True)
class AuthState:
    status: AuthStatus = AuthStatus.SIGNED_OUT
    email: Optional[str] = None
    refreshing: bool = False


StateListener = Callable[[AuthState], None]


class GoogleSessionManager:
    """Single owner of the persisted Google token keys."""

    def __init__(
        self,
        storage: StorageArea,
        token_source: TokenSource,
        *,
        api: Optional[GoogleOAuthAPI] = None,
        now: Callable[[], datetime.datetime] = local_now,
    ) -> None:
        self._store = TokenStore(storage, now=now)
        self._source = token_source
        self._api = api or GoogleOAuthAPI()
        self._state = AuthState()
        self._listeners: List[StateListener] = []

    @property
    def state(self) -> AuthState:
        return self._state

    @property
    def token_store(self) -> TokenStore:
        return self._store

    @property
    def user_email(self) -> Optional[str]:
        return self._state.email

    def is_signed_in(self) -> bool:
        return self._state.status is AuthStatus.AUTHENTICATED

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _set_state(self, state: AuthState) -> None:
        if state == self._state:
            return
        self._state = state
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception:
                logger.exception("Auth state listener failed")

    async def initialize(self) -> AuthState:
        """Load the last known email; validity is decided later."""

        email = await self._store.get_user_email()
        self._set_state(AuthState(AuthStatus.UNKNOWN, email))
        return self._state

    async def sign_in(self) -> AuthState:
        try:
            grant = await self._source.acquire(interactive=True)
            if grant is None or not grant.access_token:
                raise AuthError.unauthorized("No token received")

            info = await self._api.validate_token(grant.access_token)
            if info is None:
                raise AuthError.unauthorized("Token validation failed")
            await self._store.store_scopes(info.scope)

            email = await self._api.fetch_user_email(grant.access_token)
            if email is None:
                logger.warning("Signed in without a Google account email")

            expires_in = grant.expires_in if grant.expires_in is not None else info.expires_in
            await self._store.store_tokens(grant.access_token, expires_in, email)
        except Exception as exc:
            logger.error("Google sign-in failed: %s", exc)
            self._set_state(AuthState(AuthStatus.SIGNED_OUT))
            raise

        self._set_state(AuthState(AuthStatus.AUTHENTICATED, email))
        logger.info("Signed in to Google as %s", email)
        return self._state

    async def try_silent_restore(self) -> bool:
        """Acquire a token without prompting and adopt it if Google accepts it.

        Any failure along the way ends in ``SIGNED_OUT``.
        """

        try:
            grant = await self._source.acquire(interactive=False)
            if grant is None or not grant.access_token:
                logger.info("No Google token available for silent restore")
                self._set_state(AuthState(AuthStatus.SIGNED_OUT))
                return False

            info = await self._api.validate_token(grant.access_token)
            if info is None:
                logger.info("Silently acquired Google token failed validation")
                self._set_state(AuthState(AuthStatus.SIGNED_OUT))
                return False

            await self._store.store_scopes(info.scope)
            email = await self._store.get_user_email() or info.email
            expires_in = grant.expires_in if grant.expires_in is not None else info.expires_in
            await self._store.store_tokens(grant.access_token, expires_in, email)
        except Exception as exc:
            logger.warning("Silent Google session restore failed: %s", exc)
            self._set_state(AuthState(AuthStatus.SIGNED_OUT))
            return False

        self._set_state(AuthState(AuthStatus.AUTHENTICATED, email))
        return True

    async def refresh_token(self) -> str:
        """Renew the access token silently and persist it."""

        self._set_state(replace(self._state, refreshing=True))
        try:
            grant = await self._source.acquire(interactive=False)
            if grant is None or not grant.access_token:
                raise AuthError.unauthorized("Token refresh failed")

            email = await self._store.get_user_email()
            await self._store.store_tokens(grant.access_token, grant.expires_in, email)
            self._set_state(AuthState(AuthStatus.AUTHENTICATED, email, refreshing=True))
            logger.info("Google access token refreshed")
            return grant.access_token
        finally:
            if self._state.refreshing:
                self._set_state(replace(self._state, refreshing=False))

    async def ensure_valid_token(self) -> str:
        """Return a usable access token, refreshing inside the 5-minute buffer."""

        token = await self._store.get_access_token()
        if not token:
            raise AuthError.not_signed_in("Not signed in")

        if not await self._store.needs_refresh():
            return token

        try:
            return await self.refresh_token()
        except Exception as exc:
            if not await self._store.is_token_expired():
                logger.warning("Token refresh failed, using existing token: %s", exc)
                return token

            logger.error("Token refresh failed and the token has expired: %s", exc)
            await self._store.clear_tokens()
            self._set_state(AuthState(AuthStatus.SIGNED_OUT))
            raise SessionExpiredError() from exc

    async def sign_out(self) -> None:
        token = await self._store.get_access_token()
        if token:
            try:
                await self._source.revoke(token)
            except Exception as exc:
                logger.warning("Token source revocation failed: %s", exc)
            try:
                await self._api.revoke_token(token)
            except Exception as exc:
                logger.warning("Remote token revocation failed: %s", exc)

        await self._store.clear_tokens()
        self._set_state(AuthState(AuthStatus.SIGNED_OUT))
        logger.info("Signed out of Google")

    async def has_scope(self, scope: str) -> bool:
        return scope in await self._store.get_scopes()

    async def has_meet_scope(self) -> bool:
        return await self.has_scope(MEET_SCOPE)


__all__ = ["AuthStatus", "AuthState", "GoogleSessionManager"]

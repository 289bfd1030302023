"""Browser-side OAuth implicit flow: popup sign-in and hidden-frame refresh.

The redirect target (``/api/google-auth/callback``) relays the URL fragment
back to the service, where it is published on a :class:`MessageChannel`
tagged with the sender's origin. :class:`ImplicitFlow` listens on that channel
and settles a single-fire :class:`OAuthRendezvous` with the first acceptable
message.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
import webbrowser
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Generic, List, Optional, Protocol, TypeVar
from urllib.parse import urlencode

from newtab.errors import AuthError

logger = logging.getLogger(__name__)

AUTH_ENDPOINT = "https://accounts.google.com/o/oauth2/v2/auth"
MESSAGE_TYPE = "oauth-callback"
CANCEL_MESSAGE_TYPE = "oauth-cancel"
STATE_KEY = "oauth_state"
POPUP_POLL_INTERVAL = 0.5
POPUP_TIMEOUT = 300.0

T = TypeVar("T")


class OAuthFlowError(AuthError):
    """The authorization server or the relay reported a failure."""


class SilentRefreshTimeout(OAuthFlowError):
    def __init__(self, message: str = "Silent refresh timeout") -> None:
        super().__init__(message)


class SignInCancelledError(OAuthFlowError):
    def __init__(self, message: str = "Sign-in cancelled") -> None:
        super().__init__(message, user_message="Sign-in was cancelled.")


class PopupBlockedError(OAuthFlowError):
    def __init__(self, message: str = "Popup blocked") -> None:
        super().__init__(message, user_message="Allow popups to sign in.")


@dataclass(frozen=True, slots=True)
class OAuthMessage:
    """A relayed callback payload and the origin it was posted from."""

    origin: str
    data: Dict[str, Any] = field(default_factory=dict)


MessageListener = Callable[[OAuthMessage], None]


class MessageChannel:
    """In-process fan-out of relayed OAuth callback messages."""

    def __init__(self) -> None:
        self._listeners: List[MessageListener] = []

    def subscribe(self, listener: MessageListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def publish(self, message: OAuthMessage) -> int:
        """Deliver ``message`` to every current listener; returns the count."""

        listeners = list(self._listeners)
        for listener in listeners:
            listener(message)
        return len(listeners)

    @property
    def listener_count(self) -> int:
        return len(self._listeners)


class FrameHandle(Protocol):
    @property
    def closed(self) -> bool: ...

    def close(self) -> None: ...


class FrameHost(Protocol):
    """Opens authorization URLs in a hidden frame or a visible popup."""

    def open_hidden(self, url: str) -> FrameHandle: ...

    def open_popup(self, url: str) -> Optional[FrameHandle]: ...


class _BrowserTab:
    """A tab opened through ``webbrowser``.

    The browser does not report tab lifetimes, so ``closed`` flips only when
    the flow finishes with it or a cancel message arrives on the channel.
    """

    def __init__(self, on_close: Callable[["_BrowserTab"], None]) -> None:
        self.closed = False
        self._on_close = on_close

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._on_close(self)


class WebbrowserFrameHost:
    """Frame host for a service running on the user's own desktop.

    With a ``channel``, a ``CANCEL_MESSAGE_TYPE`` message marks every open tab
    closed, which ends a waiting popup sign-in as cancelled.
    """

    def __init__(
        self,
        opener: Callable[..., bool] = webbrowser.open,
        *,
        channel: Optional[MessageChannel] = None,
    ) -> None:
        self._opener = opener
        self._tabs: List[_BrowserTab] = []
        if channel is not None:
            channel.subscribe(self._handle_message)

    @property
    def open_tabs(self) -> int:
        return len(self._tabs)

    def _track(self) -> _BrowserTab:
        tab = _BrowserTab(self._forget)
        self._tabs.append(tab)
        return tab

    def _forget(self, tab: _BrowserTab) -> None:
        if tab in self._tabs:
            self._tabs.remove(tab)

    def close_all(self) -> int:
        tabs = list(self._tabs)
        for tab in tabs:
            tab.close()
        return len(tabs)

    def _handle_message(self, message: OAuthMessage) -> None:
        if isinstance(message.data, dict) and message.data.get("type") == CANCEL_MESSAGE_TYPE:
            closed = self.close_all()
            logger.info("Sign-in cancelled; marked %d browser tab(s) closed", closed)

    def open_hidden(self, url: str) -> FrameHandle:
        self._opener(url, new=2, autoraise=False)
        return self._track()

    def open_popup(self, url: str) -> Optional[FrameHandle]:
        if not self._opener(url, new=1, autoraise=True):
            return None
        return self._track()


class OAuthRendezvous(Generic[T]):
    """Single-fire latch: the first resolve or reject wins, the rest are ignored."""

    def __init__(self) -> None:
        self._future: asyncio.Future[T] = asyncio.get_running_loop().create_future()

    @property
    def settled(self) -> bool:
        return self._future.done()

    def resolve(self, value: T) -> bool:
        if self._future.done():
            return False
        self._future.set_result(value)
        return True

    def reject(self, error: BaseException) -> bool:
        if self._future.done():
            return False
        self._future.set_exception(error)
        return True

    async def wait(self, timeout: Optional[float] = None) -> T:
        if timeout is None:
            return await self._future
        return await asyncio.wait_for(self._future, timeout)


TokenResult = tuple[str, Optional[int]]


class ImplicitFlow:
    """Implicit-grant helper bound to one client id and one page origin."""

    def __init__(
        self,
        *,
        client_id: str,
        redirect_uri: str,
        origin: str,
        scopes: List[str],
        frame_host: FrameHost,
        channel: MessageChannel,
        refresh_timeout: float = 10.0,
        poll_interval: float = POPUP_POLL_INTERVAL,
        popup_timeout: Optional[float] = POPUP_TIMEOUT,
        state_factory: Callable[[], str] = lambda: secrets.token_urlsafe(32),
    ) -> None:
        self._client_id = client_id
        self._redirect_uri = redirect_uri
        self._origin = origin.rstrip("/")
        self._scopes = list(scopes)
        self._frame_host = frame_host
        self._channel = channel
        self._refresh_timeout = refresh_timeout
        self._poll_interval = poll_interval
        self._popup_timeout = popup_timeout
        self._state_factory = state_factory
        # Process-lifetime nonce store; never persisted.
        self._nonces: Dict[str, str] = {}

    @property
    def pending_state(self) -> Optional[str]:
        return self._nonces.get(STATE_KEY)

    def build_auth_url(self, prompt: Optional[str] = None) -> str:
        state = self._state_factory()
        self._nonces[STATE_KEY] = state

        params = {
            "client_id": self._client_id,
            "redirect_uri": self._redirect_uri,
            "response_type": "token",
            "scope": " ".join(self._scopes),
            "state": state,
            "include_granted_scopes": "true",
        }
        if prompt:
            params["prompt"] = prompt
        return f"{AUTH_ENDPOINT}?{urlencode(params)}"

    async def refresh_access_token(self) -> TokenResult:
        """Renew the token in a hidden frame with ``prompt=none``."""

        url = self.build_auth_url(prompt="none")
        handle = self._frame_host.open_hidden(url)
        try:
            return await self._await_callback(handle, timeout=self._refresh_timeout)
        except asyncio.TimeoutError as exc:
            logger.warning("Silent refresh timed out after %.1fs", self._refresh_timeout)
            raise SilentRefreshTimeout() from exc

    async def sign_in_with_popup(self) -> TokenResult:
        """Interactive consent in a popup; ends on a matched message, close or timeout."""

        url = self.build_auth_url(prompt="consent")
        handle = self._frame_host.open_popup(url)
        if handle is None:
            self._nonces.pop(STATE_KEY, None)
            raise PopupBlockedError()
        try:
            return await self._await_callback(
                handle, timeout=self._popup_timeout, watch_closed=True
            )
        except asyncio.TimeoutError as exc:
            logger.warning("No sign-in result after %.0fs", self._popup_timeout)
            raise SignInCancelledError("Sign-in timed out") from exc

    async def _await_callback(
        self,
        handle: FrameHandle,
        *,
        timeout: Optional[float],
        watch_closed: bool = False,
    ) -> TokenResult:
        rendezvous: OAuthRendezvous[TokenResult] = OAuthRendezvous()
        unsubscribe = self._channel.subscribe(
            lambda message: self._handle_message(message, rendezvous)
        )
        watcher: Optional[asyncio.Task[None]] = None
        if watch_closed:
            watcher = asyncio.create_task(self._watch_closed(handle, rendezvous))

        try:
            return await rendezvous.wait(timeout)
        finally:
            unsubscribe()
            if watcher is not None:
                watcher.cancel()
            handle.close()
            self._nonces.pop(STATE_KEY, None)

    async def _watch_closed(
        self, handle: FrameHandle, rendezvous: OAuthRendezvous[TokenResult]
    ) -> None:
        while not rendezvous.settled:
            if handle.closed:
                rendezvous.reject(SignInCancelledError())
                return
            await asyncio.sleep(self._poll_interval)

    def _handle_message(
        self, message: OAuthMessage, rendezvous: OAuthRendezvous[TokenResult]
    ) -> None:
        if message.origin.rstrip("/") != self._origin:
            logger.debug("Ignoring OAuth message from foreign origin %s", message.origin)
            return
        data = message.data
        if not isinstance(data, dict) or data.get("type") != MESSAGE_TYPE:
            return
        if rendezvous.settled:
            return

        if data.get("error"):
            rendezvous.reject(
                OAuthFlowError(str(data.get("error_description") or data["error"]))
            )
            return

        expected = self._nonces.get(STATE_KEY)
        if not expected or data.get("state") != expected:
            rendezvous.reject(OAuthFlowError("State mismatch"))
            return

        token = data.get("access_token")
        if not token:
            rendezvous.reject(OAuthFlowError("No access token in response"))
            return

        expires_in = data.get("expires_in")
        try:
            lifetime = int(expires_in) if expires_in is not None else None
        except (TypeError, ValueError):
            lifetime = None
        rendezvous.resolve((str(token), lifetime))


__all__ = [
    "CANCEL_MESSAGE_TYPE",
    "FrameHandle",
    "FrameHost",
    "ImplicitFlow",
    "MessageChannel",
    "OAuthFlowError",
    "OAuthMessage",
    "OAuthRendezvous",
    "PopupBlockedError",
    "SignInCancelledError",
    "SilentRefreshTimeout",
    "WebbrowserFrameHost",
]

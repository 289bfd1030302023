"""Tests for the implicit-grant popup and hidden-frame flows."""

from __future__ import annotations

import asyncio
from typing import Optional
from unittest.mock import MagicMock
from urllib.parse import parse_qs, urlparse

import pytest

from newtab.errors import SessionExpiredError
from newtab.services.google_auth import (
    AuthStatus,
    GoogleSessionManager,
    ImplicitFlow,
    ImplicitFlowTokenSource,
    MessageChannel,
    OAuthFlowError,
    OAuthMessage,
    PopupBlockedError,
    SignInCancelledError,
    SilentRefreshTimeout,
)
from newtab.services.google_auth.implicit_flow import (
    CANCEL_MESSAGE_TYPE,
    MESSAGE_TYPE,
    WebbrowserFrameHost,
)

ORIGIN = "http://127.0.0.1:8000"
STATE = "nonce-123"


class FakeFrame:
    def __init__(self) -> None:
        self.closed = False
        self.close_calls = 0

    def close(self) -> None:
        self.close_calls += 1


class FakeFrameHost:
    def __init__(self, block_popups: bool = False) -> None:
        self.block_popups = block_popups
        self.urls: list[str] = []
        self.frames: list[FakeFrame] = []

    def _open(self, url: str) -> FakeFrame:
        self.urls.append(url)
        frame = FakeFrame()
        self.frames.append(frame)
        return frame

    def open_hidden(self, url: str) -> FakeFrame:
        return self._open(url)

    def open_popup(self, url: str) -> Optional[FakeFrame]:
        if self.block_popups:
            return None
        return self._open(url)


def _flow(host: FakeFrameHost, channel: MessageChannel, **kwargs) -> ImplicitFlow:
    return ImplicitFlow(
        client_id="client-id",
        redirect_uri=f"{ORIGIN}/api/google-auth/callback",
        origin=ORIGIN,
        scopes=["scope-a", "scope-b"],
        frame_host=host,
        channel=channel,
        poll_interval=0.01,
        state_factory=lambda: STATE,
        **kwargs,
    )


def _callback(**fields) -> dict:
    return {"type": MESSAGE_TYPE, **fields}


async def _started(coro) -> asyncio.Task:
    task = asyncio.create_task(coro)
    await asyncio.sleep(0)
    return task


def test_build_auth_url_parameters():
    flow = _flow(FakeFrameHost(), MessageChannel())

    url = flow.build_auth_url(prompt="none")

    params = {key: values[0] for key, values in parse_qs(urlparse(url).query).items()}
    assert url.startswith("https://accounts.google.com/o/oauth2/v2/auth?")
    assert params == {
        "client_id": "client-id",
        "redirect_uri": f"{ORIGIN}/api/google-auth/callback",
        "response_type": "token",
        "scope": "scope-a scope-b",
        "state": STATE,
        "include_granted_scopes": "true",
        "prompt": "none",
    }
    assert flow.pending_state == STATE


@pytest.mark.asyncio
async def test_silent_refresh_resolves_with_token():
    host, channel = FakeFrameHost(), MessageChannel()
    flow = _flow(host, channel)

    task = await _started(flow.refresh_access_token())
    delivered = channel.publish(
        OAuthMessage(ORIGIN, _callback(access_token="tok", expires_in="3599", state=STATE))
    )

    assert delivered == 1
    assert await task == ("tok", 3599)
    assert "prompt=none" in host.urls[0]
    assert host.frames[0].close_calls == 1
    assert channel.listener_count == 0
    assert flow.pending_state is None


@pytest.mark.asyncio
async def test_foreign_origin_is_ignored():
    host, channel = FakeFrameHost(), MessageChannel()
    flow = _flow(host, channel)

    task = await _started(flow.refresh_access_token())
    channel.publish(
        OAuthMessage("https://evil.example", _callback(access_token="stolen", state=STATE))
    )
    channel.publish(OAuthMessage(ORIGIN, {"type": "other"}))
    assert not task.done()

    channel.publish(OAuthMessage(ORIGIN + "/", _callback(access_token="tok", state=STATE)))
    assert await task == ("tok", None)


@pytest.mark.asyncio
async def test_state_mismatch_rejects():
    host, channel = FakeFrameHost(), MessageChannel()
    flow = _flow(host, channel)

    task = await _started(flow.refresh_access_token())
    channel.publish(OAuthMessage(ORIGIN, _callback(access_token="tok", state="forged")))

    with pytest.raises(OAuthFlowError, match="State mismatch"):
        await task


@pytest.mark.asyncio
async def test_error_response_rejects_with_description():
    host, channel = FakeFrameHost(), MessageChannel()
    flow = _flow(host, channel)

    task = await _started(flow.refresh_access_token())
    channel.publish(
        OAuthMessage(
            ORIGIN,
            _callback(error="interaction_required", error_description="User must consent"),
        )
    )

    with pytest.raises(OAuthFlowError, match="User must consent"):
        await task


@pytest.mark.asyncio
async def test_missing_token_rejects():
    host, channel = FakeFrameHost(), MessageChannel()
    flow = _flow(host, channel)

    task = await _started(flow.refresh_access_token())
    channel.publish(OAuthMessage(ORIGIN, _callback(state=STATE)))

    with pytest.raises(OAuthFlowError, match="No access token"):
        await task


@pytest.mark.asyncio
async def test_silent_refresh_times_out():
    host, channel = FakeFrameHost(), MessageChannel()
    flow = _flow(host, channel, refresh_timeout=0.05)

    with pytest.raises(SilentRefreshTimeout, match="Silent refresh timeout"):
        await flow.refresh_access_token()

    assert host.frames[0].close_calls == 1
    assert channel.listener_count == 0


@pytest.mark.asyncio
async def test_only_first_message_settles():
    host, channel = FakeFrameHost(), MessageChannel()
    flow = _flow(host, channel)

    task = await _started(flow.sign_in_with_popup())
    channel.publish(OAuthMessage(ORIGIN, _callback(access_token="first", state=STATE)))
    channel.publish(OAuthMessage(ORIGIN, _callback(access_token="second", state=STATE)))

    assert await task == ("first", None)
    assert "prompt=consent" in host.urls[0]


@pytest.mark.asyncio
async def test_popup_closed_cancels_sign_in():
    host, channel = FakeFrameHost(), MessageChannel()
    flow = _flow(host, channel)

    task = await _started(flow.sign_in_with_popup())
    host.frames[0].closed = True

    with pytest.raises(SignInCancelledError):
        await asyncio.wait_for(task, 1.0)
    assert channel.listener_count == 0


@pytest.mark.asyncio
async def test_popup_blocked():
    flow = _flow(FakeFrameHost(block_popups=True), MessageChannel())

    with pytest.raises(PopupBlockedError, match="Popup blocked"):
        await flow.sign_in_with_popup()
    assert flow.pending_state is None


@pytest.mark.asyncio
async def test_token_source_silent_failure_returns_none():
    host, channel = FakeFrameHost(), MessageChannel()
    source = ImplicitFlowTokenSource(_flow(host, channel, refresh_timeout=0.05))

    assert await source.acquire(interactive=False) is None


@pytest.mark.asyncio
async def test_token_source_interactive_grant():
    host, channel = FakeFrameHost(), MessageChannel()
    source = ImplicitFlowTokenSource(_flow(host, channel))

    task = await _started(source.acquire(interactive=True))
    channel.publish(OAuthMessage(ORIGIN, _callback(access_token="tok", expires_in=60, state=STATE)))

    grant = await task
    assert (grant.access_token, grant.expires_in) == ("tok", 60)


def test_webbrowser_host_reports_blocked_popup():
    host = WebbrowserFrameHost(opener=lambda url, **kwargs: False)

    assert host.open_popup("https://example.test") is None


@pytest.mark.asyncio
async def test_popup_without_result_times_out_as_cancelled():
    host, channel = FakeFrameHost(), MessageChannel()
    flow = _flow(host, channel, popup_timeout=0.05)

    with pytest.raises(SignInCancelledError, match="timed out"):
        await flow.sign_in_with_popup()
    assert host.frames[0].close_calls == 1
    assert channel.listener_count == 0


def test_webbrowser_host_tracks_open_tabs():
    host = WebbrowserFrameHost(opener=lambda url, **kwargs: True)

    tab = host.open_hidden("https://example.test")
    assert host.open_tabs == 1 and not tab.closed

    tab.close()
    assert tab.closed
    assert host.open_tabs == 0


@pytest.mark.asyncio
async def test_cancel_message_ends_desktop_sign_in():
    channel = MessageChannel()
    host = WebbrowserFrameHost(opener=lambda url, **kwargs: True, channel=channel)
    flow = ImplicitFlow(
        client_id="client-id",
        redirect_uri=f"{ORIGIN}/api/google-auth/callback",
        origin=ORIGIN,
        scopes=["scope-a"],
        frame_host=host,
        channel=channel,
        poll_interval=0.01,
        popup_timeout=None,
    )

    task = await _started(flow.sign_in_with_popup())
    assert host.open_tabs == 1
    channel.publish(OAuthMessage(ORIGIN, {"type": CANCEL_MESSAGE_TYPE}))

    with pytest.raises(SignInCancelledError):
        await asyncio.wait_for(task, 1.0)
    assert host.open_tabs == 0
    assert flow.pending_state is None


@pytest.mark.asyncio
async def test_expired_session_with_unanswered_silent_refresh(local_storage, clock):
    host, channel = FakeFrameHost(), MessageChannel()
    source = ImplicitFlowTokenSource(_flow(host, channel, refresh_timeout=0.05))
    manager = GoogleSessionManager(local_storage, source, api=MagicMock(), now=clock)
    await manager.token_store.store_tokens("tok", 3600, "user@example.com")
    clock.advance(minutes=61)

    with pytest.raises(SessionExpiredError):
        await manager.ensure_valid_token()

    assert "prompt=none" in host.urls[0]
    assert host.frames[0].close_calls == 1
    assert manager.state.status is AuthStatus.SIGNED_OUT
    assert not manager.state.refreshing
    assert await manager.token_store.get_access_token() is None

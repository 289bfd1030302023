"""Tests for the Google session state machine and its token store."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from newtab.errors import AuthError, SessionExpiredError
from newtab.services.google_auth import (
    MEET_SCOPE,
    AuthState,
    AuthStatus,
    GoogleSessionManager,
    TokenStore,
)
from newtab.services.google_auth.api import TokenInfo
from newtab.services.google_auth.token_sources import TokenGrant
from newtab.services.google_auth.token_store import TOKEN_KEY


def _source(grant=None, silent=None) -> MagicMock:
    source = MagicMock()

    async def acquire(interactive: bool):
        if interactive:
            return grant
        if isinstance(silent, Exception):
            raise silent
        return silent

    source.acquire = AsyncMock(side_effect=acquire)
    source.revoke = AsyncMock()
    return source


def _api(info=TokenInfo(scope=f"openid {MEET_SCOPE}", expires_in=3599)) -> MagicMock:
    api = MagicMock()
    api.validate_token = AsyncMock(return_value=info)
    api.fetch_user_email = AsyncMock(return_value="user@example.com")
    api.revoke_token = AsyncMock()
    return api


def _manager(storage, clock, source=None, api=None) -> GoogleSessionManager:
    return GoogleSessionManager(storage, source or _source(), api=api or _api(), now=clock)


class TestTokenStore:
    @pytest.mark.asyncio
    async def test_expiry_and_refresh_buffer(self, local_storage, clock):
        store = TokenStore(local_storage, now=clock)
        await store.store_tokens("tok", 3600, "user@example.com")

        clock.advance(minutes=54)
        assert not await store.needs_refresh()

        clock.advance(minutes=2)
        assert await store.needs_refresh()
        assert not await store.is_token_expired()

        clock.advance(minutes=5)
        assert await store.is_token_expired()

    @pytest.mark.asyncio
    async def test_default_lifetime(self, local_storage, clock):
        store = TokenStore(local_storage, now=clock)

        expiry = await store.store_tokens("tok", None)

        assert (expiry - clock()).total_seconds() == 3600

    @pytest.mark.asyncio
    async def test_missing_expiry_counts_as_expired(self, local_storage, clock):
        store = TokenStore(local_storage, now=clock)

        assert await store.is_token_expired()
        assert await store.needs_refresh()

    @pytest.mark.asyncio
    async def test_clear_tokens(self, local_storage, clock):
        store = TokenStore(local_storage, now=clock)
        await store.store_tokens("tok", 3600, "user@example.com")
        await store.store_scopes("a b")

        await store.clear_tokens()

        assert await store.get_access_token() is None
        assert await store.get_user_email() is None
        assert await store.get_scopes() == []


@pytest.mark.asyncio
async def test_initialize_reports_unknown_with_stored_email(local_storage, clock):
    await local_storage.set("google_user_email", "user@example.com")
    manager = _manager(local_storage, clock)

    state = await manager.initialize()

    assert state == AuthState(AuthStatus.UNKNOWN, "user@example.com")
    assert not manager.is_signed_in()


@pytest.mark.asyncio
async def test_sign_in_stores_token_and_notifies(local_storage, clock):
    manager = _manager(local_storage, clock, source=_source(TokenGrant("tok", 3600)))
    seen = []
    manager.subscribe(seen.append)

    state = await manager.sign_in()

    assert state.status is AuthStatus.AUTHENTICATED
    assert state.email == "user@example.com"
    assert await manager.token_store.get_access_token() == "tok"
    assert await manager.has_meet_scope()
    assert seen[-1] == state


@pytest.mark.asyncio
async def test_sign_in_failure_moves_to_signed_out(local_storage, clock):
    manager = _manager(
        local_storage, clock, source=_source(TokenGrant("tok")), api=_api(info=None)
    )
    await manager.initialize()

    with pytest.raises(AuthError, match="Token validation failed"):
        await manager.sign_in()

    assert manager.state.status is AuthStatus.SIGNED_OUT
    assert await local_storage.get(TOKEN_KEY, None) is None


@pytest.mark.asyncio
async def test_sign_in_without_grant(local_storage, clock):
    manager = _manager(local_storage, clock, source=_source(None))

    with pytest.raises(AuthError, match="No token received"):
        await manager.sign_in()


@pytest.mark.asyncio
async def test_try_silent_restore_acquires_token_from_source(local_storage, clock):
    source = _source(silent=TokenGrant("silent-token", 3600))
    info = TokenInfo(scope=f"openid {MEET_SCOPE}", expires_in=3599, email="user@example.com")
    manager = _manager(local_storage, clock, source=source, api=_api(info=info))
    await manager.initialize()

    assert await manager.try_silent_restore()

    source.acquire.assert_awaited_once_with(interactive=False)
    assert manager.state == AuthState(AuthStatus.AUTHENTICATED, "user@example.com")
    assert await manager.token_store.get_access_token() == "silent-token"
    assert await manager.token_store.get_user_email() == "user@example.com"
    assert await manager.has_meet_scope()
    assert not await manager.token_store.needs_refresh()


@pytest.mark.asyncio
async def test_try_silent_restore_without_token(local_storage, clock):
    manager = _manager(local_storage, clock, source=_source(silent=None))
    await manager.initialize()

    assert not await manager.try_silent_restore()
    assert manager.state.status is AuthStatus.SIGNED_OUT


@pytest.mark.asyncio
async def test_try_silent_restore_with_invalid_token(local_storage, clock):
    source = _source(silent=TokenGrant("tok", 3600))
    manager = _manager(local_storage, clock, source=source, api=_api(info=None))

    assert not await manager.try_silent_restore()
    assert manager.state.status is AuthStatus.SIGNED_OUT
    assert await manager.token_store.get_access_token() is None


@pytest.mark.asyncio
async def test_try_silent_restore_failure_ends_signed_out(local_storage, clock):
    api = _api()
    api.validate_token.side_effect = ValueError("tokeninfo returned HTML")
    manager = _manager(
        local_storage, clock, source=_source(silent=TokenGrant("tok", 3600)), api=api
    )
    await manager.initialize()
    assert manager.state.status is AuthStatus.UNKNOWN

    assert not await manager.try_silent_restore()
    assert manager.state.status is AuthStatus.SIGNED_OUT


@pytest.mark.asyncio
async def test_ensure_valid_token_without_refresh(local_storage, clock):
    source = _source()
    manager = _manager(local_storage, clock, source=source)
    await manager.token_store.store_tokens("tok", 3600)

    assert await manager.ensure_valid_token() == "tok"
    source.acquire.assert_not_awaited()


@pytest.mark.asyncio
async def test_ensure_valid_token_refreshes_inside_buffer(local_storage, clock):
    manager = _manager(local_storage, clock, source=_source(silent=TokenGrant("fresh", 3600)))
    await manager.token_store.store_tokens("tok", 3600, "user@example.com")
    clock.advance(minutes=56)
    states = []
    manager.subscribe(states.append)

    assert await manager.ensure_valid_token() == "fresh"
    assert await manager.token_store.get_access_token() == "fresh"
    assert any(state.refreshing for state in states)
    assert not manager.state.refreshing
    assert manager.state.status is AuthStatus.AUTHENTICATED


@pytest.mark.asyncio
async def test_ensure_valid_token_falls_back_to_unexpired_token(local_storage, clock):
    manager = _manager(local_storage, clock, source=_source(silent=RuntimeError("timeout")))
    await manager.token_store.store_tokens("tok", 3600)
    clock.advance(minutes=56)

    assert await manager.ensure_valid_token() == "tok"
    assert not manager.state.refreshing


@pytest.mark.asyncio
async def test_ensure_valid_token_expired_raises_session_expired(local_storage, clock):
    manager = _manager(local_storage, clock, source=_source(silent=None))
    await manager.token_store.store_tokens("tok", 3600)
    clock.advance(minutes=61)

    with pytest.raises(SessionExpiredError):
        await manager.ensure_valid_token()

    assert manager.state.status is AuthStatus.SIGNED_OUT
    assert await manager.token_store.get_access_token() is None


@pytest.mark.asyncio
async def test_ensure_valid_token_not_signed_in(local_storage, clock):
    manager = _manager(local_storage, clock)

    with pytest.raises(AuthError, match="Not signed in"):
        await manager.ensure_valid_token()


@pytest.mark.asyncio
async def test_sign_out_swallows_revocation_errors(local_storage, clock):
    source = _source()
    source.revoke.side_effect = OSError("gone")
    api = _api()
    api.revoke_token.side_effect = RuntimeError("network")
    manager = _manager(local_storage, clock, source=source, api=api)
    await manager.token_store.store_tokens("tok", 3600, "user@example.com")

    await manager.sign_out()

    api.revoke_token.assert_awaited_once_with("tok")
    assert manager.state == AuthState(AuthStatus.SIGNED_OUT)
    assert await manager.token_store.get_access_token() is None


@pytest.mark.asyncio
async def test_listener_errors_do_not_break_transitions(local_storage, clock):
    manager = _manager(local_storage, clock)

    def broken(state):
        raise ValueError("listener bug")

    manager.subscribe(broken)
    await manager.initialize()

    assert manager.state.status is AuthStatus.UNKNOWN

"""Google OAuth session management."""

from .api import GoogleOAuthAPI, TokenInfo, build_calendar_service, build_tasks_service
from .implicit_flow import (
    FrameHost,
    ImplicitFlow,
    MessageChannel,
    OAuthFlowError,
    OAuthMessage,
    OAuthRendezvous,
    PopupBlockedError,
    SignInCancelledError,
    SilentRefreshTimeout,
    WebbrowserFrameHost,
)
from .session import AuthState, AuthStatus, GoogleSessionManager
from .token_sources import (
    ImplicitFlowTokenSource,
    InstalledAppTokenSource,
    TokenGrant,
    TokenSource,
)
from .token_store import MEET_SCOPE, SCOPES, TokenStore

__all__ = [
    "AuthState",
    "AuthStatus",
    "FrameHost",
    "GoogleOAuthAPI",
    "GoogleSessionManager",
    "ImplicitFlow",
    "ImplicitFlowTokenSource",
    "InstalledAppTokenSource",
    "MEET_SCOPE",
    "MessageChannel",
    "OAuthFlowError",
    "OAuthMessage",
    "OAuthRendezvous",
    "PopupBlockedError",
    "SCOPES",
    "SignInCancelledError",
    "SilentRefreshTimeout",
    "TokenGrant",
    "TokenInfo",
    "TokenSource",
    "TokenStore",
    "WebbrowserFrameHost",
    "build_calendar_service",
    "build_tasks_service",
]

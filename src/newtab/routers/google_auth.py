"""Router for the Google account session."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Request
from fastapi.responses import HTMLResponse
from pydantic import BaseModel

from newtab.dashboard import Dashboard, get_dashboard
from newtab.errors import ProviderError
from newtab.services.google_auth import AuthState, OAuthMessage
from newtab.services.google_auth.implicit_flow import CANCEL_MESSAGE_TYPE, MESSAGE_TYPE

from .errors import to_http_exception

logger = logging.getLogger(__name__)

router = APIRouter()


class GoogleAuthStatusResponse(BaseModel):
    """Current state of the Google session."""

    status: str
    signed_in: bool
    email: Optional[str] = None
    refreshing: bool = False
    has_meet_scope: bool = False


class GoogleAuthRestoreResponse(GoogleAuthStatusResponse):
    restored: bool


class OAuthMessageResponse(BaseModel):
    delivered: int


async def _status(dashboard: Dashboard, state: AuthState) -> Dict[str, Any]:
    return {
        "status": state.status.value,
        "signed_in": dashboard.session.is_signed_in(),
        "email": state.email,
        "refreshing": state.refreshing,
        "has_meet_scope": await dashboard.session.has_meet_scope(),
    }


def _render_callback_page() -> HTMLResponse:
    """Relay page for the implicit grant redirect.

    Tokens arrive in the URL fragment, which never reaches the server, so the
    page posts the fragment fields back to ``/message``.
    """
    message_type = json.dumps(MESSAGE_TYPE)

    html = f"""
    <!DOCTYPE html>
    <html lang=\"en\">
      <head>
        <meta charset=\"utf-8\" />
        <title>Google sign-in</title>
        <style>
          :root {{
            color-scheme: only light;
            font-family: system-ui, -apple-system, BlinkMacSystemFont, \"Segoe UI\", sans-serif;
            background: #0f172a;
            color: #f8fafc;
          }}
          body {{
            margin: 0;
            min-height: 100vh;
            display: flex;
            align-items: center;
            justify-content: center;
          }}
          .card {{
            background: rgba(15, 23, 42, 0.92);
            border: 1px solid rgba(148, 163, 184, 0.2);
            border-radius: 16px;
            padding: 32px 36px;
            max-width: 420px;
            text-align: center;
          }}
        </style>
      </head>
      <body>
        <div class=\"card\">
          <h1>Google sign-in</h1>
          <p id=\"message\">Finishing sign-in&hellip;</p>
        </div>
        <script>
          (function() {{
            const fragment = new URLSearchParams(window.location.hash.slice(1));
            const payload = {{ type: {message_type} }};
            for (const key of ['access_token', 'expires_in', 'state', 'error', 'error_description']) {{
              if (fragment.has(key)) {{
                payload[key] = fragment.get(key);
              }}
            }}
            history.replaceState(null, '', window.location.pathname);
            fetch('message', {{
              method: 'POST',
              headers: {{ 'Content-Type': 'application/json' }},
              body: JSON.stringify(payload),
            }})
              .then(function() {{
                document.getElementById('message').textContent =
                  payload.error ? 'Sign-in failed. You can close this window.'
                                : 'Signed in. You can close this window.';
                window.close();
              }})
              .catch(function(err) {{
                console.warn('Failed to relay Google sign-in result.', err);
              }});
          }})();
        </script>
      </body>
    </html>
    """
    return HTMLResponse(content=html)


@router.get("/status", response_model=GoogleAuthStatusResponse)
async def auth_status(
    dashboard: Dashboard = Depends(get_dashboard),
) -> Dict[str, Any]:
    return await _status(dashboard, dashboard.session.state)


@router.post("/sign-in", response_model=GoogleAuthStatusResponse)
async def sign_in(
    dashboard: Dashboard = Depends(get_dashboard),
) -> Dict[str, Any]:
    """Run the interactive consent flow and return the new session state."""

    try:
        state = await dashboard.session.sign_in()
    except ProviderError as exc:
        raise to_http_exception(exc) from exc
    return await _status(dashboard, state)


@router.post("/sign-out", response_model=GoogleAuthStatusResponse)
async def sign_out(
    dashboard: Dashboard = Depends(get_dashboard),
) -> Dict[str, Any]:
    await dashboard.sign_out_google()
    return await _status(dashboard, dashboard.session.state)


@router.post("/restore", response_model=GoogleAuthRestoreResponse)
async def restore_session(
    dashboard: Dashboard = Depends(get_dashboard),
) -> Dict[str, Any]:
    restored = await dashboard.session.try_silent_restore()
    payload = await _status(dashboard, dashboard.session.state)
    payload["restored"] = restored
    return payload


@router.get("/callback", response_class=HTMLResponse)
async def oauth_callback() -> HTMLResponse:
    return _render_callback_page()


@router.post("/message", response_model=OAuthMessageResponse)
async def relay_message(
    request: Request,
    data: Dict[str, Any] = Body(...),
    dashboard: Dashboard = Depends(get_dashboard),
) -> OAuthMessageResponse:
    """Hand a relayed callback to whichever flow is waiting for it."""

    origin = request.headers.get("origin", "")
    delivered = dashboard.channel.publish(OAuthMessage(origin=origin, data=data))
    if not delivered:
        logger.info("OAuth message from %s arrived with no flow waiting", origin or "?")
    return OAuthMessageResponse(delivered=delivered)


@router.post("/cancel", response_model=OAuthMessageResponse)
async def cancel_sign_in(
    request: Request,
    dashboard: Dashboard = Depends(get_dashboard),
) -> OAuthMessageResponse:
    """Abandon a pending sign-in whose consent tab the user closed."""

    origin = request.headers.get("origin", "")
    delivered = dashboard.channel.publish(
        OAuthMessage(origin=origin, data={"type": CANCEL_MESSAGE_TYPE})
    )
    return OAuthMessageResponse(delivered=delivered)


__all__ = ["router"]

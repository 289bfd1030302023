"""Wiring of storage, the Google session and providers for one service instance."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from fastapi import Request

from .config import Settings
from .providers import (
    CalendarProvider,
    ProviderKind,
    TaskProvider,
    create_calendar_provider,
    create_task_provider,
)
from .services.google_auth import (
    SCOPES,
    GoogleOAuthAPI,
    GoogleSessionManager,
    ImplicitFlow,
    ImplicitFlowTokenSource,
    InstalledAppTokenSource,
    MessageChannel,
    TokenSource,
    WebbrowserFrameHost,
)
from .storage import StorageAreas, create_storage_areas

logger = logging.getLogger(__name__)

CREDENTIALS_FILENAME = "google_credentials.json"


@dataclass(slots=True)
class Dashboard:
    """Everything the HTTP surface needs, stored on ``app.state.dashboard``."""

    settings: Settings
    storage: StorageAreas
    channel: MessageChannel
    session: GoogleSessionManager
    tasks: TaskProvider
    calendar: CalendarProvider

    async def start(self) -> None:
        await self.tasks.load()
        await self.calendar.load()
        await self.session.initialize()
        await self.session.try_silent_restore()

    async def sign_out_google(self) -> None:
        """End the Google session and drop every Google-derived snapshot."""

        await self.session.sign_out()
        await self.calendar.clear_local_data()
        if self.settings.task_backend == ProviderKind.GOOGLE_TASKS.value:
            await self.tasks.clear_local_data()


def create_token_source(settings: Settings, channel: MessageChannel) -> TokenSource:
    if settings.google_oauth_flow == "implicit":
        flow = ImplicitFlow(
            client_id=settings.google_client_id,
            redirect_uri=settings.google_redirect_uri,
            origin=settings.public_origin,
            scopes=SCOPES,
            frame_host=WebbrowserFrameHost(channel=channel),
            channel=channel,
            refresh_timeout=settings.silent_refresh_timeout,
            popup_timeout=settings.sign_in_timeout,
        )
        return ImplicitFlowTokenSource(flow)

    data_dir = settings.data_dir or Path("data")
    return InstalledAppTokenSource(
        client_secrets_path=settings.google_client_secrets_path,
        credentials_path=data_dir / CREDENTIALS_FILENAME,
        scopes=SCOPES,
    )


def build_dashboard(settings: Settings) -> Dashboard:
    storage = create_storage_areas(
        settings.data_dir,
        synced_quota_bytes=settings.synced_quota_bytes,
        local_quota_bytes=settings.local_quota_bytes,
    )
    channel = MessageChannel()
    session = GoogleSessionManager(
        storage.local,
        create_token_source(settings, channel),
        api=GoogleOAuthAPI(timeout=settings.request_timeout),
    )
    tasks = create_task_provider(
        settings.task_backend, storage=storage.local, session=session, settings=settings
    )
    calendar = create_calendar_provider(
        storage=storage.local, session=session, settings=settings
    )
    logger.info(
        "Dashboard configured (tasks=%s, oauth=%s, data_dir=%s)",
        settings.task_backend,
        settings.google_oauth_flow,
        settings.data_dir,
    )
    return Dashboard(
        settings=settings,
        storage=storage,
        channel=channel,
        session=session,
        tasks=tasks,
        calendar=calendar,
    )


def get_dashboard(request: Request) -> Dashboard:
    dashboard = getattr(request.app.state, "dashboard", None)
    if dashboard is None:
        raise RuntimeError("Dashboard is not configured")
    return dashboard


__all__ = ["Dashboard", "build_dashboard", "create_token_source", "get_dashboard"]

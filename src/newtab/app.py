"""Application factory for the FastAPI service."""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import Settings, get_settings
from .dashboard import Dashboard, build_dashboard
from .routers.calendar import router as calendar_router
from .routers.google_auth import router as google_auth_router
from .routers.tasks import router as tasks_router


def _configure_logging() -> None:
    """Configure logging based on LOG_LEVEL environment variable."""
    # Load .env file first to ensure LOG_FILE is available
    load_dotenv()

    log_level_str = os.getenv("LOG_LEVEL", "INFO").upper()
    log_level = getattr(logging, log_level_str, logging.INFO)

    formatter = logging.Formatter(
        "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    log_file = os.getenv("LOG_FILE")
    handlers: list[logging.Handler] = []

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    handlers.append(console_handler)

    logging.basicConfig(level=log_level, handlers=handlers, force=True)

    logging.getLogger("newtab").setLevel(log_level)
    logging.getLogger("uvicorn").setLevel(log_level)
    logging.getLogger("uvicorn.access").setLevel(log_level)
    logging.getLogger("uvicorn.error").setLevel(log_level)

    if log_level > logging.DEBUG:
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)
        logging.getLogger("googleapiclient.discovery_cache").setLevel(logging.ERROR)


def create_app(
    settings: Optional[Settings] = None,
    dashboard: Optional[Dashboard] = None,
) -> FastAPI:
    _configure_logging()

    settings = settings or get_settings()
    dashboard = dashboard or build_dashboard(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await dashboard.start()
        yield

    app = FastAPI(
        title="New Tab Dashboard Backend",
        version="0.1.0",
        description="Tasks and today's calendar for a browser new-tab page.",
        lifespan=lifespan,
    )

    app.state.dashboard = dashboard

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(tasks_router)
    app.include_router(calendar_router)
    app.include_router(
        google_auth_router,
        prefix="/api/google-auth",
        tags=["google-auth"],
    )

    @app.get("/health", tags=["health"])
    async def healthcheck() -> dict[str, str | None]:
        state = dashboard.session.state
        return {
            "status": "ok",
            "task_backend": settings.task_backend,
            "google_session": state.status.value,
        }

    return app


__all__ = ["create_app"]

"""Application configuration using environment variables."""

from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic import AliasChoices, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

# Resolve the project root once so that `.env` is discovered regardless of CWD
PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent


class Settings(BaseSettings):
    """Load configuration from environment variables and `.env`."""

    model_config = SettingsConfigDict(
        env_file=str(PROJECT_ROOT / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Directory holding the two storage areas and cached OAuth credentials.
    # When unset, both areas live in memory only.
    data_dir: Optional[Path] = Field(
        default_factory=lambda: Path("data"),
        validation_alias=AliasChoices("NEWTAB_DATA_DIR", "data_dir"),
    )

    task_backend: Literal["local", "todoist", "google-tasks"] = Field(
        default="local",
        validation_alias=AliasChoices("TASK_BACKEND", "task_backend"),
    )

    todoist_api_token: SecretStr | None = Field(
        default=None,
        validation_alias=AliasChoices("TODOIST_API_TOKEN", "todoist_api_token"),
    )
    todoist_base_url: str = Field(
        default="https://api.todoist.com/rest/v2",
        validation_alias=AliasChoices("TODOIST_BASE_URL", "todoist_base_url"),
    )

    # Google OAuth settings
    google_oauth_flow: Literal["installed", "implicit"] = Field(
        default="installed",
        validation_alias=AliasChoices("GOOGLE_OAUTH_FLOW", "google_oauth_flow"),
    )
    google_client_id: str = Field(
        default="",
        validation_alias=AliasChoices("GOOGLE_CLIENT_ID", "google_client_id"),
    )
    google_client_secrets_path: Path = Field(
        default_factory=lambda: Path("credentials/client_secret.json"),
        validation_alias=AliasChoices(
            "GOOGLE_CLIENT_SECRETS_PATH", "google_client_secrets_path"
        ),
    )
    public_origin: str = Field(
        default="http://localhost:8000",
        validation_alias=AliasChoices("PUBLIC_ORIGIN", "public_origin"),
    )
    google_redirect_path: str = Field(
        default="/api/google-auth/callback",
        validation_alias=AliasChoices("GOOGLE_REDIRECT_PATH", "google_redirect_path"),
    )
    silent_refresh_timeout: float = Field(
        default=10.0,
        gt=0,
        validation_alias=AliasChoices(
            "SILENT_REFRESH_TIMEOUT", "silent_refresh_timeout"
        ),
    )
    sign_in_timeout: float = Field(
        default=300.0,
        gt=0,
        validation_alias=AliasChoices("SIGN_IN_TIMEOUT", "sign_in_timeout"),
    )

    time_zone: str = Field(
        default="UTC",
        validation_alias=AliasChoices("TIME_ZONE", "time_zone"),
    )
    request_timeout: float = Field(
        default=30.0,
        ge=1,
        validation_alias=AliasChoices("REQUEST_TIMEOUT", "request_timeout"),
    )

    synced_quota_bytes: int = Field(
        default=100 * 1024,
        ge=1,
        validation_alias=AliasChoices("SYNCED_QUOTA_BYTES", "synced_quota_bytes"),
    )
    local_quota_bytes: int = Field(
        default=10 * 1024 * 1024,
        ge=1,
        validation_alias=AliasChoices("LOCAL_QUOTA_BYTES", "local_quota_bytes"),
    )

    @property
    def google_redirect_uri(self) -> str:
        return self.public_origin.rstrip("/") + self.google_redirect_path


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached `Settings` instance."""

    return Settings()  # pyright: ignore[reportCallIssue]


__all__ = ["Settings", "get_settings"]

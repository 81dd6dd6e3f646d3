"""
Creator Studio Jobs - Configuration Module
==========================================
All configuration is loaded from environment variables.
Provider keys, webhook secrets and push credentials are injected, never hardcoded.
"""

import os
from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_PREFIX = "STUDIO_"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env."""

    # App
    app_name: str = "Creator Studio Jobs"
    app_env: str = "development"
    app_debug: bool = False
    app_port: int = 8000

    # Database
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_db: str = "studio_db"
    postgres_user: str = "studio"
    postgres_password: str = ""
    database_url_override: str = ""

    @property
    def database_url(self) -> str:
        if self.database_url_override:
            return self.database_url_override
        return (
            f"postgresql+asyncpg://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    @property
    def database_url_sync(self) -> str:
        if self.database_url_override:
            return self.database_url_override.replace("+asyncpg", "").replace("+aiosqlite", "")
        return (
            f"postgresql://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    # Providers
    runware_api_key: str = ""
    runware_api_url: str = "https://api.runware.ai/v1"
    wavespeed_api_key: str = ""
    wavespeed_api_url: str = "https://api.wavespeed.ai/api/v3"
    falai_api_key: str = ""
    falai_queue_url: str = "https://queue.fal.run"
    provider_http_timeout_seconds: float = 120.0

    # Webhooks
    webhook_base_url: str = ""
    webhook_secret: str = ""
    wavespeed_webhook_secret: str = ""
    webhook_auth_required: bool = True
    webhook_timestamp_tolerance_seconds: int = 300

    # Polling fallback
    poll_interval_seconds: float = 5.0
    poll_max_attempts: int = 120
    poll_initial_delay_image_seconds: float = 5.0
    poll_initial_delay_video_seconds: float = 30.0
    poll_tick_seconds: int = 5
    poll_scheduler_enabled: bool = True
    # Delay before polling a job that was registered with a webhook
    webhook_grace_seconds: float = 120.0

    # Reaper
    reaper_enabled: bool = True
    reaper_interval_minutes: int = 5
    # With the defaults a webhook job can poll for 120 s + 120 x 5 s = 12 minutes,
    # so the 10 minute reaper times it out before the poll budget runs dry.
    stuck_job_timeout_minutes: int = 10
    orphaned_job_minutes: int = 30
    terminal_job_retention_days: int = 7

    # Storage upload
    supabase_url: str = ""
    supabase_service_role_key: str = ""
    supabase_image_bucket: str = "user-media"
    upload_max_retries: int = 3
    upload_backoff_base_seconds: float = 2.0

    # Push (APNs)
    apns_key_id: str = ""
    apns_team_id: str = ""
    apns_private_key: str = ""
    apns_bundle_id: str = ""
    apns_use_sandbox: bool = True

    # Reconciliation
    notification_match_threshold: float = 0.30

    # CORS
    cors_origins: str = "*"

    @property
    def cors_origins_list(self) -> list[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def poll_window_seconds(self) -> float:
        """Longest a webhook job can spend in the poll fallback before it times out."""
        return self.webhook_grace_seconds + self.poll_max_attempts * self.poll_interval_seconds

    @property
    def reaper_preempts_polling(self) -> bool:
        return self.poll_window_seconds > self.stuck_job_timeout_minutes * 60

    @property
    def push_configured(self) -> bool:
        return bool(self.apns_key_id and self.apns_team_id and self.apns_private_key and self.apns_bundle_id)

    @property
    def storage_configured(self) -> bool:
        return bool(self.supabase_url and self.supabase_service_role_key)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix=ENV_PREFIX,
        case_sensitive=False,
        extra="ignore",
    )


# Names used by existing deployments (edge functions, docker-compose) that
# predate the STUDIO_ prefix. Any field can also be given unprefixed.
LEGACY_ALIASES: dict[str, str] = {
    "APNS_KEY": "apns_private_key",
    "DATABASE_URL": "database_url_override",
    "FAL_KEY": "falai_api_key",
    "SUPABASE_SERVICE_KEY": "supabase_service_role_key",
}


def _read_env_file(dotenv_path: str = ".env") -> dict[str, str]:
    path = Path(dotenv_path)
    if not path.is_file():
        return {}

    pairs: dict[str, str] = {}
    for line in path.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if line.startswith("export "):
            line = line[len("export "):]
        name, sep, value = line.partition("=")
        if not sep or not name or name.startswith("#"):
            continue
        pairs[name.strip()] = value.strip().strip("\"'")
    return pairs


def _promote_legacy_env() -> None:
    """Copy unprefixed variables (WEBHOOK_SECRET, APNS_KEY, ...) onto STUDIO_ names.

    A STUDIO_ value that is already set always wins. Process environment beats
    the .env file.
    """
    file_pairs = _read_env_file(".env")
    sources = {name.upper(): name for name in Settings.model_fields}
    sources.update(LEGACY_ALIASES)

    for legacy_name, field_name in sources.items():
        target = f"{ENV_PREFIX}{field_name.upper()}"
        if os.getenv(target):
            continue
        value = os.environ.get(legacy_name, file_pairs.get(legacy_name))
        if value is not None:
            os.environ[target] = value


_promote_legacy_env()


@lru_cache()
def get_settings() -> Settings:
    return Settings()

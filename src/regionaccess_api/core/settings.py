from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="allow")

    environment: Literal["development", "staging", "production"] = "development"
    database_url: str = "sqlite+aiosqlite:///./regionaccess.db"

    # Grant authorization
    grantor_roles: list[str] = Field(default_factory=lambda: ["admin", "manager"])
    default_access_level: str = "read"

    @field_validator("grantor_roles", mode="before")
    @classmethod
    def _parse_role_list(cls, value: object) -> list[str]:
        if value is None:
            return []
        if isinstance(value, str):
            return [item.strip().lower() for item in value.split(",") if item.strip()]
        if isinstance(value, (list, tuple, set)):
            return [str(item).strip().lower() for item in value if str(item).strip()]
        return []

    # Expiration reconciler
    grant_expiry_worker_enabled: bool = False
    grant_expiry_interval_seconds: int = Field(default=30, gt=0)
    grant_expiry_batch_size: int = Field(default=100, gt=0)
    grant_reconcile_on_read: bool = True
    grant_expiring_soon_window_seconds: int = 600

    # Audit delivery
    audit_webhook_url: str | None = None
    audit_webhook_timeout_seconds: float = 5.0

    # Recurring job scheduler
    job_scheduler_enabled: bool = False
    job_schedule_path: str = "config/schedules.toml"

    # Observability
    log_level: str = "INFO"
    tracing_enabled: bool = False
    otel_exporter_otlp_endpoint: str | None = None
    otel_exporter_otlp_headers: str | None = None


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[arg-type]


settings = get_settings()

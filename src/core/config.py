from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Ignore unrelated env keys so local/dev .env can include optional integrations.
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "Hotel Travel Trade Backend"
    api_prefix: str = "/api/v1"
    cors_allow_origins: str = "http://localhost:3000,http://127.0.0.1:3000"
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    supabase_url: str = Field(default="http://localhost:54321", alias="SUPABASE_URL")
    supabase_service_role_key: Optional[str] = Field(
        default=None, alias="SUPABASE_SERVICE_ROLE_KEY"
    )
    supabase_anon_key: Optional[str] = Field(default=None, alias="SUPABASE_ANON_KEY")

    request_timeout_seconds: float = Field(default=30.0, alias="REQUEST_TIMEOUT_SECONDS")
    agent_lock_wait_seconds: float = Field(default=5.0, alias="AGENT_LOCK_WAIT_SECONDS")
    agent_code_max_attempts: int = Field(default=5, alias="AGENT_CODE_MAX_ATTEMPTS")
    counter_cas_max_attempts: int = Field(default=5, alias="COUNTER_CAS_MAX_ATTEMPTS")

    dashboard_cache_ttl_seconds: int = Field(default=300, alias="DASHBOARD_CACHE_TTL_SECONDS")
    dashboard_cache_sweep_seconds: int = Field(default=600, alias="DASHBOARD_CACHE_SWEEP_SECONDS")
    dashboard_top_performers: int = Field(default=5, alias="DASHBOARD_TOP_PERFORMERS")
    dashboard_recent_bookings: int = Field(default=10, alias="DASHBOARD_RECENT_BOOKINGS")


@lru_cache
def get_settings() -> Settings:
    return Settings()


def get_cors_origins() -> list[str]:
    settings = get_settings()
    return [origin.strip() for origin in settings.cors_allow_origins.split(",") if origin.strip()]

"""Application settings."""

from functools import lru_cache
import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

PROJECT_ROOT = Path(__file__).resolve().parents[3]

DEFAULT_API_BASE_URL = "https://api.manus.im"


class Settings(BaseSettings):
    """Runtime settings loaded from environment variables."""

    app_name: str = "manus-relay"
    app_env: str = "dev"
    log_level: str = "INFO"
    database_url: str = ""
    encryption_secret: str = ""
    default_api_base_url: str = DEFAULT_API_BASE_URL
    # Upstream tasks can run for minutes before answering.
    remote_timeout_s: float = Field(default=120.0, ge=60.0)

    model_config = SettingsConfigDict(
        env_prefix="MANUS_RELAY_",
        extra="ignore",
        env_file=(PROJECT_ROOT / ".env", PROJECT_ROOT / ".env.local"),
        env_file_encoding="utf-8",
    )

    def resolved_database_url(self) -> str:
        return self.database_url or os.getenv("DATABASE_URL", "")

    def resolved_encryption_secret(self) -> str:
        return self.encryption_secret or os.getenv("JWT_SECRET", "")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()

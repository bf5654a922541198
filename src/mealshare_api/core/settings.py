from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="allow")

    environment: Literal["development", "staging", "production"] = "development"
    database_url: str = "sqlite+aiosqlite:///./mealshare.db"

    # Credential vault
    # Base64-encoded AES-256 key; validated lazily on first encrypt/decrypt.
    credentials_encryption_key: str | None = Field(
        default=None,
        validation_alias="CREDENTIALS_ENCRYPTION_KEY",
    )

    # External commerce (GET) service
    commerce_api_base_url: str = "https://services.get.cbord.com/GETServices/services/json"
    commerce_api_timeout_seconds: float = 10.0
    commerce_retry_attempts: int = 2
    commerce_retry_backoff_ms: int = 250
    commerce_session_ttl_seconds: int = 60
    commerce_system_user_name: str = "get_mobile"
    commerce_transaction_history_limit: int = 1000

    # Redemption codes
    redemption_code_ttl_seconds: int = 15 * 60
    redemption_refresh_interval_ms: int = 5_000


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[arg-type]


settings = get_settings()

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Runtime configuration for the dispatch engine.
    Values come from DISPATCH_* environment variables or a local .env file.
    """
    model_config = SettingsConfigDict(
        env_prefix="DISPATCH_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Valkey
    VALKEY_HOST: str = "localhost"
    VALKEY_PORT: int = 6379
    VALKEY_PASSWORD: Optional[str] = None
    KEY_PREFIX: str = "dispatch"

    # Broadcast radii in metres. Initial dispatch uses the wide one,
    # re-dispatch on "out for delivery" uses the narrow one.
    WIDE_RADIUS_M: float = Field(default=50_000.0, gt=0)
    NARROW_RADIUS_M: float = Field(default=5_000.0, gt=0)

    SQLITE_PATH: str = "data/ledger.db"
    OTP_TTL_SECONDS: int = Field(default=300, ge=1)

    ADMIN_PORT: int = 8001
    OTEL_ENABLED: bool = False
    LOG_FORMAT: str = "text"


settings = Settings()

"""Application settings"""
from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="BOOKING_", env_file=".env", extra="ignore")

    # Auth
    secret_key: str = Field(default="your-secret-key-keep-it-secret", description="Secret key for JWT tokens")
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 30

    # Engine
    lock_timeout_seconds: Optional[float] = Field(default=5.0, gt=0)
    repository_timeout_seconds: Optional[float] = Field(default=5.0, gt=0)
    create_retry_attempts: int = Field(default=1, ge=0)

    log_level: str = "INFO"


@lru_cache
def get_settings() -> Settings:
    return Settings()

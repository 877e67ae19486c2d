from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")

    # Identity provider (backend API)
    IDENTITY_API_URL: str = Field("https://api.clerk.com", description="Identity provider API base URL")
    IDENTITY_SECRET_KEY: Optional[str] = Field(None, description="Identity provider secret key")
    IDENTITY_TIMEOUT_MS: int = Field(5000, gt=0, description="Identity provider request timeout")

    # Session tokens
    SESSION_JWT_SECRET: Optional[str] = Field(None, description="HMAC secret for session tokens")
    SESSION_JWT_PUBLIC_KEY: Optional[str] = Field(None, description="PEM public key for session tokens")
    SESSION_JWT_ALGO: str = Field("HS256", description="Session token signing algorithm")
    SESSION_COOKIE_NAME: str = Field("__session", description="Cookie carrying the session token")

    # Route guard
    ROLE_CLAIMS_MAX_AGE_SECONDS: int = Field(
        60, ge=0, description="Max age of session role claims before re-reading the role; 0 always re-reads"
    )
    ROUTE_GUARD_ENFORCE_COMPLIANCE: bool = False

    # Role administration
    USER_LIST_PAGE_SIZE: int = Field(100, ge=1, le=500)

    # Audit log storage
    SUPABASE_URL: Optional[str] = None
    SUPABASE_SERVICE_KEY: Optional[str] = None

    LOG_LEVEL: str = "INFO"

    @field_validator("SESSION_JWT_ALGO")
    @classmethod
    def _jwt_algo_upper(cls, v: str) -> str:
        return (v or "HS256").upper()

    @field_validator("LOG_LEVEL")
    @classmethod
    def _log_level_upper(cls, v: str) -> str:
        return (v or "INFO").upper()


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()

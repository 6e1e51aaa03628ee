"""
Fingerprint Relay — Configuration via Pydantic Settings.

All settings are loaded from environment variables or .env file.
The two API key variables keep their historical names and ignore the
``FP_RELAY_`` prefix.
"""

from __future__ import annotations

from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application-wide settings loaded from env / .env."""

    # ── General ──────────────────────────────────────────────
    app_name: str = "Fingerprint Relay"
    debug: bool = False
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "info"
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])

    # ── Identification API ───────────────────────────────────
    fingerprint_api_key: Optional[str] = Field(
        default=None,
        validation_alias="FINGERPRINT_API_KEY",
        description="Secret key sent as Auth-API-Key (preferred)",
    )
    fingerprint_secret_api_key: Optional[str] = Field(
        default=None,
        validation_alias="NEXT_PUBLIC_FINGERPRINT_SECRET_API_KEY",
        description="Legacy variable name for the same key",
    )
    upstream_url: str = Field(
        default="https://api.fpjs.io/send",
        description="Identification endpoint receiving the fingerprint payload",
    )
    upstream_timeout: Optional[float] = Field(
        default=None,
        description="Timeout in seconds for the upstream call (unset = wait forever)",
    )

    # ── Client metadata ──────────────────────────────────────
    fallback_ip: str = Field(
        default="8.8.8.8",
        description="Public IP substituted when the client IP is missing or malformed",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        allowed = {"debug", "info", "warning", "error", "critical"}
        if v.lower() not in allowed:
            raise ValueError(f"log_level must be one of {allowed}")
        return v.lower()

    @property
    def api_key(self) -> Optional[str]:
        """First non-empty API key, or None if neither is configured."""
        return self.fingerprint_api_key or self.fingerprint_secret_api_key or None

    model_config = {
        "env_prefix": "FP_RELAY_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "populate_by_name": True,
        "extra": "ignore",
    }


# Singleton
settings = Settings()


def get_settings() -> Settings:
    """FastAPI dependency returning the process-wide settings."""
    return settings

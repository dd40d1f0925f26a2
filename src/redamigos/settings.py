"""Application settings and configuration."""

import sys
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

_INSECURE_JWT_DEFAULTS = {"change-me-in-production", "secret"}


class Settings(BaseSettings):
    """Application configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "redamigos"
    env: str = "development"
    log_level: str = "INFO"
    log_format: str = "console"  # console or json
    allowed_origins: str = "http://localhost:5173"
    rate_limit_default: str = "200/minute"

    # Database
    database_url: str = "sqlite:///./redamigos.db"
    store_timeout_seconds: int = 10

    # Identity / JWT
    jwt_secret_key: str = "change-me-in-production"
    jwt_expire_hours: int = 12
    password_hash_rounds: int = 12

    # Campaign
    campaign_domain: str = "gustavogarcia.co"  # Synthetic e-mail domain, not a mailbox
    public_app_url: str = "http://localhost:5173"
    campaign_timezone: str = "America/Bogota"
    default_phone_region: str = "CO"

    # Referral codes
    referral_code_prefix: str = "GGF"
    referral_code_length: int = 6
    referral_code_max_attempts: int = 5

    # Reports
    activity_default_limit: int = 10
    ranking_default_limit: int = 20

    # CLI session persistence
    session_file: Path = Field(default_factory=lambda: Path.home() / ".redamigos" / "session.json")


# Global settings instance
settings = Settings()

# ── Security validation ──────────────────────────────────────────────
if settings.env == "production":
    if settings.jwt_secret_key in _INSECURE_JWT_DEFAULTS or len(settings.jwt_secret_key) < 32:
        print(
            "\n❌  FATAL: JWT_SECRET_KEY is insecure or too short (min 32 chars).\n"
            "   Set a strong random value:  openssl rand -hex 32\n",
            file=sys.stderr,
        )
        sys.exit(1)

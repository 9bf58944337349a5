"""Application configuration loaded from environment variables."""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from account_verification.core.exceptions import InvalidConfigurationError

BASE_DIR = Path(__file__).resolve().parents[2]


class Settings(BaseSettings):
    APP_NAME: str = "Account Verification Service"
    ENV: str = "development"

    DATABASE_URL: str = "postgresql+psycopg://postgres@localhost:5432/account_verification"
    LOG_LEVEL: str = "INFO"

    # Base used for the link embedded in verification emails.
    PUBLIC_BASE_URL: str = "http://localhost:8000"

    VERIFICATION_TOKEN_BYTES: int = Field(default=32, ge=16, le=96)
    VERIFICATION_TOKEN_ENCODING: Literal["urlsafe", "hex"] = "urlsafe"
    VERIFICATION_TOKEN_TTL_HOURS: int = Field(default=24, ge=1)
    TOKEN_ISSUE_MAX_RETRIES: int = Field(default=3, ge=1)
    TOKEN_RETENTION_DAYS: int = Field(default=7, ge=0)

    DELIVERY_MAX_ATTEMPTS: int = Field(default=5, ge=1)
    DELIVERY_BACKOFF_BASE_SECONDS: int = Field(default=30, ge=1)
    DELIVERY_BACKOFF_MAX_SECONDS: int = Field(default=3600, ge=1)
    DELIVERY_LEASE_SECONDS: int = Field(default=120, ge=5)
    DELIVERY_WORKER_ENABLED: bool = True
    DELIVERY_WORKER_CONCURRENCY: int = Field(default=2, ge=1)
    DELIVERY_WORKER_POLL_SECONDS: int = Field(default=5, ge=1)
    DELIVERY_WORKER_BATCH_SIZE: int = Field(default=20, ge=1)
    HOUSEKEEPING_INTERVAL_SECONDS: int = Field(default=3600, ge=60)

    SMTP_HOST: str = ""
    SMTP_PORT: int = 587
    SMTP_USER: str = ""
    SMTP_PASSWORD: str = ""
    SMTP_FROM: str = ""
    SMTP_TLS: bool = True
    SMTP_TIMEOUT_SECONDS: int = 30

    CORS_ORIGINS: str = "http://localhost:3000"
    ALLOWED_HOSTS: str = "*"

    OPERATOR_API_KEY: str = ""

    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_WINDOW_SECONDS: int = 60
    RATE_LIMIT_MAX_REQUESTS: int = 120
    RATE_LIMIT_VERIFY_MAX_REQUESTS: int = 30
    RATE_LIMIT_RESEND_MAX_REQUESTS: int = 5

    model_config = SettingsConfigDict(env_file=str(BASE_DIR / ".env"), env_file_encoding="utf-8")

    @property
    def is_production(self) -> bool:
        return self.ENV.strip().lower() == "production"

    @property
    def cors_origins(self) -> list[str]:
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]

    @property
    def allowed_hosts(self) -> list[str]:
        hosts = [host.strip() for host in self.ALLOWED_HOSTS.split(",") if host.strip()]
        return hosts or ["*"]

    @property
    def smtp_ready(self) -> bool:
        return bool(self.SMTP_HOST.strip() and self.SMTP_FROM.strip())

    def verification_url(self, token: str) -> str:
        return f"{self.PUBLIC_BASE_URL.rstrip('/')}/verify/{token}"

    def validate_runtime_security(self) -> None:
        if not self.is_production:
            return
        if not self.OPERATOR_API_KEY.strip():
            raise InvalidConfigurationError("operator_api_key_required", setting="OPERATOR_API_KEY")
        if not self.smtp_ready:
            raise InvalidConfigurationError("smtp_required_in_production", setting="SMTP_HOST")
        if not self.PUBLIC_BASE_URL.startswith("https://"):
            raise InvalidConfigurationError("public_base_url_must_be_https", setting="PUBLIC_BASE_URL")


settings = Settings()

# authguard/core/config.py

import logging
import re
from typing import Literal

from pydantic import AliasChoices, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore", case_sensitive=False
    )

    # --- Environment & Debug ---
    ENVIRONMENT: Literal["development", "staging", "production", "test"] = Field(
        default="development", validation_alias="APP_ENV"
    )
    DEBUG: bool = Field(default=False, validation_alias=AliasChoices("DEBUG_MODE", "DEBUG"))
    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        validation_alias="LOG_LEVEL",
    )
    SECURITY_LOG_PATH: str = Field(
        default="/app/logs/security.log",
        description="fail2ban-readable security log file",
        validation_alias="SECURITY_LOG_PATH",
    )

    # --- Core Application Settings ---
    APP_NAME: str = Field(default="AuthGuard", validation_alias="APP_NAME")
    APP_VERSION: str = Field(default="0.1.0", validation_alias="APP_VERSION")
    APP_DESCRIPTION: str = Field(
        default="Login abuse prevention and OTP step-up verification API.",
        validation_alias="APP_DESCRIPTION",
    )
    API_V1_STR: str = Field(default="/api/v1", validation_alias="API_V1_STR")
    SERVER_HOST: str = Field(default="0.0.0.0", validation_alias="SERVER_HOST")
    SERVER_PORT: int = Field(default=8000, validation_alias="SERVER_PORT")
    BACKEND_CORS_ORIGINS: list[str] = Field(default_factory=list, validation_alias="BACKEND_CORS_ORIGINS")

    # --- Session & Token Settings ---
    SECRET_KEY: str = Field(validation_alias=AliasChoices("JWT_SECRET_KEY", "SECRET_KEY"))
    ALGORITHM: str = Field(default="HS256", validation_alias="ALGORITHM")
    SESSION_TOKEN_EXPIRE_MINUTES: int = Field(
        default=60 * 24, validation_alias="SESSION_TOKEN_EXPIRE_MINUTES"
    )
    OTP_PENDING_TOKEN_EXPIRE_MINUTES: int = Field(
        default=15,
        description="Lifetime of the token that carries a login through the OTP step",
        validation_alias="OTP_PENDING_TOKEN_EXPIRE_MINUTES",
    )

    # --- Account Lockout Settings ---
    LOGIN_MAX_ATTEMPTS: int = Field(
        default=5,
        description="Max failed login attempts before lockout",
        validation_alias="LOGIN_MAX_ATTEMPTS",
    )
    LOGIN_LOCKOUT_MINUTES: int = Field(
        default=30,
        description="Lockout duration in minutes after max failed attempts",
        validation_alias="LOGIN_LOCKOUT_MINUTES",
    )
    PROGRESSIVE_DELAY_BASE_SECONDS: float = Field(
        default=1.0, validation_alias="PROGRESSIVE_DELAY_BASE_SECONDS"
    )
    PROGRESSIVE_DELAY_MAX_SECONDS: float = Field(
        default=30.0, validation_alias="PROGRESSIVE_DELAY_MAX_SECONDS"
    )

    # --- IP Abuse Settings ---
    IP_BLOCK_THRESHOLD: int = Field(
        default=20,
        description="Failed attempts from one IP within the window before it is blocked",
        validation_alias="IP_BLOCK_THRESHOLD",
    )
    IP_BLOCK_WINDOW_MINUTES: int = Field(default=15, validation_alias="IP_BLOCK_WINDOW_MINUTES")
    IP_BLOCK_RETRY_AFTER_SECONDS: int = Field(
        default=3600, validation_alias="IP_BLOCK_RETRY_AFTER_SECONDS"
    )

    # --- OTP Settings ---
    OTP_LENGTH: int = Field(default=6, validation_alias="OTP_LENGTH")
    OTP_TTL_MINUTES: int = Field(default=10, validation_alias="OTP_TTL_MINUTES")
    OTP_MAX_ATTEMPTS: int = Field(
        default=3,
        description="Wrong codes tolerated per challenge before it stops accepting any code",
        validation_alias="OTP_MAX_ATTEMPTS",
    )
    OTP_PURGE_AFTER_HOURS: int = Field(
        default=24,
        description="Expired challenges older than this are deleted at startup",
        validation_alias="OTP_PURGE_AFTER_HOURS",
    )

    # --- Endpoint Rate Limits (slowapi syntax) ---
    LOGIN_RATE_LIMIT: str = Field(
        default="30/15minutes",
        description="Per-IP backstop; keep the count above IP_BLOCK_THRESHOLD",
        validation_alias="LOGIN_RATE_LIMIT",
    )
    OTP_SEND_RATE_LIMIT: str = Field(default="5/hour", validation_alias="OTP_SEND_RATE_LIMIT")
    OTP_VERIFY_RATE_LIMIT: str = Field(
        default="10/15minutes", validation_alias="OTP_VERIFY_RATE_LIMIT"
    )
    RATE_LIMIT_ENABLED: bool = Field(default=True, validation_alias="RATE_LIMIT_ENABLED")
    TRUSTED_PROXY_HEADERS: bool = Field(
        default=False,
        description=(
            "Honour CF-Connecting-IP, X-Real-IP and X-Forwarded-For for the client IP; "
            "enable only behind a proxy that overwrites them"
        ),
        validation_alias="TRUSTED_PROXY_HEADERS",
    )

    # --- Mailgun Email Settings ---
    MAILGUN_API_KEY: str | None = Field(default=None, validation_alias="MAILGUN_API_KEY")
    MAILGUN_DOMAIN: str | None = Field(default=None, validation_alias="MAILGUN_DOMAIN")
    MAILGUN_FROM_EMAIL: str | None = Field(default=None, validation_alias="MAILGUN_FROM_EMAIL")
    MAILGUN_FROM_NAME: str = Field(default="AuthGuard", validation_alias="MAILGUN_FROM_NAME")
    MAILGUN_API_BASE_URL: str = Field(
        default="https://api.mailgun.net/v3", validation_alias="MAILGUN_API_BASE_URL"
    )

    # --- Chat-bot (Telegram) Settings ---
    TELEGRAM_API_BASE_URL: str = Field(
        default="https://api.telegram.org", validation_alias="TELEGRAM_API_BASE_URL"
    )
    DELIVERY_TIMEOUT_SECONDS: float = Field(default=10.0, validation_alias="DELIVERY_TIMEOUT_SECONDS")
    DELIVERY_SETTINGS_CACHE_SECONDS: int = Field(
        default=60, validation_alias="DELIVERY_SETTINGS_CACHE_SECONDS"
    )

    # --- Database Settings ---
    DATABASE_URL_ENV: str | None = Field(default=None, validation_alias="DATABASE_URL")
    POSTGRES_SERVER: str = Field(default="db", validation_alias="POSTGRES_SERVER")
    POSTGRES_USER: str = Field(default="admin", validation_alias="POSTGRES_USER")
    POSTGRES_PASSWORD: str = Field(default="Pa44w0rd", validation_alias="POSTGRES_PASSWORD")
    POSTGRES_DB: str = Field(default="authguarddb", validation_alias="POSTGRES_DB")
    POSTGRES_PORT: int = Field(default=5432, validation_alias="POSTGRES_PORT")
    DB_ECHO: bool = Field(default=False, validation_alias="DB_ECHO")

    @model_validator(mode="after")
    def _process_debug_overrides(self) -> "Settings":
        if self.DEBUG and self.LOG_LEVEL != "DEBUG":
            logger.info("DEBUG mode is ON. Overriding LOG_LEVEL to DEBUG.")
            self.LOG_LEVEL = "DEBUG"
        if self.PROGRESSIVE_DELAY_MAX_SECONDS < self.PROGRESSIVE_DELAY_BASE_SECONDS:
            raise ValueError(
                "PROGRESSIVE_DELAY_MAX_SECONDS must not be lower than PROGRESSIVE_DELAY_BASE_SECONDS"
            )
        if self.OTP_LENGTH < 4:
            raise ValueError("OTP_LENGTH must be at least 4 digits")
        login_limit = re.match(r"\s*(\d+)", self.LOGIN_RATE_LIMIT)
        if login_limit and int(login_limit.group(1)) <= self.IP_BLOCK_THRESHOLD:
            logger.warning(
                f"LOGIN_RATE_LIMIT ({self.LOGIN_RATE_LIMIT}) does not exceed IP_BLOCK_THRESHOLD "
                f"({self.IP_BLOCK_THRESHOLD}); the rate limiter will answer before IP blocking"
            )
        return self

    def _build_database_url(self, use_async: bool) -> str:
        driver_prefix = "postgresql+asyncpg://" if use_async else "postgresql://"

        if self.DATABASE_URL_ENV:
            db_url_str = self.DATABASE_URL_ENV
            # Non-postgres URLs (e.g. sqlite+aiosqlite) are used as given
            if not db_url_str.startswith(("postgres://", "postgresql")):
                return db_url_str
            if db_url_str.startswith(driver_prefix):
                return db_url_str
            return driver_prefix + db_url_str.split("://", 1)[1]
        return (
            f"{driver_prefix}{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_SERVER}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

    @property
    def ASYNC_SQLALCHEMY_DATABASE_URL(self) -> str:
        return self._build_database_url(use_async=True)

    @property
    def SYNC_SQLALCHEMY_DATABASE_URL(self) -> str:
        return self._build_database_url(use_async=False)


settings = Settings()

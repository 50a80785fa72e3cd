# authguard/core/effective_settings.py
"""
Effective delivery settings for OTP dispatch.

The provider resolves the settings the delivery channels need (Mailgun
credentials, Telegram API base, timeouts) and caches them for a short TTL.
It is injected into OTP dispatch rather than read from a global, and
`invalidate()` drops the cache when an operator changes the configuration.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from authguard.core.config import settings as env_settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeliverySettings:
    mailgun_api_key: str | None
    mailgun_domain: str | None
    mailgun_from_email: str | None
    mailgun_from_name: str
    mailgun_api_base_url: str
    telegram_api_base_url: str
    timeout_seconds: float

    @property
    def email_configured(self) -> bool:
        return bool(self.mailgun_api_key and self.mailgun_domain and self.mailgun_from_email)


async def load_env_delivery_settings() -> DeliverySettings:
    """Default loader: environment variables through the Settings object."""
    return DeliverySettings(
        mailgun_api_key=env_settings.MAILGUN_API_KEY,
        mailgun_domain=env_settings.MAILGUN_DOMAIN,
        mailgun_from_email=env_settings.MAILGUN_FROM_EMAIL,
        mailgun_from_name=env_settings.MAILGUN_FROM_NAME,
        mailgun_api_base_url=env_settings.MAILGUN_API_BASE_URL,
        telegram_api_base_url=env_settings.TELEGRAM_API_BASE_URL,
        timeout_seconds=env_settings.DELIVERY_TIMEOUT_SECONDS,
    )


class DeliverySettingsProvider:
    """TTL-cached source of DeliverySettings with explicit invalidation."""

    def __init__(
        self,
        loader: Callable[[], Awaitable[DeliverySettings]] = load_env_delivery_settings,
        ttl_seconds: float | None = None,
    ) -> None:
        self._loader = loader
        self._ttl_seconds = (
            env_settings.DELIVERY_SETTINGS_CACHE_SECONDS if ttl_seconds is None else ttl_seconds
        )
        self._cached: DeliverySettings | None = None
        self._loaded_at = 0.0
        self._lock = asyncio.Lock()

    def _is_fresh(self) -> bool:
        return (
            self._cached is not None
            and time.monotonic() - self._loaded_at < self._ttl_seconds
        )

    async def get(self) -> DeliverySettings:
        if self._is_fresh():
            return self._cached  # type: ignore[return-value]

        async with self._lock:
            if self._is_fresh():
                return self._cached  # type: ignore[return-value]
            logger.debug("Loading delivery settings")
            self._cached = await self._loader()
            self._loaded_at = time.monotonic()
            return self._cached

    def invalidate(self) -> None:
        """Drop the cached settings; the next get() reloads them."""
        self._cached = None
        self._loaded_at = 0.0


delivery_settings_provider = DeliverySettingsProvider()


def get_delivery_settings_provider() -> DeliverySettingsProvider:
    """FastAPI dependency; overridable in tests."""
    return delivery_settings_provider

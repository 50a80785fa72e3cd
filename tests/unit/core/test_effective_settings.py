# tests/unit/core/test_effective_settings.py
import pytest

from authguard.core.effective_settings import DeliverySettings, DeliverySettingsProvider


def _settings(domain: str | None) -> DeliverySettings:
    return DeliverySettings(
        mailgun_api_key="key",
        mailgun_domain=domain,
        mailgun_from_email="noreply@example.com",
        mailgun_from_name="AuthGuard",
        mailgun_api_base_url="https://mailgun.test/v3",
        telegram_api_base_url="https://telegram.test",
        timeout_seconds=1.0,
    )


class CountingLoader:
    def __init__(self) -> None:
        self.calls = 0

    async def __call__(self) -> DeliverySettings:
        self.calls += 1
        return _settings(f"mg{self.calls}.example.com")


@pytest.mark.asyncio
async def test_provider_caches_within_ttl():
    loader = CountingLoader()
    provider = DeliverySettingsProvider(loader=loader, ttl_seconds=300)

    first = await provider.get()
    second = await provider.get()

    assert first is second
    assert loader.calls == 1


@pytest.mark.asyncio
async def test_invalidate_forces_reload():
    loader = CountingLoader()
    provider = DeliverySettingsProvider(loader=loader, ttl_seconds=300)

    await provider.get()
    provider.invalidate()
    reloaded = await provider.get()

    assert loader.calls == 2
    assert reloaded.mailgun_domain == "mg2.example.com"


@pytest.mark.asyncio
async def test_zero_ttl_always_reloads():
    loader = CountingLoader()
    provider = DeliverySettingsProvider(loader=loader, ttl_seconds=0)

    await provider.get()
    await provider.get()

    assert loader.calls == 2


def test_email_configured_requires_all_mailgun_fields():
    assert _settings("mg.example.com").email_configured is True
    assert _settings(None).email_configured is False

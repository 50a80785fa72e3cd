# tests/unit/core/test_request_context.py
from unittest.mock import patch

import pytest
from starlette.requests import Request

from authguard.core.config import Settings
from authguard.core.request_context import get_client_info, get_real_client_ip


def _request(headers: dict[str, str], client: tuple[str, int] | None = ("10.0.0.9", 5000)) -> Request:
    scope = {
        "type": "http",
        "method": "POST",
        "path": "/api/v1/auth/login",
        "headers": [(k.lower().encode(), v.encode()) for k, v in headers.items()],
        "client": client,
    }
    return Request(scope)


def test_cloudflare_header_wins():
    request = _request(
        {"CF-Connecting-IP": "198.51.100.1", "X-Real-IP": "198.51.100.2", "X-Forwarded-For": "198.51.100.3"}
    )
    assert get_real_client_ip(request) == "198.51.100.1"


def test_real_ip_then_first_forwarded_hop():
    assert get_real_client_ip(_request({"X-Real-IP": " 198.51.100.2 "})) == "198.51.100.2"
    assert (
        get_real_client_ip(_request({"X-Forwarded-For": "198.51.100.3, 10.0.0.1, 10.0.0.2"}))
        == "198.51.100.3"
    )


def test_falls_back_to_socket_peer():
    assert get_real_client_ip(_request({})) == "10.0.0.9"
    assert get_real_client_ip(_request({}, client=None)) == "unknown"


def test_proxy_headers_ignored_when_untrusted():
    with patch("authguard.core.request_context.settings.TRUSTED_PROXY_HEADERS", False):
        assert get_real_client_ip(_request({"X-Real-IP": "198.51.100.2"})) == "10.0.0.9"


def test_proxy_headers_are_untrusted_by_default(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.delenv("TRUSTED_PROXY_HEADERS", raising=False)

    assert Settings(_env_file=None).TRUSTED_PROXY_HEADERS is False


def test_login_limit_stays_above_ip_block_threshold(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.delenv("LOGIN_RATE_LIMIT", raising=False)
    defaults = Settings(_env_file=None)

    assert int(defaults.LOGIN_RATE_LIMIT.split("/")[0]) > defaults.IP_BLOCK_THRESHOLD


def test_client_info_truncates_user_agent():
    info = get_client_info(
        _request({"User-Agent": "A" * 2000, "Accept-Language": "fr-FR", "Accept-Encoding": "gzip"})
    )
    assert len(info.user_agent) == 512
    assert info.accept_language == "fr-FR"
    assert info.accept_encoding == "gzip"
    assert info.ip == "10.0.0.9"

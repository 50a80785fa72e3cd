# tests/unit/core/test_security_logger.py
"""
Unit tests for the fail2ban security log lines.
"""

import logging
from unittest.mock import patch

from authguard.core.security_logger import SecurityLogger, mask_email, sanitize, security_log


def test_failed_login_logs_correctly():
    """failed_login writes FAILED_LOGIN with the IP, a masked email and the reason."""
    with patch.object(security_log.logger, "info") as mock_info:
        security_log.failed_login("192.168.1.100", "alice@example.com", "INVALID_CREDENTIALS")

        mock_info.assert_called_once()
        line = mock_info.call_args[0][0]
        assert line.startswith("FAILED_LOGIN]")
        assert "ip=192.168.1.100" in line
        assert "email=ali***@example.com" in line
        assert "reason=INVALID_CREDENTIALS" in line
        assert "alice@" not in line


def test_failed_login_sanitizes_injection():
    """Newlines and brackets cannot forge a second fail2ban entry."""
    with patch.object(security_log.logger, "info") as mock_info:
        security_log.failed_login(
            "10.0.0.1\n2026-01-01 00:00:00 SECURITY [FAILED_LOGIN] ip=6.6.6.6",
            "x@example.com",
            "bad]\r\n",
        )

        line = mock_info.call_args[0][0]
        assert "\n" not in line
        assert "\r" not in line
        assert line.count("]") == 1


def test_account_locked_and_ip_blocked_lines():
    with patch.object(security_log.logger, "info") as mock_info:
        security_log.account_locked("1.2.3.4", "bob@example.com", 5)
        security_log.ip_blocked("1.2.3.4", "customer", 20)

        locked_line = mock_info.call_args_list[0][0][0]
        blocked_line = mock_info.call_args_list[1][0][0]
        assert locked_line.startswith("ACCOUNT_LOCKED]")
        assert "attempts=5" in locked_line
        assert blocked_line.startswith("IP_BLOCKED]")
        assert "type=customer" in blocked_line
        assert "attempts=20" in blocked_line


def test_otp_failed_masks_email_subjects_only():
    with patch.object(security_log.logger, "info") as mock_info:
        security_log.otp_failed("1.2.3.4", "carol@example.com", "login")
        security_log.otp_failed("1.2.3.4", "3f2a9c1e-0000-4000-8000-000000000000", "page_change")

        email_line = mock_info.call_args_list[0][0][0]
        uuid_line = mock_info.call_args_list[1][0][0]
        assert "subject=car***@example.com" in email_line
        assert "subject=3f2a9c1e-0000-4000-8000-000000000000" in uuid_line
        assert "purpose=page_change" in uuid_line


def test_sanitize_defaults_and_truncation():
    assert sanitize(None) == "unknown"
    assert sanitize("") == "unknown"
    assert sanitize("a" * 300) == "a" * 255
    assert sanitize("abc", max_length=2) == "ab"


def test_mask_email_short_local_part():
    assert mask_email("ab@example.com") == "a***@example.com"
    assert mask_email("not-an-email") == "not-an-email"


def test_unwritable_log_path_falls_back_to_stream(tmp_path):
    """A log path that cannot be created must not break the application."""
    blocker = tmp_path / "file"
    blocker.write_text("x")

    handler = SecurityLogger._build_handler(blocker / "nested" / "security.log")

    assert isinstance(handler, logging.StreamHandler)
    assert not isinstance(handler, logging.FileHandler)

# authguard/core/security_logger.py
"""
Dedicated security logger for fail2ban integration.

Writes security events to a file in a format that fail2ban can parse.
Includes log injection safeguards and proper timestamp formatting.
"""

import logging
import re
from logging.handlers import RotatingFileHandler
from pathlib import Path

from authguard.core.config import settings

logger = logging.getLogger(__name__)


def sanitize(value: object | None, max_length: int = 255) -> str:
    """
    Sanitize user input to prevent log injection attacks.

    Removes/escapes characters that could break log parsing or inject fake entries.

    Args:
        value: The value to sanitize
        max_length: Maximum length of the output

    Returns:
        Sanitized string safe for logging
    """
    if value is None or value == "":
        return "unknown"

    value = str(value).strip()

    # Newlines, brackets and control characters could forge entries or break parsing
    value = re.sub(r"[\n\r\[\]<>\x00-\x1f\x7f-\x9f]", "", value)

    return value[:max_length]


def mask_email(email: str | None) -> str:
    """
    Mask an email for privacy while keeping it recognisable.

    Shows the first 3 chars of the local part plus the domain.
    """
    if not email or "@" not in email:
        return sanitize(email)

    local, domain = email.rsplit("@", 1)
    if len(local) > 3:
        masked_local = local[:3] + "***"
    else:
        masked_local = local[0] + "***" if local else "***"

    return f"{sanitize(masked_local)}@{sanitize(domain)}"


class SecurityLogger:
    """
    Security event logger for fail2ban integration.

    Log format compatible with fail2ban datepattern:
        2026-01-05 10:15:30 SECURITY [EVENT_TYPE] ip=x.x.x.x field=value ...

    All user-controlled fields are sanitized to prevent log injection.
    """

    def __init__(self, log_path: str | Path) -> None:
        self.logger = logging.getLogger("security")
        self.logger.setLevel(logging.INFO)
        self.logger.propagate = False  # Don't propagate to root logger

        if not self.logger.handlers:
            self.logger.addHandler(self._build_handler(Path(log_path)))

    @staticmethod
    def _build_handler(log_path: Path) -> logging.Handler:
        try:
            log_path.parent.mkdir(parents=True, exist_ok=True)
            # Rotating file handler: 50MB max, keep 10 backups
            handler: logging.Handler = RotatingFileHandler(
                str(log_path),
                maxBytes=50 * 1024 * 1024,
                backupCount=10,
            )
        except OSError as e:
            logger.warning(f"Security log file {log_path} not writable ({e}); using stderr.")
            handler = logging.StreamHandler()

        # Format: timestamp SECURITY [message
        # The message carries EVENT_TYPE] ip=... fields...
        handler.setFormatter(
            logging.Formatter(
                "%(asctime)s SECURITY [%(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )
        return handler

    def failed_login(self, ip: str, email: str, reason: str) -> None:
        """
        Log a failed login attempt.

        Args:
            ip: Client IP address
            email: Email that was attempted
            reason: Failure reason (INVALID_CREDENTIALS, ACCOUNT_LOCKED, ...)
        """
        self.logger.info(
            f"FAILED_LOGIN] ip={sanitize(ip)} email={mask_email(email)} reason={sanitize(reason)}"
        )

    def successful_login(self, ip: str, email: str) -> None:
        """Log a successful login (for audit trail, not for banning)."""
        self.logger.info(f"LOGIN_SUCCESS] ip={sanitize(ip)} email={mask_email(email)}")

    def account_locked(self, ip: str, email: str, attempts: int) -> None:
        self.logger.info(
            f"ACCOUNT_LOCKED] ip={sanitize(ip)} email={mask_email(email)} attempts={int(attempts)}"
        )

    def ip_blocked(self, ip: str, attempt_type: str, attempts: int) -> None:
        self.logger.info(
            f"IP_BLOCKED] ip={sanitize(ip)} type={sanitize(attempt_type, max_length=20)} "
            f"attempts={int(attempts)}"
        )

    def otp_failed(self, ip: str, subject_id: str, purpose: str) -> None:
        """
        Log a failed OTP verification.

        Args:
            ip: Client IP address
            subject_id: User id or email the code was checked for
            purpose: What the OTP was meant to authorize
        """
        subject = mask_email(subject_id) if "@" in (subject_id or "") else sanitize(subject_id)
        self.logger.info(
            f"OTP_FAILED] ip={sanitize(ip)} subject={subject} purpose={sanitize(purpose, max_length=64)}"
        )

    def rate_limited(self, ip: str, endpoint: str) -> None:
        """Log an endpoint rate limit violation."""
        self.logger.info(
            f"RATE_LIMIT] ip={sanitize(ip)} endpoint={sanitize(endpoint, max_length=100)}"
        )

    def protection_degraded(self, ip: str, stage: str, error: str) -> None:
        """
        Log that the guard failed open because a backing store errored.

        Not a ban signal: fail2ban filters should ignore this event.
        """
        self.logger.info(
            f"PROTECTION_DEGRADED] ip={sanitize(ip)} stage={sanitize(stage, max_length=50)} "
            f"error={sanitize(error, max_length=200)}"
        )


security_log = SecurityLogger(settings.SECURITY_LOG_PATH)

# authguard/services/security_events.py
"""
Security event log.

Provides:
- log_security_event(): append a SecurityEvent in the caller's transaction
- log_security_event_safe(): own-session variant whose failures are logged
  and swallowed, used on rejection and fail-open paths
- Severity mapping
- Payload allowlist, secret masking and size caps
"""

import json
import logging
import re
import uuid
from collections.abc import Callable
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from authguard.core import clock
from authguard.core.config import settings
from authguard.core.request_context import get_request_context
from authguard.db.models.security_event import SEVERITIES, SecurityEvent

logger = logging.getLogger(__name__)

# Event types
BLOCKED_ATTEMPT = "blocked_attempt"
LOCKED_ACCOUNT_ATTEMPT = "locked_account_attempt"
ACCOUNT_LOCKED = "account_locked"
IP_BLOCKED = "ip_blocked"
PROTECTION_DEGRADED = "protection_degraded"
OTP_VERIFICATION_FAILED = "otp_verification_failed"
OTP_DELIVERY_FAILED = "otp_delivery_failed"
PASSWORD_VERIFIED = "password_verified"
RATE_LIMITED = "rate_limited"

SEVERITY_MAP = {
    BLOCKED_ATTEMPT: "high",
    LOCKED_ACCOUNT_ATTEMPT: "medium",
    ACCOUNT_LOCKED: "high",
    IP_BLOCKED: "critical",
    PROTECTION_DEGRADED: "critical",
    OTP_VERIFICATION_FAILED: "medium",
    OTP_DELIVERY_FAILED: "medium",
    PASSWORD_VERIFIED: "low",
    RATE_LIMITED: "medium",
}

# Maximum size for payload JSON (16KB)
MAX_PAYLOAD_SIZE = 16 * 1024

# Allowlisted keys for the payload (security: no secrets, no codes)
ALLOWED_PAYLOAD_KEYS = {
    "reason",
    "attempts",
    "failed_attempts",
    "minutes_remaining",
    "locked_until",
    "window_minutes",
    "attempt_type",
    "retry_after",
    "stage",
    "error",
    "purpose",
    "channel",
    "channel_errors",
    "challenge_id",
    "browser",
    "os",
    "device_type",
    "request_id",
    "request_method",
    "request_path",
    "limit",
}

SENSITIVE_PATTERNS = [
    r".*token.*",
    r".*secret.*",
    r".*password.*",
    r".*code$",
    r".*api_key.*",
]


def get_severity(event_type: str) -> str:
    """Get severity level for an event type."""
    return SEVERITY_MAP.get(event_type, "low")


def sanitize_payload(payload: dict[str, Any] | None) -> dict[str, Any] | None:
    """
    Sanitize payload dict: allowlist keys, mask secrets and cap size.

    Removes any keys not in ALLOWED_PAYLOAD_KEYS and drops the largest values
    until the serialized JSON fits MAX_PAYLOAD_SIZE.
    """
    if not payload:
        return None

    sanitized = {k: v for k, v in payload.items() if k in ALLOWED_PAYLOAD_KEYS}

    for k, v in sanitized.items():
        if isinstance(v, str):
            for pattern in SENSITIVE_PATTERNS:
                if re.match(pattern, k, re.IGNORECASE):
                    sanitized[k] = "[REDACTED]"
                    break

    serialized = json.dumps(sanitized, default=str)
    if len(serialized) > MAX_PAYLOAD_SIZE:
        sanitized["_truncated"] = True
        while len(json.dumps(sanitized, default=str)) > MAX_PAYLOAD_SIZE:
            if len(sanitized) <= 1:
                break
            largest_key = max(
                (k for k in sanitized if k != "_truncated"),
                key=lambda k: len(str(sanitized[k])),
                default=None,
            )
            if largest_key:
                del sanitized[largest_key]

    # JSON columns must receive plain JSON values
    return json.loads(json.dumps(sanitized, default=str)) if sanitized else None


def _build_event(
    event_type: str,
    severity: str | None,
    user_id: uuid.UUID | str | None,
    email: str | None,
    ip_address: str | None,
    user_agent: str | None,
    device_fingerprint: str | None,
    payload: dict[str, Any] | None,
) -> SecurityEvent:
    severity = severity or get_severity(event_type)
    if severity not in SEVERITIES:
        raise ValueError(f"Unknown severity '{severity}' for event {event_type}")

    ctx = get_request_context()
    payload = dict(payload or {})
    if ctx:
        payload.setdefault("request_id", ctx.request_id)
        payload.setdefault("request_method", ctx.request_method)
        payload.setdefault("request_path", ctx.request_path)

    if isinstance(user_id, str):
        user_id = uuid.UUID(user_id)

    return SecurityEvent(
        event_type=event_type,
        severity=severity,
        user_id=user_id,
        email=email.lower() if email else None,
        ip_address=ip_address or (ctx.ip_address if ctx else None),
        user_agent=(user_agent or (ctx.user_agent if ctx else None) or None),
        device_fingerprint=device_fingerprint,
        payload=sanitize_payload(payload),
        created_at=clock.utcnow(),
    )


async def log_security_event(
    db: AsyncSession,
    event_type: str,
    severity: str | None = None,
    *,
    user_id: uuid.UUID | str | None = None,
    email: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
    device_fingerprint: str | None = None,
    payload: dict[str, Any] | None = None,
) -> SecurityEvent:
    """
    Append a security event to the caller's transaction.

    Does not commit; persistence errors surface at the caller's flush/commit.
    """
    event = _build_event(
        event_type, severity, user_id, email, ip_address, user_agent, device_fingerprint, payload
    )
    db.add(event)
    logger.debug(f"Security event queued: {event_type} ({event.severity}) ip={event.ip_address}")
    return event


async def log_security_event_safe(
    session_factory: Callable[[], AsyncSession],
    event_type: str,
    severity: str | None = None,
    **fields: Any,
) -> bool:
    """
    Write a security event in its own short transaction.

    Failures are logged and swallowed: a rejection or fallback must never be
    turned into a different error because the audit write failed.

    Returns:
        True when the event was committed
    """
    try:
        async with session_factory() as session:
            await log_security_event(session, event_type, severity, **fields)
            await session.commit()
        return True
    except Exception as e:
        logger.error(
            f"Failed to write security event {event_type} "
            f"(environment={settings.ENVIRONMENT}): {e}",
            exc_info=True,
        )
        return False

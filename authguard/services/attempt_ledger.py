# authguard/services/attempt_ledger.py
"""
Append-only ledger of login attempts.

Every guarded request ends with exactly one row here. Rows are never
updated or deleted; they back the rolling-window IP abuse count.
"""

import logging
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from authguard.core import clock
from authguard.db.models.login_attempt import ATTEMPT_TYPES, LoginAttempt

logger = logging.getLogger(__name__)


async def record_attempt(
    db: AsyncSession,
    email: str,
    ip_address: str,
    attempt_type: str,
    success: bool,
    user_agent: str | None = None,
    device_fingerprint: str | None = None,
    failure_reason: str | None = None,
) -> LoginAttempt:
    """
    Append one attempt to the caller's transaction and flush it.

    Persistence errors propagate; the caller owns the commit.
    """
    if attempt_type not in ATTEMPT_TYPES:
        raise ValueError(f"Unknown attempt type '{attempt_type}'")

    attempt = LoginAttempt(
        email=email.lower(),
        ip_address=ip_address,
        attempt_type=attempt_type,
        success=success,
        user_agent=user_agent[:512] if user_agent else None,
        device_fingerprint=device_fingerprint,
        failure_reason=failure_reason[:100] if failure_reason else None,
        attempted_at=clock.utcnow(),
    )
    db.add(attempt)
    await db.flush()
    return attempt


async def count_failures(
    db: AsyncSession,
    ip_address: str,
    attempt_type: str,
    window_start: datetime,
) -> int:
    """Count failed attempts from an IP for an attempt type strictly after window_start."""
    stmt = select(func.count(LoginAttempt.id)).where(
        LoginAttempt.ip_address == ip_address,
        LoginAttempt.attempt_type == attempt_type,
        LoginAttempt.success.is_(False),
        LoginAttempt.attempted_at > window_start,
    )
    result = await db.execute(stmt)
    return int(result.scalar() or 0)

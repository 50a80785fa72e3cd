# authguard/services/ip_abuse.py
"""
Per-IP abuse tracking over the attempt ledger.

An IP is blocked while it has IP_BLOCK_THRESHOLD or more failed attempts of a
given type inside the rolling window. There is no stored block state: the
block lifts by itself as old failures slide out of the window.
"""

import logging
from datetime import timedelta
from typing import NamedTuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from authguard.core import clock
from authguard.core.config import settings
from authguard.core.security_logger import security_log
from authguard.services import security_events
from authguard.services.attempt_ledger import count_failures

logger = logging.getLogger(__name__)


class IpRateStatus(NamedTuple):
    blocked: bool
    attempts: int
    remaining: int


async def check_ip_rate_limit(
    db: AsyncSession,
    ip_address: str,
    attempt_type: str,
    window_minutes: int | None = None,
) -> IpRateStatus:
    """
    Count recent failures from an IP and decide whether it is blocked.

    Emits a critical ip_blocked event (in the caller's transaction) when the
    threshold is reached.
    """
    window = settings.IP_BLOCK_WINDOW_MINUTES if window_minutes is None else window_minutes
    threshold = settings.IP_BLOCK_THRESHOLD
    window_start = clock.utcnow() - timedelta(minutes=window)

    failed_attempts = await count_failures(db, ip_address, attempt_type, window_start)
    blocked = failed_attempts >= threshold

    if blocked:
        logger.warning(
            f"IP {ip_address} blocked for {attempt_type}: "
            f"{failed_attempts} failures in {window}m"
        )
        security_log.ip_blocked(ip_address, attempt_type, failed_attempts)
        try:
            await security_events.log_security_event(
                db,
                security_events.IP_BLOCKED,
                ip_address=ip_address,
                payload={
                    "attempt_type": attempt_type,
                    "failed_attempts": failed_attempts,
                    "window_minutes": window,
                },
            )
            await db.commit()
        except SQLAlchemyError as e:
            # The block decision stands even when the audit write fails
            await db.rollback()
            logger.error(f"Failed to write ip_blocked event for {ip_address}: {e}")

    return IpRateStatus(
        blocked=blocked,
        attempts=failed_attempts,
        remaining=max(0, threshold - failed_attempts),
    )

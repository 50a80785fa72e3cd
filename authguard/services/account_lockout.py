# authguard/services/account_lockout.py
"""
Account lockout service for brute force protection.

Implements the per-account state machine UNLOCKED(n) -> LOCKED(until) -> UNLOCKED(0):
- Atomic increment on every failure (UPDATE ... RETURNING), then a
  compare-and-set lock transition under the same row lock
- Hard lockout after LOGIN_MAX_ATTEMPTS failures for LOGIN_LOCKOUT_MINUTES
- Lazy expiry: the first read after the deadline clears the lock and the counter
Uses the security columns in the User model.
"""

import logging
import math
from datetime import datetime, timedelta
from typing import NamedTuple

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from authguard.core import clock
from authguard.core.config import settings
from authguard.core.security_logger import security_log
from authguard.db.models.user import User
from authguard.services import security_events
from authguard.services.attempt_ledger import record_attempt

logger = logging.getLogger(__name__)


class LockStatus(NamedTuple):
    """Result of a lock check."""

    locked: bool
    attempts: int
    minutes_remaining: int | None = None


class FailureOutcome(NamedTuple):
    """State of the account after a recorded failure."""

    locked: bool
    attempts: int
    locked_until: datetime | None = None


def _email_matches(email: str):
    return func.lower(User.email) == email.lower()


def minutes_until(deadline: datetime, now: datetime) -> int:
    """Whole minutes left until deadline, rounded up; never below 1 while locked."""
    return max(1, math.ceil((deadline - now).total_seconds() / 60))


async def is_account_locked(db: AsyncSession, email: str) -> LockStatus:
    """
    Check lockout status, expiring a stale lock first.

    A lock whose deadline has passed is cleared together with the failure
    counter in one conditional UPDATE before the state is read, so an expired
    lock never leaks its old count into the progressive delay.
    Unknown emails come back as UNLOCKED(0) after the same two statements.
    """
    now = clock.utcnow()

    expire_stmt = (
        update(User)
        .where(
            _email_matches(email),
            User.locked_until.is_not(None),
            User.locked_until <= now,
        )
        .values(locked_until=None, failed_login_count=0)
        .execution_options(synchronize_session=False)
    )
    expired = await db.execute(expire_stmt)
    if expired.rowcount:
        await db.commit()
        logger.info(f"Lock expired and cleared for {email}")

    result = await db.execute(
        select(User.failed_login_count, User.locked_until).where(_email_matches(email))
    )
    row = result.one_or_none()
    if row is None:
        return LockStatus(locked=False, attempts=0)

    attempts, locked_until = row
    if locked_until is not None and locked_until > now:
        return LockStatus(
            locked=True,
            attempts=attempts,
            minutes_remaining=minutes_until(locked_until, now),
        )
    return LockStatus(locked=False, attempts=attempts or 0)


async def record_failed_login(
    db: AsyncSession,
    email: str,
    ip_address: str,
    attempt_type: str,
    failure_reason: str,
    user_agent: str | None = None,
    device_fingerprint: str | None = None,
) -> FailureOutcome:
    """
    Record a failed attempt and advance the account's failure counter.

    The increment returns the new count, so concurrent failures never observe
    the same value. The lock deadline is then set by a conditional UPDATE that
    only matches an account that is not already locked; its row count tells
    whether this call performed the transition. Failures while locked keep
    counting but never extend the deadline.
    """
    now = clock.utcnow()
    max_attempts = settings.LOGIN_MAX_ATTEMPTS
    lock_deadline = now + timedelta(minutes=settings.LOGIN_LOCKOUT_MINUTES)

    await record_attempt(
        db,
        email=email,
        ip_address=ip_address,
        attempt_type=attempt_type,
        success=False,
        user_agent=user_agent,
        device_fingerprint=device_fingerprint,
        failure_reason=failure_reason,
    )

    increment = (
        update(User)
        .where(_email_matches(email))
        .values(failed_login_count=User.failed_login_count + 1, last_failed_login_at=now)
        .returning(User.id, User.failed_login_count)
        .execution_options(synchronize_session=False)
    )
    row = (await db.execute(increment)).one_or_none()

    security_log.failed_login(ip_address, email, failure_reason)

    if row is None:
        # Unknown account: only the attempt row is kept
        await db.commit()
        return FailureOutcome(locked=False, attempts=0)

    user_id, attempts = row

    # Compare-and-set on the row the increment already holds: only the call
    # that moves the account from unlocked to locked matches
    newly_locked = False
    if attempts >= max_attempts:
        lock = await db.execute(
            update(User)
            .where(
                User.id == user_id,
                User.failed_login_count >= max_attempts,
                (User.locked_until.is_(None)) | (User.locked_until <= now),
            )
            .values(locked_until=lock_deadline)
            .execution_options(synchronize_session=False)
        )
        newly_locked = lock.rowcount == 1

    locked_until = (
        await db.execute(select(User.locked_until).where(User.id == user_id))
    ).scalar_one()

    if newly_locked:
        logger.warning(
            f"ACCOUNT LOCKED: {email} for {settings.LOGIN_LOCKOUT_MINUTES}m "
            f"after {attempts} failures."
        )
        security_log.account_locked(ip_address, email, attempts)
        await security_events.log_security_event(
            db,
            security_events.ACCOUNT_LOCKED,
            user_id=user_id,
            email=email,
            ip_address=ip_address,
            user_agent=user_agent,
            device_fingerprint=device_fingerprint,
            payload={
                "attempts": attempts,
                "locked_until": lock_deadline.isoformat(),
                "reason": "Too many failed login attempts",
            },
        )

    await db.commit()
    return FailureOutcome(
        locked=locked_until is not None and locked_until > now,
        attempts=attempts,
        locked_until=locked_until,
    )


async def record_successful_login(
    db: AsyncSession,
    email: str,
    ip_address: str,
    attempt_type: str,
    user_agent: str | None = None,
    device_fingerprint: str | None = None,
) -> None:
    """Record a successful attempt and reset the account to UNLOCKED(0)."""
    now = clock.utcnow()

    await record_attempt(
        db,
        email=email,
        ip_address=ip_address,
        attempt_type=attempt_type,
        success=True,
        user_agent=user_agent,
        device_fingerprint=device_fingerprint,
    )

    stmt = (
        update(User)
        .where(_email_matches(email))
        .values(
            failed_login_count=0,
            locked_until=None,
            last_successful_login_at=now,
            last_login_ip=ip_address,
        )
        .execution_options(synchronize_session=False)
    )
    await db.execute(stmt)
    await db.commit()

    security_log.successful_login(ip_address, email)


async def record_password_verified(
    db: AsyncSession,
    email: str,
    ip_address: str,
    attempt_type: str,
    user_agent: str | None = None,
    device_fingerprint: str | None = None,
) -> None:
    """
    Reset the failure counter after a correct password whose login still
    waits on an OTP.

    No ledger success and no last-login metadata are written here; those
    belong to the step that actually grants the session.
    """
    stmt = (
        update(User)
        .where(_email_matches(email))
        .values(failed_login_count=0, locked_until=None)
        .returning(User.id)
        .execution_options(synchronize_session=False)
    )
    user_id = (await db.execute(stmt)).scalar_one_or_none()
    await security_events.log_security_event(
        db,
        security_events.PASSWORD_VERIFIED,
        user_id=user_id,
        email=email,
        ip_address=ip_address,
        user_agent=user_agent,
        device_fingerprint=device_fingerprint,
        payload={"attempt_type": attempt_type, "stage": "otp_pending"},
    )
    await db.commit()
    logger.info(f"Password verified for {email}; login waits on OTP")

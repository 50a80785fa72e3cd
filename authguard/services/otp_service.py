# authguard/services/otp_service.py
"""
One-time passcode issuing and verification for step-up checks.

Provides functions for:
- Generating codes and keyed digests for storage
- Issuing a challenge and dispatching it over email, chat-bot or both
- Single-use verification through a compare-and-set on ``consumed``,
  handing back the action payload the code approved
- Per-challenge wrong-code tracking and expired-challenge purging
"""

import hashlib
import hmac
import logging
import secrets
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from authguard.core import clock
from authguard.core.config import settings
from authguard.core.effective_settings import (
    DeliverySettingsProvider,
    get_delivery_settings_provider,
)
from authguard.core.security_logger import security_log
from authguard.db.models.otp_challenge import OtpChallenge
from authguard.services import security_events
from authguard.services.chatbot_service import send_otp_chatbot
from authguard.services.delivery import CHANNEL_BOTH, CHANNEL_CHATBOT, CHANNEL_EMAIL, CHANNELS
from authguard.services.email_service import send_otp_email

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OtpRecipient:
    """Where a code goes: an email address and/or a chat-bot destination."""

    email: str | None = None
    bot_token: str | None = None
    chat_id: str | None = None


@dataclass(frozen=True)
class OtpVerification:
    """Outcome of a verify; `action_data` is what the consumed challenge approved."""

    valid: bool
    challenge_id: uuid.UUID | None = None
    action_data: dict[str, Any] | None = None


@dataclass
class OtpDispatchResult:
    success: bool
    channel: str
    challenge_id: uuid.UUID
    errors: list[str] = field(default_factory=list)


def generate_otp_code(length: int | None = None) -> str:
    """Generate a zero-padded numeric code from the OS CSPRNG."""
    length = length or settings.OTP_LENGTH
    return f"{secrets.randbelow(10**length):0{length}d}"


def hash_otp_code(code: str) -> str:
    """Keyed digest of a code for storage; the code itself is never persisted."""
    return hmac.new(
        settings.SECRET_KEY.encode("utf-8"), code.encode("utf-8"), hashlib.sha256
    ).hexdigest()


def _subject_fields(subject_id: str) -> dict[str, object]:
    """Map a subject to the user_id/email columns of a security event."""
    try:
        return {"user_id": uuid.UUID(subject_id)}
    except ValueError:
        return {"email": subject_id}


async def issue_otp(
    db: AsyncSession,
    subject_id: str,
    purpose: str,
    ttl_minutes: int | None,
    channel: str,
    recipient: OtpRecipient,
    delivery_provider: DeliverySettingsProvider | None = None,
    action_data: dict[str, Any] | None = None,
) -> OtpDispatchResult:
    """
    Create a challenge, commit it, then hand the code to the channel(s).

    The challenge is persisted before dispatch so a delivered code can always
    be verified. For ``both`` the dispatch counts as successful when at least
    one channel accepted the message; per-channel errors are reported either way.
    `action_data` is stored with the challenge and returned by a successful
    consume_otp, binding the code to the exact change it approves.
    """
    if channel not in CHANNELS:
        raise ValueError(f"Unknown OTP channel '{channel}'")

    ttl = ttl_minutes or settings.OTP_TTL_MINUTES
    now = clock.utcnow()
    code = generate_otp_code()

    challenge_id = uuid.uuid4()
    challenge = OtpChallenge(
        id=challenge_id,
        subject_id=subject_id,
        code_hash=hash_otp_code(code),
        purpose=purpose,
        channel=channel,
        action_data=action_data,
        expires_at=now + timedelta(minutes=ttl),
        consumed=False,
        failed_attempts=0,
        created_at=now,
    )
    db.add(challenge)
    await db.commit()

    provider = delivery_provider or get_delivery_settings_provider()
    delivery_settings = await provider.get()

    errors: list[str] = []
    delivered = 0

    if channel in (CHANNEL_EMAIL, CHANNEL_BOTH):
        if not recipient.email:
            errors.append("email: no recipient address")
        else:
            result = await send_otp_email(delivery_settings, recipient.email, code, purpose, ttl)
            if result.success:
                delivered += 1
            else:
                errors.append(f"email: {result.error}")

    if channel in (CHANNEL_CHATBOT, CHANNEL_BOTH):
        result = await send_otp_chatbot(
            delivery_settings, recipient.bot_token, recipient.chat_id, code, purpose, ttl
        )
        if result.success:
            delivered += 1
        else:
            errors.append(f"chatbot: {result.error}")

    success = delivered > 0

    if not success:
        logger.error(f"OTP {challenge_id} for {purpose} was not delivered: {'; '.join(errors)}")
        await security_events.log_security_event(
            db,
            security_events.OTP_DELIVERY_FAILED,
            payload={
                "challenge_id": str(challenge_id),
                "purpose": purpose,
                "channel": channel,
                "channel_errors": errors,
            },
            **_subject_fields(subject_id),
        )
        await db.commit()
    elif errors:
        logger.warning(f"OTP {challenge_id} partially delivered: {'; '.join(errors)}")
    else:
        logger.info(f"OTP {challenge_id} issued for {purpose} via {channel}")

    return OtpDispatchResult(
        success=success, channel=channel, challenge_id=challenge_id, errors=errors
    )


async def verify_otp(
    db: AsyncSession,
    subject_id: str,
    code: str,
    purpose: str,
    ip_address: str | None = None,
) -> bool:
    """Consume the newest live challenge whose code matches; True only on success."""
    verification = await consume_otp(db, subject_id, code, purpose, ip_address=ip_address)
    return verification.valid


async def consume_otp(
    db: AsyncSession,
    subject_id: str,
    code: str,
    purpose: str,
    ip_address: str | None = None,
) -> OtpVerification:
    """
    Consume the newest live challenge whose code matches.

    Every failure cause (wrong code, expired, consumed, wrong purpose, too
    many wrong codes) yields the same invalid OtpVerification so callers
    cannot tell them apart.
    A wrong code counts against every live challenge of the subject and
    purpose; a challenge at OTP_MAX_ATTEMPTS wrong codes stops accepting any
    code. The account password lockout counter is never touched here.
    """
    now = clock.utcnow()
    max_attempts = settings.OTP_MAX_ATTEMPTS
    code = (code or "").strip()

    if code.isdigit():
        live = (
            OtpChallenge.subject_id == subject_id,
            OtpChallenge.purpose == purpose,
            OtpChallenge.consumed.is_(False),
            OtpChallenge.expires_at > now,
            OtpChallenge.failed_attempts < max_attempts,
        )
        result = await db.execute(
            select(OtpChallenge.id)
            .where(*live, OtpChallenge.code_hash == hash_otp_code(code))
            .order_by(OtpChallenge.created_at.desc())
            .limit(1)
        )
        challenge_id = result.scalar_one_or_none()

        if challenge_id is not None:
            # Compare-and-set: only one concurrent verifier can flip consumed
            consumed = await db.execute(
                update(OtpChallenge)
                .where(OtpChallenge.id == challenge_id, *live)
                .values(consumed=True, consumed_at=now)
                .returning(OtpChallenge.action_data)
                .execution_options(synchronize_session=False)
            )
            row = consumed.first()
            if row is not None:
                await db.commit()
                logger.info(f"OTP {challenge_id} verified for {purpose}")
                return OtpVerification(
                    valid=True, challenge_id=challenge_id, action_data=row.action_data
                )

    await _record_otp_failure(db, subject_id, purpose, now, ip_address)
    return OtpVerification(valid=False)


async def _record_otp_failure(
    db: AsyncSession,
    subject_id: str,
    purpose: str,
    now: datetime,
    ip_address: str | None,
) -> None:
    await db.execute(
        update(OtpChallenge)
        .where(
            OtpChallenge.subject_id == subject_id,
            OtpChallenge.purpose == purpose,
            OtpChallenge.consumed.is_(False),
            OtpChallenge.expires_at > now,
        )
        .values(failed_attempts=OtpChallenge.failed_attempts + 1)
        .execution_options(synchronize_session=False)
    )
    await security_events.log_security_event(
        db,
        security_events.OTP_VERIFICATION_FAILED,
        ip_address=ip_address,
        payload={"purpose": purpose},
        **_subject_fields(subject_id),
    )
    await db.commit()

    security_log.otp_failed(ip_address or "unknown", subject_id, purpose)
    logger.warning(f"OTP verification failed for subject {subject_id} ({purpose})")


async def purge_expired_challenges(db: AsyncSession, older_than: datetime) -> int:
    """
    Delete challenges that expired before `older_than`.

    Storage hygiene only: verification never depends on this having run.
    """
    result = await db.execute(
        delete(OtpChallenge)
        .where(OtpChallenge.expires_at < older_than)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    deleted = result.rowcount or 0
    if deleted:
        logger.info(f"Purged {deleted} expired OTP challenges")
    return deleted


def recipient_for(email: str | None, channel_config: dict | None) -> OtpRecipient:
    """Build the delivery target from an account email and its policy's channel config."""
    config = channel_config or {}
    chat_id = config.get("chat_id")
    return OtpRecipient(
        email=config.get("email") or email,
        bot_token=config.get("bot_token"),
        chat_id=str(chat_id) if chat_id else None,
    )

# authguard/api/routers/auth.py
"""
Guarded login endpoints.

Flow: guard (IP check, lock check, progressive delay) -> credential check ->
2FA policy -> session token, or a pending-OTP token that is exchanged for a
session once the emailed / chat-bot code is verified.
"""

import logging
import uuid

from fastapi import APIRouter, Depends, Request
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from authguard.core.config import settings
from authguard.core.effective_settings import (
    DeliverySettingsProvider,
    get_delivery_settings_provider,
)
from authguard.core.rate_limit import limiter
from authguard.core.request_context import ClientInfo, get_client_info
from authguard.core.security import (
    create_otp_pending_token,
    create_session_token,
    decode_otp_pending_token,
    run_dummy_password_check,
    verify_password,
)
from authguard.db.models.user import User
from authguard.db.session import get_async_session
from authguard.exceptions import AuthenticationError, OtpDeliveryError
from authguard.schemas.auth import (
    LoginOtpResendRequest,
    LoginOtpVerifyRequest,
    LoginRequest,
    LoginResponse,
)
from authguard.services import otp_service
from authguard.services.account_lockout import record_successful_login
from authguard.services.brute_force_guard import BruteForceGuard, get_brute_force_guard
from authguard.services.device_fingerprint import extract_device_fingerprint
from authguard.services.two_factor_policy import (
    ACTION_LOGIN,
    TwoFactorRequirement,
    resolve_two_factor,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["Auth - Guarded Login"])

INVALID_CREDENTIALS = "INVALID_CREDENTIALS"


async def authenticate(db: AsyncSession, email: str, password: str) -> User | None:
    """
    Check a password against the credential store.

    Unknown accounts still pay for one hash verification so response timing
    does not reveal whether the email exists.
    """
    result = await db.execute(select(User).where(func.lower(User.email) == email.lower()))
    user = result.scalar_one_or_none()

    if user is None:
        run_dummy_password_check(password)
        return None
    if not verify_password(password, user.hashed_password):
        return None
    if not user.is_active:
        logger.warning(f"Login attempt for inactive user: {user.email} (ID: {user.id})")
        return None
    return user


def _session_response(user: User) -> LoginResponse:
    logger.info(f"User logged in successfully: {user.email} (ID: {user.id})")
    return LoginResponse(access_token=create_session_token(user), token_type="bearer")


async def _send_login_otp(
    db: AsyncSession,
    user: User,
    requirement: TwoFactorRequirement,
    attempt_type: str,
    delivery_provider: DeliverySettingsProvider,
) -> LoginResponse:
    dispatch = await otp_service.issue_otp(
        db,
        subject_id=str(user.id),
        purpose=ACTION_LOGIN,
        ttl_minutes=settings.OTP_TTL_MINUTES,
        channel=requirement.channel or "email",
        recipient=otp_service.recipient_for(user.email, requirement.channel_config),
        delivery_provider=delivery_provider,
    )
    if not dispatch.success:
        raise OtpDeliveryError()

    logger.info(f"OTP required for {user.email}; challenge {dispatch.challenge_id} sent")
    return LoginResponse(
        requires_otp=True,
        otp_token=create_otp_pending_token(user, attempt_type),
        channel=dispatch.channel,
        expires_in_minutes=settings.OTP_TTL_MINUTES,
    )


async def _record_session_granted(
    db: AsyncSession, user: User, attempt_type: str, client: ClientInfo
) -> None:
    """Ledger success and last-login metadata for a login finished outside the guard."""
    device = extract_device_fingerprint(
        client.user_agent, client.accept_language, client.accept_encoding
    )
    await record_successful_login(
        db,
        email=user.email,
        ip_address=client.ip,
        attempt_type=attempt_type,
        user_agent=client.user_agent,
        device_fingerprint=device.fingerprint,
    )


async def _guarded_login(
    payload: LoginRequest,
    attempt_type: str,
    client: ClientInfo,
    guard: BruteForceGuard,
    db: AsyncSession,
    delivery_provider: DeliverySettingsProvider,
) -> LoginResponse:
    ctx = await guard.protect(payload.identifier, client, attempt_type)

    async with ctx:
        user = await authenticate(db, ctx.email, payload.password)
        if user is not None and attempt_type == "admin" and user.role != "admin":
            user = None

        if user is None:
            outcome = await ctx.record_failure(INVALID_CREDENTIALS)
            if outcome is not None and outcome.locked:
                logger.warning(f"Login failed for {ctx.email}; account is now locked")
            raise AuthenticationError()

        requirement = await resolve_two_factor(db, user.id, ACTION_LOGIN)
        if requirement.required:
            # CREDENTIALS_OK -> OTP_PENDING: the session is not granted yet
            await ctx.record_password_verified()
        else:
            await ctx.record_success()

    if not requirement.required:
        return _session_response(user)
    return await _send_login_otp(db, user, requirement, attempt_type, delivery_provider)


@router.post("/login", response_model=LoginResponse, response_model_exclude_none=True)
@limiter.limit(settings.LOGIN_RATE_LIMIT)
async def login(
    request: Request,
    payload: LoginRequest,
    client: ClientInfo = Depends(get_client_info),
    guard: BruteForceGuard = Depends(get_brute_force_guard),
    db: AsyncSession = Depends(get_async_session),
    delivery_provider: DeliverySettingsProvider = Depends(get_delivery_settings_provider),
):
    return await _guarded_login(payload, "customer", client, guard, db, delivery_provider)


@router.post("/admin/login", response_model=LoginResponse, response_model_exclude_none=True)
@limiter.limit(settings.LOGIN_RATE_LIMIT)
async def admin_login(
    request: Request,
    payload: LoginRequest,
    client: ClientInfo = Depends(get_client_info),
    guard: BruteForceGuard = Depends(get_brute_force_guard),
    db: AsyncSession = Depends(get_async_session),
    delivery_provider: DeliverySettingsProvider = Depends(get_delivery_settings_provider),
):
    return await _guarded_login(payload, "admin", client, guard, db, delivery_provider)


async def _user_from_pending_token(db: AsyncSession, claims: dict) -> User:
    user = await db.get(User, uuid.UUID(claims["sub"]))
    if user is None or not user.is_active:
        raise AuthenticationError()
    return user


@router.post("/login/verify-otp", response_model=LoginResponse, response_model_exclude_none=True)
@limiter.limit(settings.OTP_VERIFY_RATE_LIMIT)
async def verify_login_otp(
    request: Request,
    payload: LoginOtpVerifyRequest,
    client: ClientInfo = Depends(get_client_info),
    db: AsyncSession = Depends(get_async_session),
):
    claims = decode_otp_pending_token(payload.otp_token)
    if claims is None:
        raise AuthenticationError()

    verified = await otp_service.verify_otp(
        db, claims["sub"], payload.code, ACTION_LOGIN, ip_address=client.ip
    )
    if not verified:
        # Wrong, expired and already-used codes share this response
        raise AuthenticationError()

    user = await _user_from_pending_token(db, claims)
    response = _session_response(user)
    # OTP_PENDING -> SESSION_GRANTED is the only place an OTP login counts as a success
    await _record_session_granted(db, user, claims.get("attempt_type", "customer"), client)
    return response


@router.post("/login/resend-otp", response_model=LoginResponse, response_model_exclude_none=True)
@limiter.limit(settings.OTP_SEND_RATE_LIMIT)
async def resend_login_otp(
    request: Request,
    payload: LoginOtpResendRequest,
    client: ClientInfo = Depends(get_client_info),
    db: AsyncSession = Depends(get_async_session),
    delivery_provider: DeliverySettingsProvider = Depends(get_delivery_settings_provider),
):
    claims = decode_otp_pending_token(payload.otp_token)
    if claims is None:
        raise AuthenticationError()
    user = await _user_from_pending_token(db, claims)
    attempt_type = claims.get("attempt_type", "customer")

    # A login whose step-up was switched off meanwhile gets its session,
    # otherwise a fresh challenge replaces the pending one
    requirement = await resolve_two_factor(db, user.id, ACTION_LOGIN)
    if not requirement.required:
        response = _session_response(user)
        await _record_session_granted(db, user, attempt_type, client)
        return response
    return await _send_login_otp(db, user, requirement, attempt_type, delivery_provider)

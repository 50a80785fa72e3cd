# authguard/api/routers/otp.py
"""
Step-up verification endpoints for sensitive admin actions.

Provides endpoints for:
- Reading whether an action needs an OTP for the current user
- Sending a code over the user's configured channel(s)
- Verifying (and consuming) a code, returning the action payload it approved
"""

import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from authguard.core.config import settings
from authguard.core.effective_settings import (
    DeliverySettingsProvider,
    get_delivery_settings_provider,
)
from authguard.core.rate_limit import get_subject_and_ip, limiter
from authguard.core.request_context import ClientInfo, get_client_info
from authguard.core.security import current_active_user
from authguard.db.models.user import User
from authguard.db.session import get_async_session
from authguard.exceptions import AuthenticationError, OtpDeliveryError
from authguard.schemas.auth import ActionType
from authguard.schemas.otp import (
    OtpSendRequest,
    OtpSendResponse,
    OtpVerifyRequest,
    OtpVerifyResponse,
    TwoFactorPolicyResponse,
)
from authguard.services import otp_service
from authguard.services.two_factor_policy import resolve_two_factor

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/otp", tags=["OTP - Step-up Verification"])


@router.get("/policy/{action_type}", response_model=TwoFactorPolicyResponse)
async def get_policy(
    action_type: ActionType,
    user: User = Depends(current_active_user),
    db: AsyncSession = Depends(get_async_session),
):
    requirement = await resolve_two_factor(db, user.id, action_type)
    return TwoFactorPolicyResponse(
        action_type=action_type,
        required=requirement.required,
        channel=requirement.channel,
    )


@router.post("/send", response_model=OtpSendResponse)
@limiter.limit(settings.OTP_SEND_RATE_LIMIT, key_func=get_subject_and_ip)
async def send_otp(
    request: Request,
    payload: OtpSendRequest,
    user: User = Depends(current_active_user),
    db: AsyncSession = Depends(get_async_session),
    delivery_provider: DeliverySettingsProvider = Depends(get_delivery_settings_provider),
):
    requirement = await resolve_two_factor(db, user.id, payload.action_type)
    if not requirement.required:
        return OtpSendResponse(required=False)

    dispatch = await otp_service.issue_otp(
        db,
        subject_id=str(user.id),
        purpose=payload.action_type,
        ttl_minutes=settings.OTP_TTL_MINUTES,
        channel=requirement.channel or "email",
        recipient=otp_service.recipient_for(user.email, requirement.channel_config),
        delivery_provider=delivery_provider,
        action_data=payload.action_data,
    )
    if not dispatch.success:
        raise OtpDeliveryError()

    return OtpSendResponse(
        required=True,
        sent=True,
        channel=dispatch.channel,
        expires_in_minutes=settings.OTP_TTL_MINUTES,
    )


@router.post("/verify", response_model=OtpVerifyResponse)
@limiter.limit(settings.OTP_VERIFY_RATE_LIMIT, key_func=get_subject_and_ip)
async def verify_otp(
    request: Request,
    payload: OtpVerifyRequest,
    user: User = Depends(current_active_user),
    client: ClientInfo = Depends(get_client_info),
    db: AsyncSession = Depends(get_async_session),
):
    verification = await otp_service.consume_otp(
        db, str(user.id), payload.code, payload.action_type, ip_address=client.ip
    )
    if not verification.valid:
        raise AuthenticationError()

    logger.info(f"Step-up verified for {user.email}: {payload.action_type}")
    return OtpVerifyResponse(verified=True, action_data=verification.action_data)

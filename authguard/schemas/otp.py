# authguard/schemas/otp.py
from typing import Any

from pydantic import BaseModel, Field

from authguard.schemas.auth import ActionType


class OtpSendRequest(BaseModel):
    action_type: ActionType
    # The change to approve; returned unchanged by a successful verify
    action_data: dict[str, Any] | None = None


class OtpSendResponse(BaseModel):
    required: bool
    sent: bool = False
    channel: str | None = None
    expires_in_minutes: int | None = None


class OtpVerifyRequest(BaseModel):
    action_type: ActionType
    code: str = Field(..., min_length=4, max_length=12)


class OtpVerifyResponse(BaseModel):
    verified: bool
    action_data: dict[str, Any] | None = None


class TwoFactorPolicyResponse(BaseModel):
    """What the caller needs to know about step-up for an action; never the channel secrets."""

    action_type: ActionType
    required: bool
    channel: str | None = None

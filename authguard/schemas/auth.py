# authguard/schemas/auth.py
from typing import Literal

from pydantic import BaseModel, Field

ActionType = Literal["login", "database_change", "page_change", "route_change"]


class LoginRequest(BaseModel):
    """
    Credentials for a guarded login.

    `email` is optional at the schema level so a missing identifier is
    answered with MISSING_EMAIL by the guard rather than a validation error.
    `username` is accepted as an alias for clients that post it instead.
    """

    email: str | None = Field(default=None, max_length=255)
    username: str | None = Field(default=None, max_length=255)
    password: str = Field(default="", max_length=1024)

    @property
    def identifier(self) -> str | None:
        return self.email or self.username


class LoginResponse(BaseModel):
    """Either a session token, or a pending-OTP token when step-up is required."""

    access_token: str | None = None
    token_type: str | None = None
    requires_otp: bool = False
    otp_token: str | None = None
    channel: str | None = None
    expires_in_minutes: int | None = None


class LoginOtpVerifyRequest(BaseModel):
    otp_token: str = Field(..., min_length=1)
    code: str = Field(..., min_length=4, max_length=12)


class LoginOtpResendRequest(BaseModel):
    otp_token: str = Field(..., min_length=1)


# authguard/core/security.py

import logging
import secrets
import uuid
from datetime import timedelta
from typing import Any

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from fastapi_users.password import PasswordHelper
from jose import JWTError, jwt
from sqlalchemy.ext.asyncio import AsyncSession

from authguard.core import clock
from authguard.core.config import settings
from authguard.db.models.user import User
from authguard.db.session import get_async_session
from authguard.exceptions import AuthenticationError

logger = logging.getLogger(__name__)

SESSION_TOKEN_AUDIENCE = "authguard:session"
OTP_PENDING_TOKEN_AUDIENCE = "authguard:otp-pending"

# --- Password Hashing ---
password_helper = PasswordHelper()

_dummy_password_hash: str | None = None


def get_password_hash(password: str) -> str:
    """Hashes a password using the configured password helper."""
    return password_helper.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verifies a plain password against a hashed password."""
    verified, _ = password_helper.verify_and_update(plain_password, hashed_password)
    return verified


def run_dummy_password_check(plain_password: str) -> None:
    """
    Spend the same work as a real verification when no account matched.

    Keeps "unknown email" indistinguishable from "wrong password" by timing.
    """
    global _dummy_password_hash
    if _dummy_password_hash is None:
        _dummy_password_hash = password_helper.hash(secrets.token_urlsafe(16))
    password_helper.verify_and_update(plain_password, _dummy_password_hash)


# --- Tokens ---
def _encode(data: dict[str, Any], audience: str, lifetime: timedelta) -> str:
    to_encode = data.copy()
    now = clock.utcnow()
    to_encode.update(
        {
            "aud": audience,
            "iat": int(now.timestamp()),
            "exp": int((now + lifetime).timestamp()),
            "jti": str(uuid.uuid4()),
        }
    )
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def _decode(token: str, audience: str) -> dict[str, Any] | None:
    try:
        return jwt.decode(
            token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM], audience=audience
        )
    except JWTError:
        return None


def create_session_token(user: User) -> str:
    return _encode(
        {"sub": str(user.id), "auth_time": int(clock.utcnow().timestamp())},
        SESSION_TOKEN_AUDIENCE,
        timedelta(minutes=settings.SESSION_TOKEN_EXPIRE_MINUTES),
    )


def create_otp_pending_token(user: User, attempt_type: str = "customer") -> str:
    """Token carrying a credential-checked login through the OTP step."""
    return _encode(
        {
            "sub": str(user.id),
            "email": user.email,
            "type": "otp_pending",
            "attempt_type": attempt_type,
        },
        OTP_PENDING_TOKEN_AUDIENCE,
        timedelta(minutes=settings.OTP_PENDING_TOKEN_EXPIRE_MINUTES),
    )


def decode_otp_pending_token(token: str) -> dict[str, Any] | None:
    payload = _decode(token, OTP_PENDING_TOKEN_AUDIENCE)
    if not payload or payload.get("type") != "otp_pending" or not payload.get("sub"):
        return None
    return payload


def decode_session_token(token: str) -> uuid.UUID | None:
    payload = _decode(token, SESSION_TOKEN_AUDIENCE)
    if not payload:
        return None
    try:
        return uuid.UUID(str(payload.get("sub")))
    except ValueError:
        return None


# --- Reusable Dependencies ---
bearer_scheme = HTTPBearer(auto_error=False)


async def current_active_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_async_session),
) -> User:
    if credentials is None:
        raise AuthenticationError()

    user_id = decode_session_token(credentials.credentials)
    if user_id is None:
        raise AuthenticationError()

    user = await db.get(User, user_id)
    if user is None or not user.is_active:
        logger.warning(f"Session token presented for missing or inactive user {user_id}")
        raise AuthenticationError()
    return user

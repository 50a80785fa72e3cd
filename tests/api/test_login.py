# tests/api/test_login.py
from unittest.mock import patch

import pytest
from httpx import AsyncClient
from sqlalchemy import select

from authguard.core.config import settings
from authguard.core.security import decode_session_token
from authguard.db.models.login_attempt import LoginAttempt
from authguard.db.models.security_event import SecurityEvent
from authguard.db.models.user import User
from authguard.services import otp_service
from authguard.services.delivery import DeliveryResult
from tests.factories import DEFAULT_PASSWORD, TwoFactorPolicyFactory, UserFactory

LOGIN_URL = f"{settings.API_V1_STR}/auth/login"
ADMIN_LOGIN_URL = f"{settings.API_V1_STR}/auth/admin/login"
VERIFY_URL = f"{settings.API_V1_STR}/auth/login/verify-otp"
RESEND_URL = f"{settings.API_V1_STR}/auth/login/resend-otp"


class CodeInbox:
    async def __call__(self, delivery_settings, to_email, code, purpose, ttl_minutes):
        self.codes.append(code)
        return DeliveryResult(True)

    def __init__(self) -> None:
        self.codes: list[str] = []


@pytest.fixture
def inbox():
    captured = CodeInbox()
    with patch.object(otp_service, "send_otp_email", captured):
        yield captured


@pytest.mark.asyncio
async def test_login_success_returns_session_token(test_client: AsyncClient, user: User):
    response = await test_client.post(
        LOGIN_URL, json={"email": user.email, "password": DEFAULT_PASSWORD}
    )

    assert response.status_code == 200, response.text
    body = response.json()
    assert body["token_type"] == "bearer"
    assert body["requires_otp"] is False
    assert decode_session_token(body["access_token"]) == user.id
    assert "X-Request-ID" in response.headers


@pytest.mark.asyncio
async def test_username_field_is_accepted(test_client: AsyncClient, user: User):
    response = await test_client.post(
        LOGIN_URL, json={"username": user.email, "password": DEFAULT_PASSWORD}
    )
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_missing_email_is_400(test_client: AsyncClient):
    response = await test_client.post(LOGIN_URL, json={"password": "whatever"})

    assert response.status_code == 400
    assert response.json() == {"error": "Email is required", "code": "MISSING_EMAIL"}


@pytest.mark.asyncio
async def test_unknown_email_and_wrong_password_look_identical(test_client: AsyncClient, user: User):
    wrong_password = await test_client.post(
        LOGIN_URL, json={"email": user.email, "password": "nope"}
    )
    unknown_email = await test_client.post(
        LOGIN_URL, json={"email": "ghost@example.com", "password": "nope"}
    )

    assert wrong_password.status_code == unknown_email.status_code == 401
    assert wrong_password.json() == unknown_email.json()
    assert wrong_password.json()["code"] == "INVALID_CREDENTIALS"


@pytest.mark.asyncio
async def test_inactive_account_gets_generic_failure(test_client: AsyncClient, db_session):
    UserFactory.create_user(db_session, email="frozen@example.com", is_active=False)
    await db_session.commit()

    response = await test_client.post(
        LOGIN_URL, json={"email": "frozen@example.com", "password": DEFAULT_PASSWORD}
    )

    assert response.status_code == 401
    assert response.json()["code"] == "INVALID_CREDENTIALS"


@pytest.mark.asyncio
async def test_locked_account_rejects_correct_password(
    test_client: AsyncClient, user: User, session_factory
):
    for _ in range(5):
        await test_client.post(LOGIN_URL, json={"email": user.email, "password": "wrong"})

    response = await test_client.post(
        LOGIN_URL, json={"email": user.email, "password": DEFAULT_PASSWORD}
    )

    assert response.status_code == 423
    body = response.json()
    assert body["code"] == "ACCOUNT_LOCKED"
    assert body["minutes_remaining"] in (29, 30)
    assert int(response.headers["Retry-After"]) == body["minutes_remaining"] * 60

    async with session_factory() as session:
        attempts = (await session.execute(select(LoginAttempt))).scalars().all()
    assert len(attempts) == 6
    assert not any(a.success for a in attempts)


@pytest.mark.asyncio
async def test_progressive_delay_between_failures(
    test_client: AsyncClient, user: User, recording_sleep
):
    for _ in range(4):
        await test_client.post(LOGIN_URL, json={"email": user.email, "password": "wrong"})

    assert recording_sleep.calls == [2.0, 4.0]


@pytest.mark.asyncio
async def test_success_resets_failure_count(test_client: AsyncClient, user: User, session_factory):
    for _ in range(3):
        await test_client.post(LOGIN_URL, json={"email": user.email, "password": "wrong"})
    ok = await test_client.post(LOGIN_URL, json={"email": user.email, "password": DEFAULT_PASSWORD})
    assert ok.status_code == 200

    async with session_factory() as session:
        stored = await session.get(User, user.id)
    assert stored.failed_login_count == 0
    assert stored.last_login_ip == "127.0.0.1"


@pytest.mark.asyncio
async def test_ip_block_after_twenty_failures(test_client: AsyncClient):
    headers = {"X-Forwarded-For": "198.51.100.200"}
    for i in range(20):
        await test_client.post(
            LOGIN_URL, json={"email": f"spray{i}@example.com", "password": "x"}, headers=headers
        )

    response = await test_client.post(
        LOGIN_URL, json={"email": "another@example.com", "password": "x"}, headers=headers
    )
    assert response.status_code == 429
    assert response.json()["code"] == "IP_BLOCKED"
    assert response.headers["Retry-After"] == "3600"

    elsewhere = await test_client.post(
        LOGIN_URL,
        json={"email": "another@example.com", "password": "x"},
        headers={"X-Forwarded-For": "198.51.100.201"},
    )
    assert elsewhere.status_code == 401


@pytest.mark.asyncio
async def test_admin_login_requires_admin_role(test_client: AsyncClient, user: User, db_session):
    customer = await test_client.post(
        ADMIN_LOGIN_URL, json={"email": user.email, "password": DEFAULT_PASSWORD}
    )
    assert customer.status_code == 401

    UserFactory.create_admin(db_session, email="root@example.com")
    await db_session.commit()
    admin = await test_client.post(
        ADMIN_LOGIN_URL, json={"email": "root@example.com", "password": DEFAULT_PASSWORD}
    )
    assert admin.status_code == 200


@pytest.mark.asyncio
async def test_login_with_otp_step_up(test_client: AsyncClient, user: User, db_session, inbox):
    TwoFactorPolicyFactory.create_policy(db_session, user_id=user.id, required_actions=["login"])
    await db_session.commit()

    first = await test_client.post(
        LOGIN_URL, json={"email": user.email, "password": DEFAULT_PASSWORD}
    )
    assert first.status_code == 200
    pending = first.json()
    assert pending["requires_otp"] is True
    assert pending["channel"] == "email"
    assert "access_token" not in pending

    wrong = await test_client.post(
        VERIFY_URL, json={"otp_token": pending["otp_token"], "code": "0000000"}
    )
    assert wrong.status_code == 401

    verified = await test_client.post(
        VERIFY_URL, json={"otp_token": pending["otp_token"], "code": inbox.codes[0]}
    )
    assert verified.status_code == 200
    assert decode_session_token(verified.json()["access_token"]) == user.id

    replay = await test_client.post(
        VERIFY_URL, json={"otp_token": pending["otp_token"], "code": inbox.codes[0]}
    )
    assert replay.status_code == 401


@pytest.mark.asyncio
async def test_pending_otp_login_is_not_a_successful_login(
    test_client: AsyncClient, user: User, db_session, session_factory, inbox
):
    TwoFactorPolicyFactory.create_policy(db_session, user_id=user.id, required_actions=["login"])
    await db_session.commit()
    await test_client.post(LOGIN_URL, json={"email": user.email, "password": "wrong"})

    pending = await test_client.post(
        LOGIN_URL, json={"email": user.email, "password": DEFAULT_PASSWORD}
    )
    assert pending.json()["requires_otp"] is True

    async with session_factory() as session:
        outcomes = (await session.execute(select(LoginAttempt.success))).scalars().all()
        events = (
            await session.execute(
                select(SecurityEvent.event_type).where(SecurityEvent.user_id == user.id)
            )
        ).scalars().all()
        stored = await session.get(User, user.id)
    assert True not in outcomes
    assert "password_verified" in events
    assert stored.failed_login_count == 0
    assert stored.last_successful_login_at is None
    assert stored.last_login_ip is None

    verified = await test_client.post(
        VERIFY_URL, json={"otp_token": pending.json()["otp_token"], "code": inbox.codes[0]}
    )
    assert verified.status_code == 200

    async with session_factory() as session:
        successes = (
            await session.execute(select(LoginAttempt).where(LoginAttempt.success.is_(True)))
        ).scalars().all()
        stored = await session.get(User, user.id)
    assert len(successes) == 1
    assert successes[0].attempt_type == "customer"
    assert stored.last_successful_login_at is not None
    assert stored.last_login_ip == "127.0.0.1"


@pytest.mark.asyncio
async def test_resend_issues_a_fresh_code(test_client: AsyncClient, user: User, db_session, inbox):
    TwoFactorPolicyFactory.create_policy(db_session, user_id=user.id, required_actions=["login"])
    await db_session.commit()
    first = await test_client.post(
        LOGIN_URL, json={"email": user.email, "password": DEFAULT_PASSWORD}
    )

    resent = await test_client.post(RESEND_URL, json={"otp_token": first.json()["otp_token"]})

    assert resent.status_code == 200
    assert resent.json()["requires_otp"] is True
    assert len(inbox.codes) == 2


@pytest.mark.asyncio
async def test_otp_delivery_failure_is_reported(test_client: AsyncClient, user: User, db_session):
    TwoFactorPolicyFactory.create_policy(db_session, user_id=user.id, required_actions=["login"])
    await db_session.commit()

    async def _fail(*args, **kwargs):
        return DeliveryResult(False, "Mailgun API error: 503")

    with patch.object(otp_service, "send_otp_email", _fail):
        response = await test_client.post(
            LOGIN_URL, json={"email": user.email, "password": DEFAULT_PASSWORD}
        )

    assert response.status_code == 502
    assert response.json()["code"] == "OTP_DELIVERY_FAILED"


@pytest.mark.asyncio
async def test_verify_rejects_forged_pending_token(test_client: AsyncClient):
    response = await test_client.post(VERIFY_URL, json={"otp_token": "forged", "code": "123456"})
    assert response.status_code == 401

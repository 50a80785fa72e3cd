# tests/unit/services/test_security_events.py
import uuid

import pytest
from sqlalchemy import select

from authguard.core.request_context import RequestContext, _request_context
from authguard.db.models.security_event import SecurityEvent
from authguard.services import security_events
from authguard.services.security_events import (
    MAX_PAYLOAD_SIZE,
    get_severity,
    log_security_event,
    log_security_event_safe,
    sanitize_payload,
)


def test_severity_mapping():
    assert get_severity(security_events.IP_BLOCKED) == "critical"
    assert get_severity(security_events.PROTECTION_DEGRADED) == "critical"
    assert get_severity(security_events.BLOCKED_ATTEMPT) == "high"
    assert get_severity(security_events.ACCOUNT_LOCKED) == "high"
    assert get_severity(security_events.LOCKED_ACCOUNT_ATTEMPT) == "medium"
    assert get_severity("something_new") == "low"


def test_sanitize_payload_drops_unknown_keys():
    cleaned = sanitize_payload({"reason": "x", "password": "hunter2", "code": "123456"})
    assert cleaned == {"reason": "x"}


def test_sanitize_payload_caps_size():
    cleaned = sanitize_payload({"reason": "r" * (MAX_PAYLOAD_SIZE + 10), "attempts": 3})
    assert cleaned["_truncated"] is True
    assert "reason" not in cleaned
    assert cleaned["attempts"] == 3


def test_sanitize_payload_empty():
    assert sanitize_payload(None) is None
    assert sanitize_payload({"unknown": 1}) is None


@pytest.mark.asyncio
async def test_log_security_event_attaches_request_context(db_session):
    token = _request_context.set(
        RequestContext(
            request_id="req-123",
            ip_address="198.51.100.7",
            user_agent="pytest",
            request_method="POST",
            request_path="/api/v1/auth/login",
        )
    )
    try:
        await log_security_event(
            db_session,
            security_events.BLOCKED_ATTEMPT,
            email="Eve@Example.com",
            payload={"attempts": 20},
        )
        await db_session.commit()
    finally:
        _request_context.reset(token)

    event = (await db_session.execute(select(SecurityEvent))).scalar_one()
    assert event.severity == "high"
    assert event.email == "eve@example.com"
    assert event.ip_address == "198.51.100.7"
    assert event.payload["request_id"] == "req-123"
    assert event.payload["request_path"] == "/api/v1/auth/login"
    assert event.payload["attempts"] == 20


@pytest.mark.asyncio
async def test_log_security_event_rejects_unknown_severity(db_session):
    with pytest.raises(ValueError):
        await log_security_event(db_session, security_events.IP_BLOCKED, "urgent")


@pytest.mark.asyncio
async def test_safe_variant_commits_in_own_session(session_factory, db_session):
    user_id = uuid.uuid4()
    written = await log_security_event_safe(
        session_factory,
        security_events.PROTECTION_DEGRADED,
        user_id=str(user_id),
        ip_address="203.0.113.5",
        payload={"stage": "ip_check", "error": "OperationalError"},
    )

    assert written is True
    event = (await db_session.execute(select(SecurityEvent))).scalar_one()
    assert event.user_id == user_id
    assert event.severity == "critical"


@pytest.mark.asyncio
async def test_safe_variant_swallows_store_errors():
    def broken_factory():
        raise RuntimeError("database unavailable")

    written = await log_security_event_safe(
        broken_factory, security_events.PROTECTION_DEGRADED, ip_address="203.0.113.5"
    )
    assert written is False

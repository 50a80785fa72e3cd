# tests/unit/services/test_two_factor_policy.py
import pytest

from authguard.services.two_factor_policy import NOT_REQUIRED, resolve_two_factor
from tests.factories import TwoFactorPolicyFactory


async def _policy(session, user, **kwargs):
    TwoFactorPolicyFactory.create_policy(session, user_id=user.id, **kwargs)
    await session.commit()


@pytest.mark.asyncio
async def test_no_policy_means_not_required(db_session, user):
    assert await resolve_two_factor(db_session, user.id, "login") == NOT_REQUIRED


@pytest.mark.asyncio
async def test_disabled_policy_means_not_required(db_session, user):
    await _policy(db_session, user, enabled=False, required_actions=["login"])
    assert (await resolve_two_factor(db_session, user.id, "login")).required is False


@pytest.mark.asyncio
async def test_only_listed_actions_are_required(db_session, user):
    await _policy(
        db_session,
        user,
        required_actions=["database_change", "route_change"],
        channel="both",
        channel_config={"bot_token": "1:x", "chat_id": "42"},
    )

    requirement = await resolve_two_factor(db_session, str(user.id), "database_change")
    assert requirement.required is True
    assert requirement.channel == "both"
    assert requirement.channel_config == {"bot_token": "1:x", "chat_id": "42"}

    assert (await resolve_two_factor(db_session, user.id, "page_change")).required is False
    assert (await resolve_two_factor(db_session, user.id, "login")).required is False


@pytest.mark.asyncio
async def test_unknown_channel_falls_back_to_email(db_session, user):
    await _policy(db_session, user, required_actions=["login"], channel="sms")
    requirement = await resolve_two_factor(db_session, user.id, "login")
    assert requirement.required is True
    assert requirement.channel == "email"


@pytest.mark.asyncio
async def test_unknown_action_type_is_rejected(db_session, user):
    with pytest.raises(ValueError):
        await resolve_two_factor(db_session, user.id, "delete_everything")

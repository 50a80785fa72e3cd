# authguard/services/two_factor_policy.py
"""
Resolves whether an action needs OTP step-up verification for an account.

The policy row is configured elsewhere; this module only reads it.
"""

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from authguard.db.models.two_factor_policy import TwoFactorPolicy
from authguard.services.delivery import CHANNEL_EMAIL, CHANNELS

logger = logging.getLogger(__name__)

ACTION_LOGIN = "login"
ACTION_DATABASE_CHANGE = "database_change"
ACTION_PAGE_CHANGE = "page_change"
ACTION_ROUTE_CHANGE = "route_change"
ACTION_TYPES = (ACTION_LOGIN, ACTION_DATABASE_CHANGE, ACTION_PAGE_CHANGE, ACTION_ROUTE_CHANGE)


@dataclass(frozen=True)
class TwoFactorRequirement:
    required: bool
    channel: str | None = None
    channel_config: dict[str, Any] = field(default_factory=dict)


NOT_REQUIRED = TwoFactorRequirement(required=False)


async def resolve_two_factor(
    db: AsyncSession,
    user_id: uuid.UUID | str,
    action_type: str,
) -> TwoFactorRequirement:
    """
    Decide whether `action_type` needs an OTP for this account.

    Not required when there is no policy, the policy is disabled, or the
    action is not in its required set.
    """
    if action_type not in ACTION_TYPES:
        raise ValueError(f"Unknown action type '{action_type}'")
    if isinstance(user_id, str):
        user_id = uuid.UUID(user_id)

    result = await db.execute(select(TwoFactorPolicy).where(TwoFactorPolicy.user_id == user_id))
    policy = result.scalar_one_or_none()

    if policy is None or not policy.enabled:
        return NOT_REQUIRED

    if action_type not in set(policy.required_actions or []):
        return NOT_REQUIRED

    channel = policy.channel if policy.channel in CHANNELS else CHANNEL_EMAIL
    if channel != policy.channel:
        logger.warning(
            f"Policy for user {user_id} has unknown channel '{policy.channel}'; using email."
        )

    return TwoFactorRequirement(
        required=True,
        channel=channel,
        channel_config=dict(policy.channel_config or {}),
    )

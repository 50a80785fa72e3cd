# authguard/db/models/two_factor_policy.py
"""
Per-account step-up verification policy. Configured outside this service.
"""

import uuid
from datetime import datetime
from typing import Any

from fastapi_users_db_sqlalchemy.generics import GUID
from sqlalchemy import JSON, Boolean, ForeignKey, String, Uuid, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from authguard.db.base_class import Base, UTCDateTime


class TwoFactorPolicy(Base):
    """
    Whether and how an account must confirm actions with an OTP.

    ``required_actions`` is a JSON list treated as a set of action types.
    ``channel_config`` holds the chat-bot destination (``bot_token``, ``chat_id``).
    """

    __tablename__ = "two_factor_policies"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)

    user_id: Mapped[uuid.UUID] = mapped_column(
        GUID,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )

    enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    required_actions: Mapped[list[str]] = mapped_column(
        JSON().with_variant(JSONB(), "postgresql"), nullable=False, default=list
    )

    # email | chatbot | both
    channel: Mapped[str] = mapped_column(String(16), nullable=False, default="email")

    channel_config: Mapped[dict[str, Any] | None] = mapped_column(
        JSON().with_variant(JSONB(), "postgresql"), nullable=True
    )

    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return f"<TwoFactorPolicy(user_id={self.user_id}, enabled={self.enabled}, channel={self.channel})>"

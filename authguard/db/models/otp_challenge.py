# authguard/db/models/otp_challenge.py
"""
Model for one-time-passcode challenges used for step-up verification.
"""

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Boolean, Index, Integer, String, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from authguard.core.clock import utcnow
from authguard.db.base_class import Base, UTCDateTime


class OtpChallenge(Base):
    """
    A single issued OTP.

    The challenge is persisted before the code is dispatched. It is mutated
    exactly once on successful verification (``consumed`` flips to True via a
    compare-and-set); the failure counter is the only other field that moves.
    Only a keyed SHA-256 digest of the code is stored.
    """

    __tablename__ = "otp_challenges"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)

    # User id for step-up actions, email address for pre-account flows
    subject_id: Mapped[str] = mapped_column(String(255), nullable=False)

    code_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    # What the code authorizes (login, database_change, page_change, ...)
    purpose: Mapped[str] = mapped_column(String(64), nullable=False)

    # email | chatbot | both
    channel: Mapped[str] = mapped_column(String(16), nullable=False)

    # The exact change a step-up code approves; handed back on successful verify
    action_data: Mapped[dict[str, Any] | None] = mapped_column(
        JSON().with_variant(JSONB(), "postgresql"), nullable=True
    )

    expires_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    consumed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    consumed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    # Wrong codes submitted while this challenge was live
    failed_attempts: Mapped[int] = mapped_column(
        Integer, default=0, server_default="0", nullable=False
    )

    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_otp_challenges_subject_purpose", "subject_id", "purpose", "created_at"),
        Index("ix_otp_challenges_expires_at", "expires_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<OtpChallenge(id={self.id}, subject={self.subject_id}, purpose={self.purpose}, "
            f"consumed={self.consumed})>"
        )

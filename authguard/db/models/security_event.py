# authguard/db/models/security_event.py
"""
Security event model: the append-only audit trail of the login engine.
"""

import uuid
from datetime import datetime
from typing import Any

from fastapi_users_db_sqlalchemy.generics import GUID
from sqlalchemy import JSON, BigInteger, CheckConstraint, Index, Integer, String, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from authguard.core.clock import utcnow
from authguard.db.base_class import Base, UTCDateTime

SEVERITIES = ("low", "medium", "high", "critical")


class SecurityEvent(Base):
    """
    Immutable record of a security-relevant decision.

    Written for every rejection (IP blocked, account locked), every lock
    transition, every OTP failure and every fail-open fallback.
    """

    __tablename__ = "security_events"

    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer(), "sqlite"), primary_key=True, autoincrement=True
    )
    event_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), nullable=False, unique=True, default=uuid.uuid4
    )

    # Classification
    event_type: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    severity: Mapped[str] = mapped_column(String(10), nullable=False)

    # Subject
    user_id: Mapped[uuid.UUID | None] = mapped_column(GUID, nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)

    # Network information
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(512), nullable=True)
    device_fingerprint: Mapped[str | None] = mapped_column(String(64), nullable=True)

    payload: Mapped[dict[str, Any] | None] = mapped_column(
        JSON().with_variant(JSONB(), "postgresql"), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
        default=utcnow,
        index=True,
    )

    __table_args__ = (
        CheckConstraint(
            "severity IN ('low', 'medium', 'high', 'critical')",
            name="severity_valid",
        ),
        Index("ix_security_events_ip_created", "ip_address", "created_at"),
        Index("ix_security_events_type_severity", "event_type", "severity"),
    )

    def __repr__(self) -> str:
        return f"<SecurityEvent({self.event_type}, {self.severity}, ip={self.ip_address})>"

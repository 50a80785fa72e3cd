# authguard/db/models/login_attempt.py
"""
Append-only ledger of login attempts.
"""

from datetime import datetime

from sqlalchemy import BigInteger, CheckConstraint, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from authguard.core.clock import utcnow
from authguard.db.base_class import Base, UTCDateTime

ATTEMPT_TYPES = ("admin", "customer")


class LoginAttempt(Base):
    """
    One row per guarded authentication attempt, successful or not.

    Rows are permanent audit facts: they are never updated or deleted.
    They back:
    - Rolling-window IP abuse counting
    - Security auditing and incident review
    """

    __tablename__ = "login_attempts"

    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer(), "sqlite"),
        primary_key=True,
        autoincrement=True,
    )

    # Identifier that was tried (may not belong to any account)
    email: Mapped[str] = mapped_column(String(255), nullable=False, index=True)

    # Source IP address
    ip_address: Mapped[str] = mapped_column(String(45), nullable=False)  # IPv6 max length

    user_agent: Mapped[str | None] = mapped_column(String(512), nullable=True)
    device_fingerprint: Mapped[str | None] = mapped_column(String(64), nullable=True)

    attempt_type: Mapped[str] = mapped_column(String(20), nullable=False)

    success: Mapped[bool] = mapped_column(default=False, nullable=False)
    failure_reason: Mapped[str | None] = mapped_column(String(100), nullable=True)

    attempted_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
        default=utcnow,
    )

    __table_args__ = (
        CheckConstraint(
            "attempt_type IN ('admin', 'customer')",
            name="attempt_type_valid",
        ),
        # Rolling-window IP counting: WHERE ip_address = ? AND attempt_type = ? AND attempted_at > ?
        Index("ix_login_attempts_ip_type_attempted", "ip_address", "attempt_type", "attempted_at"),
        Index("ix_login_attempts_email_attempted", "email", "attempted_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<LoginAttempt(email={self.email}, ip={self.ip_address}, "
            f"type={self.attempt_type}, success={self.success})>"
        )

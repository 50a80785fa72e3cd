# authguard/db/models/user.py

from datetime import datetime
from typing import Literal

from fastapi_users_db_sqlalchemy import SQLAlchemyBaseUserTableUUID
from sqlalchemy import Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from authguard.db.base_class import Base, UTCDateTime


class User(SQLAlchemyBaseUserTableUUID, Base):
    """
    Account record (credential store).

    Carries the lockout state embedded in the account: the failure counter,
    the lock deadline and last-login metadata.
    """

    __tablename__ = "users"

    role: Mapped[Literal["admin", "customer"]] = mapped_column(
        String(50), default="customer", nullable=False, index=True
    )
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), server_default=func.now(), nullable=False
    )

    # Lockout state
    failed_login_count: Mapped[int] = mapped_column(
        Integer, default=0, server_default="0", nullable=False
    )
    locked_until: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    last_failed_login_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    last_successful_login_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(), nullable=True
    )
    last_login_ip: Mapped[str | None] = mapped_column(String(45), nullable=True)

    def __repr__(self) -> str:
        return (
            f"<User(id={self.id!r}, email={self.email!r}, role={self.role!r}, "
            f"failed_login_count={self.failed_login_count!r})>"
        )

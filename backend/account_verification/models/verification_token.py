"""Verification token model used for email confirmation."""

from __future__ import annotations

import datetime as dt
from uuid import UUID

from sqlalchemy import Boolean, DateTime, Enum, ForeignKey, Index, String, text
from sqlalchemy.orm import Mapped, mapped_column

from account_verification.db.base import Base
from account_verification.models.enums import TokenInvalidationReason


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


class VerificationToken(Base):
    __tablename__ = "verification_tokens"
    __table_args__ = (
        # At most one unconsumed token per account, enforced by the database.
        Index(
            "uq_verification_tokens_unconsumed_account",
            "account_id",
            unique=True,
            postgresql_where=text("NOT consumed"),
            sqlite_where=text("NOT consumed"),
        ),
    )

    token: Mapped[str] = mapped_column(String(128), primary_key=True)
    account_id: Mapped[UUID] = mapped_column(
        ForeignKey("accounts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    issued_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    expires_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    consumed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    consumed_at: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    invalidation_reason: Mapped[TokenInvalidationReason | None] = mapped_column(
        Enum(
            TokenInvalidationReason,
            name="token_invalidation_reason",
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=True,
    )

"""initial schema

Revision ID: 0001_initial
Revises: 
Create Date: 2026-10-19 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    verification_status = postgresql.ENUM("unverified", "verified", name="verification_status")
    invalidation_reason = postgresql.ENUM("consumed", "superseded", name="token_invalidation_reason")
    delivery_status = postgresql.ENUM("pending", "sent", "failed_permanently", "cancelled", name="delivery_status")

    verification_status_col = postgresql.ENUM("unverified", "verified", name="verification_status", create_type=False)
    invalidation_reason_col = postgresql.ENUM("consumed", "superseded", name="token_invalidation_reason", create_type=False)
    delivery_status_col = postgresql.ENUM(
        "pending", "sent", "failed_permanently", "cancelled", name="delivery_status", create_type=False
    )

    bind = op.get_bind()
    verification_status.create(bind, checkfirst=True)
    invalidation_reason.create(bind, checkfirst=True)
    delivery_status.create(bind, checkfirst=True)

    op.create_table(
        "accounts",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        sa.Column("verification_status", verification_status_col, nullable=False, server_default="unverified"),
        sa.Column("verified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(op.f("ix_accounts_email"), "accounts", ["email"], unique=True)

    op.create_table(
        "verification_tokens",
        sa.Column("token", sa.String(length=128), primary_key=True, nullable=False),
        sa.Column("account_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("issued_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("consumed", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("consumed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("invalidation_reason", invalidation_reason_col, nullable=True),
        sa.ForeignKeyConstraint(["account_id"], ["accounts.id"], ondelete="CASCADE"),
    )
    op.create_index(op.f("ix_verification_tokens_account_id"), "verification_tokens", ["account_id"], unique=False)
    op.create_index(
        "uq_verification_tokens_unconsumed_account",
        "verification_tokens",
        ["account_id"],
        unique=True,
        postgresql_where=sa.text("NOT consumed"),
    )

    op.create_table(
        "delivery_attempts",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("account_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("token", sa.String(length=128), nullable=False),
        sa.Column("status", delivery_status_col, nullable=False, server_default="pending"),
        sa.Column("attempt_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_attempts", sa.Integer(), nullable=False),
        sa.Column("next_attempt_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_attempt_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("lease_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("claim_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("dead_lettered_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["account_id"], ["accounts.id"], ondelete="CASCADE"),
    )
    op.create_index(op.f("ix_delivery_attempts_account_id"), "delivery_attempts", ["account_id"], unique=False)
    op.create_index(op.f("ix_delivery_attempts_token"), "delivery_attempts", ["token"], unique=False)
    op.create_index(
        "ix_delivery_attempts_status_next_attempt_at",
        "delivery_attempts",
        ["status", "next_attempt_at"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("ix_delivery_attempts_status_next_attempt_at", table_name="delivery_attempts")
    op.drop_index(op.f("ix_delivery_attempts_token"), table_name="delivery_attempts")
    op.drop_index(op.f("ix_delivery_attempts_account_id"), table_name="delivery_attempts")
    op.drop_table("delivery_attempts")

    op.drop_index("uq_verification_tokens_unconsumed_account", table_name="verification_tokens")
    op.drop_index(op.f("ix_verification_tokens_account_id"), table_name="verification_tokens")
    op.drop_table("verification_tokens")

    op.drop_index(op.f("ix_accounts_email"), table_name="accounts")
    op.drop_table("accounts")

    bind = op.get_bind()
    postgresql.ENUM(name="delivery_status").drop(bind, checkfirst=True)
    postgresql.ENUM(name="token_invalidation_reason").drop(bind, checkfirst=True)
    postgresql.ENUM(name="verification_status").drop(bind, checkfirst=True)

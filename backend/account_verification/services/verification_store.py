"""Verification store: token persistence and race-safe one-time consumption."""

from __future__ import annotations

import datetime as dt
import logging
from uuid import UUID

from sqlalchemy import and_, delete, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from account_verification.core.exceptions import (
    AccountNotFound,
    DuplicateToken,
    TokenAlreadyConsumed,
    TokenExpired,
    TokenNotFound,
    VerificationError,
)
from account_verification.core.logging import mask_token
from account_verification.models.account import Account
from account_verification.models.enums import TokenInvalidationReason
from account_verification.models.verification_token import VerificationToken
from account_verification.services.accounts import SqlAccountStore

logger = logging.getLogger(__name__)


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def _as_utc(value: dt.datetime) -> dt.datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=dt.timezone.utc)
    return value.astimezone(dt.timezone.utc)


def is_token_active(token: VerificationToken, now: dt.datetime | None = None) -> bool:
    return not token.consumed and _as_utc(token.expires_at) > (now or _utcnow())


def save(db: Session, token: VerificationToken) -> VerificationToken:
    """Insert a new token and commit the surrounding transaction.

    Raises ``DuplicateToken`` when the value already exists; any other
    integrity failure (a concurrent issuer won the per-account slot) is
    re-raised unchanged after rolling back.
    """
    db.add(token)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        if lookup(db, token.token) is not None:
            raise DuplicateToken()
        raise
    db.refresh(token)
    return token


def lookup(db: Session, token_value: str) -> VerificationToken | None:
    return db.get(VerificationToken, token_value, populate_existing=True)


def get_active_token(db: Session, account_id: UUID, now: dt.datetime | None = None) -> VerificationToken | None:
    stamp = now or _utcnow()
    return (
        db.query(VerificationToken)
        .filter(
            VerificationToken.account_id == account_id,
            VerificationToken.consumed.is_(False),
            VerificationToken.expires_at > stamp,
        )
        .order_by(VerificationToken.issued_at.desc())
        .first()
    )


def latest_token(db: Session, account_id: UUID) -> VerificationToken | None:
    return (
        db.query(VerificationToken)
        .filter(VerificationToken.account_id == account_id)
        .order_by(VerificationToken.issued_at.desc())
        .first()
    )


def supersede_active_tokens(db: Session, account_id: UUID, *, now: dt.datetime) -> int:
    """Retire every unconsumed token of the account. Caller owns the commit."""
    result = db.execute(
        update(VerificationToken)
        .where(
            VerificationToken.account_id == account_id,
            VerificationToken.consumed.is_(False),
        )
        .values(
            consumed=True,
            consumed_at=now,
            invalidation_reason=TokenInvalidationReason.superseded,
        )
        .execution_options(synchronize_session=False)
    )
    return result.rowcount or 0


def _rejection_for(db: Session, token_value: str) -> VerificationError:
    token = lookup(db, token_value)
    if token is None:
        return TokenNotFound()
    if token.consumed:
        account = db.get(Account, token.account_id)
        return TokenAlreadyConsumed(account_verified=bool(account and account.is_verified))
    # Still unconsumed, so the conditional update can only have missed on expiry.
    return TokenExpired()


def consume(db: Session, token_value: str, *, now: dt.datetime | None = None) -> Account:
    """Atomically consume a token and mark its account verified.

    The owning account is row-locked before any token row is written, the same
    order issuance uses. The conditional update then decides the winner: of
    two concurrent callers exactly one sees ``rowcount == 1``; the other is
    classified afterwards and rejected.
    """
    stamp = now or _utcnow()
    accounts = SqlAccountStore(db)
    account_id = db.execute(
        select(VerificationToken.account_id).where(VerificationToken.token == token_value)
    ).scalar_one_or_none()
    if account_id is not None:
        accounts.lock(account_id)

    result = db.execute(
        update(VerificationToken)
        .where(
            VerificationToken.token == token_value,
            VerificationToken.consumed.is_(False),
            VerificationToken.expires_at > stamp,
        )
        .values(
            consumed=True,
            consumed_at=stamp,
            invalidation_reason=TokenInvalidationReason.consumed,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        rejection = _rejection_for(db, token_value)
        logger.warning("Token rejected (%s): %s", rejection.error_code, mask_token(token_value))
        raise rejection

    if not accounts.mark_verified(account_id, now=stamp):
        logger.warning("Token consumed for an account that was not unverified: %s", account_id)
    db.commit()

    account = db.get(Account, account_id, populate_existing=True)
    if account is None:
        raise AccountNotFound()
    logger.info("Email verified: %s", account.email)
    return account


def purge_stale_tokens(db: Session, *, retention: dt.timedelta, now: dt.datetime | None = None) -> int:
    """Delete tokens consumed or expired longer ago than the retention window."""
    cutoff = (now or _utcnow()) - retention
    result = db.execute(
        delete(VerificationToken)
        .where(
            or_(
                and_(VerificationToken.consumed.is_(True), VerificationToken.consumed_at < cutoff),
                and_(VerificationToken.consumed.is_(False), VerificationToken.expires_at < cutoff),
            )
        )
        .execution_options(synchronize_session=False)
    )
    db.commit()
    purged = result.rowcount or 0
    if purged:
        logger.info("Purged %s stale verification tokens", purged)
    return purged

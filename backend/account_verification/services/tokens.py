"""Token generator: issues random, expiring, single-use verification tokens."""

from __future__ import annotations

import datetime as dt
import logging
import secrets
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from account_verification.core.config import settings
from account_verification.core.exceptions import AccountAlreadyVerified, AccountNotFound, ConflictError, DuplicateToken
from account_verification.core.logging import mask_token
from account_verification.models.verification_token import VerificationToken
from account_verification.services import verification_store
from account_verification.services.accounts import SqlAccountStore

logger = logging.getLogger(__name__)

MIN_TOKEN_BYTES = 16


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def generate_token_value(num_bytes: int | None = None, encoding: str | None = None) -> str:
    size = num_bytes or settings.VERIFICATION_TOKEN_BYTES
    if size < MIN_TOKEN_BYTES:
        raise ValueError("token_entropy_too_low")
    scheme = encoding or settings.VERIFICATION_TOKEN_ENCODING
    if scheme == "hex":
        return secrets.token_hex(size)
    if scheme == "urlsafe":
        return secrets.token_urlsafe(size)
    raise ValueError(f"unknown_token_encoding:{scheme}")


def token_expiry(issued_at: dt.datetime) -> dt.datetime:
    return issued_at + dt.timedelta(hours=settings.VERIFICATION_TOKEN_TTL_HOURS)


def issue_verification_token(db: Session, account_id: UUID, *, now: dt.datetime | None = None) -> VerificationToken:
    """Supersede any active token for the account and persist a fresh one."""
    max_tries = settings.TOKEN_ISSUE_MAX_RETRIES
    for attempt in range(1, max_tries + 1):
        stamp = now or _utcnow()
        account = SqlAccountStore(db).lock(account_id)
        if account is None:
            db.rollback()
            raise AccountNotFound()
        if account.is_verified:
            db.rollback()
            raise AccountAlreadyVerified()

        superseded = verification_store.supersede_active_tokens(db, account_id, now=stamp)
        token = VerificationToken(
            token=generate_token_value(),
            account_id=account_id,
            issued_at=stamp,
            expires_at=token_expiry(stamp),
            consumed=False,
        )
        try:
            saved = verification_store.save(db, token)
        except DuplicateToken:
            logger.warning("Token value collision on attempt %s/%s; regenerating", attempt, max_tries)
            continue
        except IntegrityError:
            logger.warning("Concurrent issuance for account %s on attempt %s/%s; retrying", account_id, attempt, max_tries)
            continue

        logger.info(
            "Verification token issued: account=%s token=%s superseded=%s",
            account_id,
            mask_token(saved.token),
            superseded,
        )
        return saved

    raise ConflictError("token_issue_conflict", details={"account_id": str(account_id)})

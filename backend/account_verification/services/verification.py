"""Verification state machine: signup, link clicks and re-send requests.

States are derived rather than stored: the account row carries
``unverified``/``verified`` and the token table tells apart an account that
is waiting on a live link (``pending_delivery``) from one whose links have
all lapsed (``expired``).

    unverified        --account created-->   pending_delivery
    pending_delivery  --valid token-->       verified
    pending_delivery  --expired token-->     expired (rejected, re-send offered)
    pending_delivery  --replayed token-->    unchanged (rejected)
    expired           --re-send-->           pending_delivery (old token superseded)
    verified          --any verify-->        verified (replay rejected, no change)
"""

from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy.orm import Session

from account_verification.core.exceptions import AccountNotFound, TokenNotFound
from account_verification.core.sanitize import looks_like_token
from account_verification.models.account import Account
from account_verification.models.enums import VerificationState
from account_verification.services import verification_store
from account_verification.services.accounts import SqlAccountStore
from account_verification.services.delivery_queue import DeliveryJob, DeliveryQueue, DeliveryRecord
from account_verification.services.dispatcher import DeliveryDispatcher
from account_verification.services.tokens import issue_verification_token

logger = logging.getLogger(__name__)


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


@dataclass(frozen=True)
class VerificationSnapshot:
    account_id: UUID
    email: str
    state: VerificationState
    verified_at: dt.datetime | None
    active_token_expires_at: dt.datetime | None
    last_delivery: DeliveryRecord | None


def current_state(db: Session, account: Account, *, now: dt.datetime | None = None) -> VerificationState:
    if account.is_verified:
        return VerificationState.verified
    stamp = now or _utcnow()
    if verification_store.get_active_token(db, account.id, stamp) is not None:
        return VerificationState.pending_delivery
    if verification_store.latest_token(db, account.id) is not None:
        return VerificationState.expired
    return VerificationState.unverified


def register_account(db: Session, email: str, password: str, dispatcher: DeliveryDispatcher) -> Account:
    account = SqlAccountStore(db).create(email, password)
    token = issue_verification_token(db, account.id)
    dispatcher.enqueue(account.id, token.token)
    logger.info("Account %s moved to %s", account.id, VerificationState.pending_delivery.value)
    return account


def verify_token(db: Session, token_value: str, *, now: dt.datetime | None = None) -> Account:
    if not looks_like_token(token_value):
        raise TokenNotFound()
    account = verification_store.consume(db, token_value, now=now)
    logger.info("Account %s moved to %s", account.id, VerificationState.verified.value)
    return account


def resend_verification(
    db: Session,
    email: str,
    dispatcher: DeliveryDispatcher,
    *,
    now: dt.datetime | None = None,
) -> DeliveryJob:
    """Supersede the current link and queue a new one.

    Raises ``AccountNotFound`` or ``AccountAlreadyVerified``; the HTTP layer
    hides both from the caller.
    """
    account = SqlAccountStore(db).get_by_email(email)
    if account is None:
        raise AccountNotFound()
    account_id = account.id
    token = issue_verification_token(db, account_id, now=now)
    job = dispatcher.enqueue(account_id, token.token)
    logger.info("Account %s moved to %s (re-send)", account_id, VerificationState.pending_delivery.value)
    return job


def verification_status(
    db: Session,
    account_id: UUID,
    queue: DeliveryQueue,
    *,
    now: dt.datetime | None = None,
) -> VerificationSnapshot:
    account = SqlAccountStore(db).get_by_id(account_id)
    if account is None:
        raise AccountNotFound()
    stamp = now or _utcnow()
    active = None if account.is_verified else verification_store.get_active_token(db, account.id, stamp)
    return VerificationSnapshot(
        account_id=account.id,
        email=account.email,
        state=current_state(db, account, now=stamp),
        verified_at=account.verified_at,
        active_token_expires_at=active.expires_at if active else None,
        last_delivery=queue.latest_for_account(account.id),
    )

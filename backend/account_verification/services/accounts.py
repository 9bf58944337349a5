"""Account store: the identity collaborator the verification core reads and flips."""

from __future__ import annotations

import datetime as dt
import logging
from typing import Protocol
from uuid import UUID, uuid4

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from account_verification.core.exceptions import ConflictError
from account_verification.core.sanitize import clean_email
from account_verification.core.security import hash_password
from account_verification.models.account import Account
from account_verification.models.enums import VerificationStatus

logger = logging.getLogger(__name__)


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


class AccountStore(Protocol):
    def create(self, email: str, credential: str) -> Account:
        ...

    def get_by_id(self, account_id: UUID) -> Account | None:
        ...

    def get_by_email(self, email: str) -> Account | None:
        ...

    def lock(self, account_id: UUID) -> Account | None:
        ...

    def mark_verified(self, account_id: UUID) -> bool:
        ...


class SqlAccountStore:
    def __init__(self, db: Session) -> None:
        self.db = db

    def create(self, email: str, credential: str) -> Account:
        normalized = clean_email(email)
        if self.get_by_email(normalized):
            raise ConflictError("email_exists")

        account = Account(
            id=uuid4(),
            email=normalized,
            password_hash=hash_password(credential),
            verification_status=VerificationStatus.unverified,
        )
        self.db.add(account)
        try:
            self.db.commit()
        except IntegrityError:
            # Lost a race against a concurrent signup for the same address.
            self.db.rollback()
            raise ConflictError("email_exists")
        self.db.refresh(account)
        logger.info("Account created: %s", account.email)
        return account

    def get_by_id(self, account_id: UUID) -> Account | None:
        return self.db.get(Account, account_id)

    def get_by_email(self, email: str) -> Account | None:
        return self.db.query(Account).filter(Account.email == clean_email(email)).first()

    def lock(self, account_id: UUID) -> Account | None:
        """Row-lock the account for the rest of the transaction.

        Every path that writes tokens takes this lock before touching the
        token table, so issuance and consumption always lock in the same order.
        """
        return (
            self.db.query(Account)
            .filter(Account.id == account_id)
            .with_for_update()
            .populate_existing()
            .first()
        )

    def mark_verified(self, account_id: UUID, *, now: dt.datetime | None = None) -> bool:
        """Flip an unverified account to verified. Caller owns the commit."""
        stamp = now or _utcnow()
        result = self.db.execute(
            update(Account)
            .where(
                Account.id == account_id,
                Account.verification_status == VerificationStatus.unverified,
            )
            .values(verification_status=VerificationStatus.verified, verified_at=stamp, updated_at=stamp)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

from __future__ import annotations

import datetime as dt
from uuid import uuid4

import pytest

from account_verification.core.exceptions import (
    AccountAlreadyVerified,
    AccountNotFound,
    ConflictError,
    TokenAlreadyConsumed,
    TokenExpired,
    TokenNotFound,
)
from account_verification.core.security import verify_password
from account_verification.models.enums import DeliveryStatus, VerificationState, VerificationStatus
from account_verification.services import verification_store
from account_verification.services.accounts import SqlAccountStore
from account_verification.services.verification import (
    current_state,
    register_account,
    resend_verification,
    verification_status,
    verify_token,
)


def _active_value(db, account_id) -> str:
    return verification_store.get_active_token(db, account_id).token


def test_fresh_account_without_tokens_is_unverified(db) -> None:
    account = SqlAccountStore(db).create("a@example.com", "correct-horse-battery")

    assert current_state(db, account) == VerificationState.unverified


def test_register_issues_token_and_queues_delivery(db, dispatcher, transport) -> None:
    account = register_account(db, "New.User@Example.com", "correct-horse-battery", dispatcher)

    assert account.email == "new.user@example.com"
    assert account.verification_status == VerificationStatus.unverified
    assert current_state(db, account) == VerificationState.pending_delivery
    delivery = dispatcher.queue.latest_for_account(account.id)
    assert delivery.status == DeliveryStatus.pending
    assert delivery.token == _active_value(db, account.id)
    assert transport.calls == 0


def test_register_rejects_duplicate_email(db, dispatcher) -> None:
    register_account(db, "a@example.com", "correct-horse-battery", dispatcher)

    with pytest.raises(ConflictError):
        register_account(db, "A@example.com", "another-password", dispatcher)


def test_valid_token_moves_account_to_verified(db, dispatcher) -> None:
    account = register_account(db, "a@example.com", "correct-horse-battery", dispatcher)

    verified = verify_token(db, _active_value(db, account.id))

    assert verified.verification_status == VerificationStatus.verified
    assert verified.verified_at is not None
    assert current_state(db, verified) == VerificationState.verified


def test_expired_token_is_rejected_and_offers_resend(db, dispatcher) -> None:
    account = register_account(db, "a@example.com", "correct-horse-battery", dispatcher)
    value = _active_value(db, account.id)
    later = dt.datetime.now(dt.timezone.utc) + dt.timedelta(days=2)

    assert current_state(db, account, now=later) == VerificationState.expired
    with pytest.raises(TokenExpired) as excinfo:
        verify_token(db, value, now=later)

    assert excinfo.value.details == {"resend_allowed": True}
    db.refresh(account)
    assert account.verification_status == VerificationStatus.unverified


def test_resend_after_expiry_returns_to_pending(db, dispatcher) -> None:
    account = register_account(db, "a@example.com", "correct-horse-battery", dispatcher)
    old_value = _active_value(db, account.id)
    later = dt.datetime.now(dt.timezone.utc) + dt.timedelta(days=2)

    job = resend_verification(db, "a@example.com", dispatcher, now=later)

    assert job.token != old_value
    assert current_state(db, account, now=later) == VerificationState.pending_delivery
    with pytest.raises(TokenAlreadyConsumed):
        verify_token(db, old_value, now=later)
    assert verify_token(db, job.token, now=later).is_verified


def test_resend_for_unknown_or_verified_account(db, dispatcher) -> None:
    with pytest.raises(AccountNotFound):
        resend_verification(db, "ghost@example.com", dispatcher)

    account = register_account(db, "a@example.com", "correct-horse-battery", dispatcher)
    verify_token(db, _active_value(db, account.id))

    with pytest.raises(AccountAlreadyVerified):
        resend_verification(db, "a@example.com", dispatcher)


def test_replayed_token_on_verified_account_changes_nothing(db, dispatcher) -> None:
    account = register_account(db, "a@example.com", "correct-horse-battery", dispatcher)
    value = _active_value(db, account.id)
    first = verify_token(db, value)
    verified_at = first.verified_at

    with pytest.raises(TokenAlreadyConsumed) as excinfo:
        verify_token(db, value)

    assert excinfo.value.details == {"account_verified": True}
    db.refresh(first)
    assert first.verified_at == verified_at


@pytest.mark.parametrize("value", ["", "has space", "../../etc/passwd", "x" * 300])
def test_malformed_values_are_treated_as_unknown(db, value) -> None:
    with pytest.raises(TokenNotFound):
        verify_token(db, value)


def test_verification_status_snapshot(db, dispatcher) -> None:
    account = register_account(db, "a@example.com", "correct-horse-battery", dispatcher)

    snapshot = verification_status(db, account.id, dispatcher.queue)

    assert snapshot.state == VerificationState.pending_delivery
    assert snapshot.active_token_expires_at is not None
    assert snapshot.last_delivery.status == DeliveryStatus.pending

    with pytest.raises(AccountNotFound):
        verification_status(db, uuid4(), dispatcher.queue)


def test_register_stores_hashed_credential(db, dispatcher) -> None:
    account = register_account(db, "a@example.com", "correct-horse-battery", dispatcher)

    assert account.password_hash != "correct-horse-battery"
    assert verify_password("correct-horse-battery", account.password_hash)
    assert not verify_password("wrong-password", account.password_hash)

from __future__ import annotations

import datetime as dt
import threading
from uuid import uuid4

import pytest

from account_verification.core.config import settings
from account_verification.core.exceptions import AccountAlreadyVerified, AccountNotFound
from account_verification.models.enums import TokenInvalidationReason
from account_verification.models.verification_token import VerificationToken
from account_verification.services import tokens as tokens_service
from account_verification.services.accounts import SqlAccountStore
from account_verification.services.tokens import generate_token_value, issue_verification_token


def _account(db, email: str = "a@example.com"):
    return SqlAccountStore(db).create(email, "correct-horse-battery")


def test_generated_values_are_url_safe_and_long_enough() -> None:
    value = generate_token_value()
    assert len(value) >= 43
    assert set(value) <= set("ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789-_")


def test_hex_encoding_and_minimum_entropy() -> None:
    assert len(generate_token_value(16, "hex")) == 32
    with pytest.raises(ValueError):
        generate_token_value(8)


def test_issue_sets_expiry_from_ttl(db) -> None:
    account = _account(db)
    now = dt.datetime(2026, 1, 1, 12, 0, tzinfo=dt.timezone.utc)

    token = issue_verification_token(db, account.id, now=now)

    assert token.consumed is False
    assert token.expires_at.replace(tzinfo=dt.timezone.utc) == now + dt.timedelta(
        hours=settings.VERIFICATION_TOKEN_TTL_HOURS
    )


def test_issue_supersedes_previous_active_token(db) -> None:
    account = _account(db)
    first = issue_verification_token(db, account.id)
    first_value = first.token
    second = issue_verification_token(db, account.id)

    rows = db.query(VerificationToken).filter(VerificationToken.account_id == account.id).all()
    by_value = {row.token: row for row in rows}
    assert by_value[first_value].consumed is True
    assert by_value[first_value].invalidation_reason == TokenInvalidationReason.superseded
    assert by_value[second.token].consumed is False
    assert second.token != first_value


def test_issue_rejects_unknown_account(db) -> None:
    with pytest.raises(AccountNotFound):
        issue_verification_token(db, uuid4())


def test_issue_rejects_verified_account(db) -> None:
    account = _account(db)
    SqlAccountStore(db).mark_verified(account.id)
    db.commit()

    with pytest.raises(AccountAlreadyVerified):
        issue_verification_token(db, account.id)


def test_issue_regenerates_on_value_collision(db, monkeypatch) -> None:
    first_account = _account(db, "first@example.com")
    second_account = _account(db, "second@example.com")
    values = iter(["collision-value-0123456789abcdef", "collision-value-0123456789abcdef", "fresh-value-0123456789abcdefgh"])
    monkeypatch.setattr(tokens_service, "generate_token_value", lambda *args, **kwargs: next(values))

    first = issue_verification_token(db, first_account.id)
    second = issue_verification_token(db, second_account.id)

    assert first.token == "collision-value-0123456789abcdef"
    assert second.token == "fresh-value-0123456789abcdefgh"
    assert second.account_id == second_account.id


def test_resend_after_expiry_issues_a_new_value(db) -> None:
    account = _account(db)
    start = dt.datetime(2026, 1, 1, tzinfo=dt.timezone.utc)
    seen = set()
    for hours in (0, 25, 50):
        token = issue_verification_token(db, account.id, now=start + dt.timedelta(hours=hours))
        assert token.token not in seen
        seen.add(token.token)
    assert len(seen) == 3


def test_concurrent_resends_leave_exactly_one_active_token(db, session_factory) -> None:
    account = _account(db)
    account_id = account.id
    workers = 8
    barrier = threading.Barrier(workers)
    errors: list[Exception] = []

    def _resend() -> None:
        session = session_factory()
        try:
            barrier.wait()
            issue_verification_token(session, account_id)
        except Exception as exc:  # noqa: BLE001
            errors.append(exc)
        finally:
            session.close()

    threads = [threading.Thread(target=_resend) for _ in range(workers)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    db.expire_all()
    rows = db.query(VerificationToken).filter(VerificationToken.account_id == account_id).all()
    assert len(rows) == workers
    assert len({row.token for row in rows}) == workers
    active = [row for row in rows if not row.consumed]
    assert len(active) == 1
    assert all(row.invalidation_reason == TokenInvalidationReason.superseded for row in rows if row.consumed)

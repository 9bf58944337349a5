from __future__ import annotations

import datetime as dt
import re
from uuid import UUID

from fastapi.testclient import TestClient
from sqlalchemy import update

from account_verification.core.config import settings
from account_verification.main import create_app
from account_verification.models.enums import VerificationState
from account_verification.models.verification_token import VerificationToken
from account_verification.services import verification_store

PASSWORD = "correct-horse-battery"
OPERATOR_HEADERS = {"X-Operator-Key": "operator-test-key"}
_LINK_RE = re.compile(r"/verify/([A-Za-z0-9_\-]+)")


def _signup(client, email: str = "a@example.com"):
    response = client.post("/accounts", json={"email": email, "password": PASSWORD})
    assert response.status_code == 201, response.text
    return response.json()


def _delivered_token(dispatcher, transport) -> str:
    dispatcher.drain_once()
    match = _LINK_RE.search(transport.sent[-1]["body"])
    assert match is not None
    return match.group(1)


def _expire_tokens(db, account_id: str) -> None:
    past = dt.datetime.now(dt.timezone.utc) - dt.timedelta(minutes=5)
    db.execute(
        update(VerificationToken)
        .where(VerificationToken.account_id == UUID(account_id), VerificationToken.consumed.is_(False))
        .values(expires_at=past)
    )
    db.commit()


def test_signup_verify_then_replay(client, db, dispatcher, transport) -> None:
    payload = _signup(client)
    assert payload["message"] == "verification_sent"
    assert payload["account"]["verification_status"] == "unverified"
    account_id = payload["account"]["id"]

    status = client.get(f"/operators/accounts/{account_id}/verification", headers=OPERATOR_HEADERS)
    assert status.json()["state"] == VerificationState.pending_delivery.value

    t1 = _delivered_token(dispatcher, transport)
    verified = client.get(f"/verify/{t1}")
    assert verified.status_code == 200
    assert verified.json()["message"] == "email_verified"
    assert verified.json()["account"]["verification_status"] == "verified"
    assert verification_store.lookup(db, t1).consumed is True

    replay = client.get(f"/verify/{t1}")
    assert replay.status_code == 409
    assert replay.json()["error_code"] == "TOKEN_ALREADY_CONSUMED"
    assert replay.json()["details"] == {"account_verified": True}

    status = client.get(f"/operators/accounts/{account_id}/verification", headers=OPERATOR_HEADERS)
    assert status.json()["state"] == VerificationState.verified.value


def test_expired_link_then_resend(client, db, dispatcher, transport) -> None:
    account_id = _signup(client)["account"]["id"]
    t1 = _delivered_token(dispatcher, transport)
    _expire_tokens(db, account_id)

    expired = client.get(f"/verify/{t1}")
    assert expired.status_code == 410
    assert expired.json()["details"] == {"resend_allowed": True}

    resend = client.post("/verify/resend", json={"email": "A@Example.com"})
    assert resend.status_code == 202
    assert resend.json() == {"message": "verification_resent"}

    t2 = _delivered_token(dispatcher, transport)
    assert t2 != t1
    assert client.get(f"/verify/{t2}").status_code == 200
    assert client.get(f"/verify/{t1}").status_code == 409


def test_signup_response_never_contains_token(client, db) -> None:
    payload = _signup(client)
    token = verification_store.get_active_token(db, UUID(payload["account"]["id"]))

    assert token.token not in str(payload)


def test_duplicate_signup_is_conflict(client) -> None:
    _signup(client)

    response = client.post("/accounts", json={"email": "A@example.com", "password": PASSWORD})
    assert response.status_code == 409
    assert response.json()["message"] == "email_exists"


def test_signup_validates_payload(client) -> None:
    assert client.post("/accounts", json={"email": "not-an-email", "password": PASSWORD}).status_code == 422
    assert client.post("/accounts", json={"email": "a@example.com", "password": "short"}).status_code == 422


def test_unknown_token_is_not_found(client) -> None:
    response = client.get("/verify/does-not-exist")

    assert response.status_code == 404
    assert response.json()["error_code"] == "TOKEN_NOT_FOUND"


def test_resend_hides_unknown_and_verified_accounts(client, dispatcher, transport) -> None:
    assert client.post("/verify/resend", json={"email": "ghost@example.com"}).status_code == 202

    _signup(client)
    client.get(f"/verify/{_delivered_token(dispatcher, transport)}")
    response = client.post("/verify/resend", json={"email": "a@example.com"})

    assert response.status_code == 202
    assert dispatcher.drain_once().claimed == 0


def test_resend_is_rate_limited_per_email(client, monkeypatch) -> None:
    monkeypatch.setattr(settings, "RATE_LIMIT_ENABLED", True)
    _signup(client)

    statuses = [
        client.post("/verify/resend", json={"email": "a@example.com"}).status_code
        for _ in range(settings.RATE_LIMIT_RESEND_MAX_REQUESTS + 1)
    ]

    assert statuses[:-1] == [202] * settings.RATE_LIMIT_RESEND_MAX_REQUESTS
    assert statuses[-1] == 429


def test_verification_responses_carry_no_store_headers(client) -> None:
    response = client.get("/verify/does-not-exist")

    assert response.headers["Cache-Control"] == "no-store"
    assert response.headers["Referrer-Policy"] == "no-referrer"


def test_operator_endpoints_require_key(client) -> None:
    assert client.get("/operators/dead-letters").status_code == 401
    assert client.get("/operators/dead-letters", headers={"X-Operator-Key": "wrong"}).status_code == 401


def test_operator_can_list_and_replay_dead_letters(client, dispatcher, transport) -> None:
    _signup(client)
    transport.fail_times = settings.DELIVERY_MAX_ATTEMPTS
    for _ in range(settings.DELIVERY_MAX_ATTEMPTS):
        dispatcher.drain_once()
        dispatcher.clock.advance(hours=1)

    listed = client.get("/operators/dead-letters", headers=OPERATOR_HEADERS)
    assert listed.status_code == 200
    dead = listed.json()
    assert len(dead) == 1
    assert dead[0]["status"] == "failed_permanently"
    assert dead[0]["token_hint"].endswith("...")

    replayed = client.post(f"/operators/dead-letters/{dead[0]['id']}/replay", headers=OPERATOR_HEADERS)
    assert replayed.status_code == 200
    assert replayed.json()["status"] == "pending"

    again = client.post(f"/operators/dead-letters/{dead[0]['id']}/replay", headers=OPERATOR_HEADERS)
    assert again.status_code == 404


def test_operator_key_is_read_from_the_app_settings(dispatcher) -> None:
    custom = settings.model_copy(update={"OPERATOR_API_KEY": "custom-operator-key"})
    app = create_app(settings=custom, dispatcher=dispatcher, run_workers=False)

    with TestClient(app) as custom_client:
        assert custom_client.get("/operators/dead-letters", headers={"X-Operator-Key": "custom-operator-key"}).status_code == 200
        assert custom_client.get("/operators/dead-letters", headers=OPERATOR_HEADERS).status_code == 401

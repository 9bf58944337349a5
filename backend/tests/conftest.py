from __future__ import annotations

import datetime as dt
import os
import sys
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parents[1]
if str(BASE_DIR) not in sys.path:
    sys.path.insert(0, str(BASE_DIR))

os.environ.setdefault("ENV", "test")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("DELIVERY_WORKER_ENABLED", "false")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("OPERATOR_API_KEY", "operator-test-key")
os.environ.setdefault("PUBLIC_BASE_URL", "https://verify.example.com")

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

from account_verification.core.config import settings  # noqa: E402
from account_verification.core.exceptions import DeliveryTransientFailure  # noqa: E402
from account_verification.core.rate_limit import reset_rate_limits  # noqa: E402
from account_verification.db.base import Base  # noqa: E402
from account_verification.db.session import build_engine, get_db  # noqa: E402
from account_verification.main import build_dispatcher, create_app  # noqa: E402
import account_verification.models  # noqa: E402,F401


class FakeClock:
    def __init__(self, start: dt.datetime | None = None) -> None:
        self.now = start or dt.datetime.now(dt.timezone.utc)

    def __call__(self) -> dt.datetime:
        return self.now

    def advance(self, **kwargs) -> dt.datetime:
        self.now = self.now + dt.timedelta(**kwargs)
        return self.now


class FakeTransport:
    """Records sends; fails the first ``fail_times`` calls with ``error``."""

    def __init__(self) -> None:
        self.sent: list[dict] = []
        self.calls = 0
        self.fail_times = 0
        self.error: Exception = DeliveryTransientFailure("smtp_unavailable:test")

    def send(self, to: str, subject: str, body: str, *, html_body: str | None = None) -> None:
        self.calls += 1
        if self.calls <= self.fail_times:
            raise self.error
        self.sent.append({"to": to, "subject": subject, "body": body, "html_body": html_body})


@pytest.fixture
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'verification.db'}")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def dispatcher(session_factory, transport, clock):
    return build_dispatcher(settings, session_factory, transport=transport, clock=clock)


@pytest.fixture
def client(dispatcher, session_factory):
    app = create_app(dispatcher=dispatcher, run_workers=False)

    def _get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _get_db
    reset_rate_limits()
    with TestClient(app) as test_client:
        yield test_client

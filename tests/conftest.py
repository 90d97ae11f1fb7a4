"""Pytest fixtures for async FastAPI testing.

Loads `.env.test` before any app module reads settings, recreates the SQLite
schema for every test, and wires the app to in-process doubles for Redis,
SMTP, Twilio, the OAuth provider APIs and geolocation.
"""
import pathlib
import uuid

import pytest
from dotenv import load_dotenv

_ROOT = pathlib.Path(__file__).resolve().parent.parent
load_dotenv(dotenv_path=str(_ROOT / ".env.test"), override=True)

from tests.fakes import (  # noqa: E402
    FakeProviderValidator, FakeRedis, FakeSMSProvider, RecordingEmailSender, StaticGeolocation,
)

PASSWORD = "StrongPassw0rd!"


@pytest.fixture
def prepare_database():
    """Create a clean schema for each test."""
    from app.core.database import engine, Base

    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)

    yield

    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db_session(prepare_database):
    """Yield a SQLAlchemy session for direct DB access in tests."""
    from app.core.database import SessionLocal

    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def email_sender():
    return RecordingEmailSender()


@pytest.fixture
def sms_provider():
    return FakeSMSProvider()


@pytest.fixture
def provider_validator():
    return FakeProviderValidator()


@pytest.fixture
def geolocation():
    return StaticGeolocation()


@pytest.fixture
def app(prepare_database, fake_redis, email_sender, sms_provider, provider_validator, geolocation):
    from app.main import create_app

    return create_app(
        redis_client=fake_redis,
        email_sender=email_sender,
        sms_provider=sms_provider,
        provider_validator=provider_validator,
        geolocation=geolocation,
    )


@pytest.fixture
async def async_client(app):
    """Provide an httpx AsyncClient configured with the FastAPI app."""
    from httpx import ASGITransport, AsyncClient

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver") as client:
        yield client


@pytest.fixture
def make_user(db_session):
    """Insert an active, verified user straight into the DB."""
    from app.core.security import hash_password
    from app.models.user import User

    def _make(email=None, password=PASSWORD, **fields):
        values = {
            "email": email or f"user-{uuid.uuid4().hex[:8]}@example.com",
            "password_hash": hash_password(password) if password else None,
            "status": "active",
            "email_verified": True,
        }
        values.update(fields)
        user = User(**values)
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user

    return _make


@pytest.fixture
def login(async_client):
    """Log in over HTTP and return the `data` block of the response."""

    async def _login(email, password=PASSWORD, **extra):
        r = await async_client.post("/auth/login", json={"email": email, "password": password, **extra})
        assert r.status_code == 200, r.text
        return r.json()["data"]

    return _login


def bearer(data) -> dict:
    return {"Authorization": f"Bearer {data['tokens']['access_token']}"}

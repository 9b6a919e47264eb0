"""Test fixtures.

Provides:
- an in-memory SQLite engine shared by the app and the test (StaticPool)
- a TestClient whose database session dependency points at that engine
- a signed-in user with its bearer token
- an outbox that captures system emails instead of delivering them
"""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, create_engine

from recorder.db import get_session, init_db
from recorder.main import app
from recorder.models import User
from recorder.security import create_access_token, hash_password
from recorder.services import emailer


@pytest.fixture()
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(eng)
    yield eng
    eng.dispose()


@pytest.fixture()
def session(engine):
    with Session(engine) as s:
        yield s


@pytest.fixture()
def client(engine):
    def _session_override():
        with Session(engine) as s:
            yield s

    app.dependency_overrides[get_session] = _session_override
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture()
def outbox(monkeypatch):
    """Capture every message handed to the emailer."""
    sent = []

    def fake_send_email(to, subject, body_text, body_html=None, attachments=None, cc=None, bcc=None,
                        method="resend", sender_name=None):
        sent.append({
            "to": to, "subject": subject, "text": body_text, "html": body_html,
            "attachments": attachments, "cc": cc, "bcc": bcc, "method": method, "sender_name": sender_name,
        })
        return {"provider": "test", "message_id": f"msg-{len(sent)}"}

    monkeypatch.setattr(emailer, "send_email", fake_send_email)
    monkeypatch.setattr("recorder.routers.auth.send_email", fake_send_email)
    monkeypatch.setattr("recorder.routers.support.send_email", fake_send_email)
    return sent


@pytest.fixture()
def user(session) -> User:
    u = User(email="alice@example.com", name="Alice", hashed_password=hash_password("secret123"))
    session.add(u)
    session.commit()
    session.refresh(u)
    return u


@pytest.fixture()
def auth_headers(user) -> dict:
    return {"Authorization": f"Bearer {create_access_token(sub=user.email)}"}


@pytest.fixture()
def other_user(session) -> User:
    u = User(email="bob@example.com", name="Bob", hashed_password=hash_password("secret123"))
    session.add(u)
    session.commit()
    session.refresh(u)
    return u

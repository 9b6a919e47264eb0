"""Email-open pixel tests."""

import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import select

from recorder.models import EmailHistory, EmailOpenEvent
from recorder.services.tracking import PIXEL_PNG, classify_open, client_ip, is_suspicious_agent

CHROME = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 Chrome/124.0 Safari/537.36"
CURL = "curl/8.4.0"


def _history(session, user, *, recipient="carol@example.com", tracking_id="trk-1", sent_ago=60):
    row = EmailHistory(
        user_id=user.id,
        recipients=recipient,
        subject="Notes",
        html_body="<p>hi</p>",
        method="resend",
        status="sent",
        tracking_id=tracking_id,
        sent_at=datetime.now(timezone.utc) - timedelta(seconds=sent_ago),
    )
    session.add(row)
    session.commit()
    session.refresh(row)
    return row


# ── Classification ───────────────────────────────────────────────────────────


def test_suspicious_agents():
    assert is_suspicious_agent("Googlebot/2.1")
    assert is_suspicious_agent("Mozilla/5.0 (compatible; GoogleImageProxy)")
    assert is_suspicious_agent("Microsoft Office/16.0 (Windows NT 10.0; Microsoft Outlook 16.0)")
    assert is_suspicious_agent("Barracuda Link Scanner")
    assert not is_suspicious_agent(CHROME)
    assert not is_suspicious_agent(None)


def test_classify_open_delay():
    sent = datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
    assert classify_open(CURL, sent, now=sent + timedelta(seconds=2)) == (False, "too_early")
    assert classify_open(CURL, sent, now=sent + timedelta(seconds=6)) == (True, "ok")
    # real browsers are trusted even right after sending
    assert classify_open(CHROME, sent, now=sent + timedelta(seconds=1)) == (True, "ok")
    assert classify_open("Googlebot", sent, now=sent + timedelta(hours=1)) == (False, "suspicious_agent")
    assert classify_open(CURL, None) == (True, "ok")


def test_client_ip_header_priority():
    assert client_ip({"x-forwarded-for": "1.1.1.1, 2.2.2.2", "x-real-ip": "3.3.3.3"}, "9.9.9.9") == "1.1.1.1"
    assert client_ip({"x-real-ip": "3.3.3.3", "cf-connecting-ip": "4.4.4.4"}, "9.9.9.9") == "3.3.3.3"
    assert client_ip({"cf-connecting-ip": "4.4.4.4"}, "9.9.9.9") == "4.4.4.4"
    assert client_ip({}, "9.9.9.9") == "9.9.9.9"


# ── Endpoint ─────────────────────────────────────────────────────────────────


def test_pixel_without_id(client):
    response = client.get("/track/open")
    assert response.status_code == 200
    assert response.content == PIXEL_PNG
    assert response.headers["content-type"] == "image/png"
    assert response.headers["cache-control"] == "no-cache, no-store, must-revalidate"
    assert response.headers["pragma"] == "no-cache"


def test_head_and_other_methods(client):
    head = client.head("/track/open")
    assert head.status_code == 200
    assert head.headers["expires"] == "0"
    assert client.post("/track/open").status_code == 405


def test_first_open_recorded(client, session, user):
    row = _history(session, user)
    response = client.get(
        "/track/open",
        params={"id": "trk-1", "recipient": " Carol@Example.com "},
        headers={"User-Agent": CHROME, "X-Forwarded-For": "5.6.7.8"},
    )
    assert response.status_code == 200
    assert response.content == PIXEL_PNG

    client.get("/track/open", params={"id": "trk-1", "recipient": "carol@example.com"}, headers={"User-Agent": CHROME})

    session.refresh(row)
    assert row.open_count == 2
    assert row.first_opened_at is not None
    events = session.exec(select(EmailOpenEvent).where(EmailOpenEvent.email_history_id == row.id)).all()
    assert len(events) == 2
    assert {e.recipient_email for e in events} == {"carol@example.com"}
    assert "5.6.7.8" in {e.ip_address for e in events}


def test_bot_open_ignored(client, session, user):
    row = _history(session, user)
    response = client.get("/track/open", params={"id": "trk-1"}, headers={"User-Agent": "Googlebot/2.1"})
    assert response.status_code == 200

    session.refresh(row)
    assert row.open_count == 0
    assert row.first_opened_at is None


def test_open_right_after_send_ignored(client, session, user):
    row = _history(session, user, sent_ago=0)
    client.get("/track/open", params={"id": "trk-1"}, headers={"User-Agent": CURL})
    session.refresh(row)
    assert row.open_count == 0


def test_recipient_narrows_lookup(client, session, user):
    carol = _history(session, user, recipient="carol@example.com")
    dave = _history(session, user, recipient="dave@example.com")

    client.get("/track/open", params={"id": "trk-1", "recipient": "dave@example.com"}, headers={"User-Agent": CHROME})

    session.refresh(carol)
    session.refresh(dave)
    assert carol.open_count == 0
    assert dave.open_count == 1
    assert dave.first_opened_recipient == "dave@example.com"


def test_unknown_tracking_id_returns_pixel(client):
    response = client.get("/track/open", params={"id": "missing"}, headers={"User-Agent": CHROME})
    assert response.status_code == 200
    assert response.content == PIXEL_PNG


def test_database_error_still_returns_pixel(client, monkeypatch, caplog):
    def locked(*args, **kwargs):
        raise SQLAlchemyError("database is locked")

    monkeypatch.setattr("recorder.routers.tracking.record_open", locked)
    with caplog.at_level(logging.ERROR, logger="recorder.routers.tracking"):
        response = client.get("/track/open", params={"id": "trk-1"}, headers={"User-Agent": CHROME})

    assert response.status_code == 200
    assert response.content == PIXEL_PNG
    assert response.headers["content-type"] == "image/png"
    assert "Error tracking email open for trk-1" in caplog.text

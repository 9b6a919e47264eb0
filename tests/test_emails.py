"""Tracked email sending, Gmail helpers and history tests."""

import base64
from datetime import datetime, timedelta, timezone

import httpx
import pytest
from sqlmodel import select

from recorder.models import EmailHistory, Meeting, UserSettings
from recorder.services import emailer, gmail
from recorder.services.mailer import inject_tracking_pixel, pixel_url, send_individual_emails


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


# ── Pixel helpers ────────────────────────────────────────────────────────────


def test_pixel_inserted_before_body_close():
    url = pixel_url("trk", "a+b@example.com")
    assert url.endswith("/track/open?id=trk&recipient=a%2Bb%40example.com")

    html = inject_tracking_pixel("<html><body><p>Hi</p></body></html>", url)
    assert html.index("<img") < html.index("</body>")
    assert html.count("</body>") == 1

    plain = inject_tracking_pixel("<p>Hi</p>", url)
    assert plain.startswith("<p>Hi</p>") and plain.rstrip().endswith("/>")


# ── Per-recipient sending ────────────────────────────────────────────────────


def test_send_one_message_per_recipient(client, auth_headers, session, outbox):
    response = client.post(
        "/emails/send",
        json={
            "recipients": ["carol@example.com", "dave@example.com"],
            "cc": ["boss@example.com"],
            "subject": "Weekly notes",
            "html_body": "<html><body><p>Notes</p></body></html>",
            "method": "smtp",
        },
        headers=auth_headers,
    )
    assert response.status_code == 200, response.text
    body = response.json()
    assert body["success"] is True
    assert body["total_sent"] == 2
    assert body["failed"] == []

    assert [m["to"] for m in outbox] == ["carol@example.com", "dave@example.com"]
    assert all(m["cc"] == ["boss@example.com"] for m in outbox)
    assert all(m["method"] == "smtp" for m in outbox)
    assert "recipient=carol%40example.com" in outbox[0]["html"]
    assert "recipient=dave%40example.com" in outbox[1]["html"]
    assert f"id={body['tracking_id']}" in outbox[0]["html"]

    rows = session.exec(select(EmailHistory).where(EmailHistory.tracking_id == body["tracking_id"])).all()
    assert {r.recipients for r in rows} == {"carol@example.com", "dave@example.com"}
    assert all(r.status == "sent" and r.cc_recipients == "boss@example.com" for r in rows)


def test_failed_recipient_is_recorded(client, auth_headers, session, monkeypatch):
    def flaky(to, subject, body_text, body_html=None, attachments=None, cc=None, bcc=None, method="resend", sender_name=None):
        if to.startswith("bad"):
            raise emailer.EmailSendError("mailbox unavailable")
        return {"provider": "test", "message_id": "ok"}

    monkeypatch.setattr(emailer, "send_email", flaky)
    response = client.post(
        "/emails/send",
        json={"recipients": ["good@example.com", "bad@example.com"], "subject": "s", "html_body": "<p>x</p>"},
        headers=auth_headers,
    )
    body = response.json()
    assert body["success"] is False
    assert body["total_sent"] == 1
    assert body["failed"] == ["bad@example.com"]

    failed = session.exec(select(EmailHistory).where(EmailHistory.recipients == "bad@example.com")).one()
    assert failed.status == "failed"
    assert failed.error_message == "mailbox unavailable"


def test_send_validates_method_and_recipients(client, auth_headers):
    bad_method = client.post(
        "/emails/send", json={"recipients": ["a@example.com"], "html_body": "<p/>", "method": "pigeon"}, headers=auth_headers
    )
    assert bad_method.status_code == 400

    no_recipients = client.post("/emails/send", json={"recipients": ["  "], "html_body": "<p/>"}, headers=auth_headers)
    assert no_recipients.status_code == 400


def test_undecodable_attachment_rejected(client, auth_headers, session, outbox):
    response = client.post(
        "/emails/send",
        json={
            "recipients": ["carol@example.com"],
            "html_body": "<p>x</p>",
            "attachments": [{"filename": "report.pdf", "content": "abc", "content_type": "pdf"}],
        },
        headers=auth_headers,
    )
    assert response.status_code == 400
    assert response.json()["detail"] == "Attachment report.pdf is not valid base64"
    assert outbox == []
    assert session.exec(select(EmailHistory)).all() == []

    gmail_response = client.post(
        "/emails/gmail",
        json={"to": ["carol@example.com"], "html": "<p>x</p>", "attachments": [{"filename": "a.bin", "content": "%%%"}]},
        headers=auth_headers,
    )
    assert gmail_response.status_code == 400


def test_undecodable_attachment_recorded_as_failure(session, user):
    result = send_individual_emails(
        session, user,
        recipients=["carol@example.com"],
        subject="Notes",
        html_body="<p>x</p>",
        attachments=[{"filename": "report.pdf", "content": "abc"}],
        method="smtp",
    )
    assert result["success"] is False
    assert result["failed"] == ["carol@example.com"]

    row = session.exec(select(EmailHistory)).one()
    assert row.status == "failed"
    assert row.error_message == "Attachment report.pdf is not valid base64"


def test_send_meeting_notes_composes_body(client, auth_headers, session, user, outbox):
    meeting = Meeting(user_id=user.id, title="Kickoff", summary="Executive Summary:\n- Agreed on scope")
    session.add(meeting)
    session.commit()
    session.refresh(meeting)

    response = client.post(
        "/emails/send",
        json={"recipients": ["carol@example.com"], "meeting_id": meeting.id},
        headers=auth_headers,
    )
    assert response.status_code == 200, response.text
    assert "Kickoff" in outbox[0]["subject"]
    assert "Agreed on scope" in outbox[0]["html"]

    sent = client.get("/emails/sent-meetings", headers=auth_headers)
    assert sent.json() == {"meeting_ids": [meeting.id]}

    history = client.get("/emails/history", params={"meeting_id": meeting.id}, headers=auth_headers).json()
    assert len(history) == 1
    assert history[0]["open_count"] == 0


def test_history_opens_are_scoped_to_owner(client, auth_headers, session, other_user):
    row = EmailHistory(user_id=other_user.id, recipients="x@example.com", tracking_id="t")
    session.add(row)
    session.commit()
    session.refresh(row)

    response = client.get(f"/emails/history/{row.id}/opens", headers=auth_headers)
    assert response.status_code == 404


# ── Gmail ────────────────────────────────────────────────────────────────────


def test_gmail_attachment_limits():
    too_many = [{"filename": f"{i}.txt", "content": _b64(b"x")} for i in range(11)]
    with pytest.raises(gmail.GmailError, match="Too many attachments"):
        gmail.check_attachment_limits(too_many)

    big = [{"filename": "big.bin", "content": "A" * (14 * 1024 * 1024)}]
    with pytest.raises(gmail.GmailError, match="too large"):
        gmail.check_attachment_limits(big)

    gmail.check_attachment_limits([{"filename": "ok.txt", "content": _b64(b"hello")}])


def test_gmail_mime_message_with_inline_image():
    msg = gmail.build_mime_message(
        sender="alice@example.com",
        to=["carol@example.com"],
        cc=["boss@example.com"],
        subject="Notes",
        html="<p>Hello <img src='cid:logo'></p>",
        attachments=[
            {"filename": "notes.txt", "content": _b64(b"notes"), "content_type": "text/plain"},
            {"filename": "logo.png", "content": _b64(b"\x89PNG"), "content_type": "image/png",
             "inline": True, "content_id": "logo"},
        ],
    )
    assert msg["To"] == "carol@example.com"
    assert msg["Cc"] == "boss@example.com"
    assert msg.get_content_type() == "multipart/mixed"

    parts = list(msg.iter_attachments())
    assert [p.get_filename() for p in parts] == ["notes.txt", "logo.png"]
    assert parts[1]["Content-ID"] == "<logo>"

    raw = gmail.encode_raw(msg)
    assert "=" not in raw and "+" not in raw and "/" not in raw


def test_gmail_requires_connection(client, auth_headers):
    response = client.post("/emails/gmail", json={"to": ["a@example.com"], "html": "<p/>"}, headers=auth_headers)
    assert response.status_code == 500
    assert response.json()["success"] is False
    assert response.json()["error"].startswith("Gmail not connected")


def test_gmail_refreshes_expired_token(client, auth_headers, session, user, monkeypatch):
    session.add(UserSettings(
        user_id=user.id, gmail_connected=True, gmail_refresh_token="refresh",
        gmail_access_token="stale", gmail_token_expiry=datetime.now(timezone.utc) - timedelta(minutes=1),
    ))
    session.commit()

    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if request.url.host == "oauth2.googleapis.com":
            return httpx.Response(200, json={"access_token": "fresh", "expires_in": 3600})
        assert request.headers["Authorization"] == "Bearer fresh"
        return httpx.Response(200, json={"id": "gm-1", "threadId": "th-1"})

    real_client = httpx.Client
    monkeypatch.setattr(gmail.httpx, "Client", lambda **kw: real_client(transport=httpx.MockTransport(handler), **kw))

    response = client.post("/emails/gmail", json={"to": ["a@example.com"], "html": "<p>hi</p>"}, headers=auth_headers)
    assert response.status_code == 200, response.text
    assert response.json()["message_id"] == "gm-1"
    assert len(requests) == 2

    prefs = session.exec(select(UserSettings).where(UserSettings.user_id == user.id)).one()
    session.refresh(prefs)
    assert prefs.gmail_access_token == "fresh"


def test_gmail_error_messages():
    assert gmail.user_facing_error("Gmail API error: 413 - too big").startswith("Message too large")
    assert gmail.user_facing_error("Gmail API error: 500").startswith("Gmail API error")
    assert gmail.user_facing_error("Unauthorized") == "Session expired. Please sign in again."
    assert gmail.user_facing_error("") == "Unknown error"


def test_gmail_mime_message_tolerates_bare_content_type():
    msg = gmail.build_mime_message(
        sender="Alice Martin <alice@example.com>",
        to=["carol@example.com"],
        subject="Notes",
        html="<p>x</p>",
        attachments=[{"filename": "report.pdf", "content": _b64(b"%PDF"), "content_type": "pdf"}],
    )
    assert msg["From"] == "Alice Martin <alice@example.com>"
    assert msg["Message-ID"].endswith("@example.com>")
    part = next(msg.iter_attachments())
    assert part.get_content_type() == "application/octet-stream"


def test_gmail_undecodable_attachment_is_gmail_error(session, user, monkeypatch):
    session.add(UserSettings(
        user_id=user.id, gmail_connected=True, gmail_refresh_token="refresh",
        gmail_access_token="valid", gmail_token_expiry=datetime.now(timezone.utc) + timedelta(minutes=30),
    ))
    session.commit()

    def no_network(**kw):
        raise AssertionError("nothing should be sent")

    monkeypatch.setattr(gmail.httpx, "Client", no_network)
    with pytest.raises(gmail.GmailError, match="not valid base64"):
        gmail.send_gmail(session, user, to=["carol@example.com"], subject="s", html="<p>x</p>",
                         attachments=[{"filename": "a.bin", "content": "abc"}])

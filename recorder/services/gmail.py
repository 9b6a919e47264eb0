"""
Gmail API sending on behalf of a connected user.

The user's OAuth refresh token lives in UserSettings; the short-lived access
token is refreshed on demand and written back.
"""
import base64
import logging
import re
import uuid
from datetime import timedelta
from email.message import EmailMessage
from email.utils import formatdate, parseaddr
from typing import Optional

import httpx
from sqlmodel import Session, select

from ..config import get_settings
from ..models import User, UserSettings, as_utc, utcnow
from .emailer import InvalidAttachment, _attachment_bytes, mime_type

logger = logging.getLogger(__name__)
settings = get_settings()

TOKEN_URL = "https://oauth2.googleapis.com/token"
SEND_URL = "https://gmail.googleapis.com/gmail/v1/users/me/messages/send"

MAX_ATTACHMENTS = 10
MAX_ATTACHMENTS_BYTES = 10 * 1024 * 1024

class GmailError(Exception):
    pass

class GmailNotConnected(GmailError):
    pass

def decoded_size(b64: str) -> int:
    """Approximate decoded size of a base64 payload (padding ignored)."""
    clean = re.sub(r"\r?\n", "", b64 or "")
    clean = re.sub(r"^data:[^;]+;base64,", "", clean)
    return len(clean) * 3 // 4

def check_attachment_limits(attachments: Optional[list[dict]]) -> None:
    if not attachments:
        return
    if len(attachments) > MAX_ATTACHMENTS:
        raise GmailError(f"Too many attachments ({len(attachments)}). Maximum: {MAX_ATTACHMENTS}.")
    total = sum(decoded_size(a.get("content", "")) for a in attachments)
    if total > MAX_ATTACHMENTS_BYTES:
        total_mb = round(total / 1024 / 1024, 1)
        raise GmailError(
            f"Attachments are too large ({total_mb} MB). Limit: 10 MB. "
            "Compress the files, split them over several emails or share a download link."
        )

def html_to_text(html: str) -> str:
    text = re.sub(r"(?is)<style.*?</style>", " ", html or "")
    text = re.sub(r"(?is)<script.*?</script>", " ", text)
    text = re.sub(r"<[^>]+>", " ", text)
    return re.sub(r"\s+", " ", text).strip()

def build_mime_message(*, sender: str, to: list[str], subject: str, html: str,
                       cc: Optional[list[str]] = None, bcc: Optional[list[str]] = None,
                       attachments: Optional[list[dict]] = None) -> EmailMessage:
    address = parseaddr(sender)[1]
    domain = address.split("@", 1)[1] if "@" in address else "localhost"

    msg = EmailMessage()
    msg["From"] = sender
    msg["To"] = ", ".join(to)
    if cc:
        msg["Cc"] = ", ".join(cc)
    if bcc:
        msg["Bcc"] = ", ".join(bcc)
    msg["Subject"] = subject
    msg["Date"] = formatdate(usegmt=True)
    msg["Message-ID"] = f"<{uuid.uuid4().hex}@{domain}>"

    msg.set_content(html_to_text(html), subtype="plain", charset="utf-8", cte="base64")
    msg.add_alternative(html, subtype="html", charset="utf-8", cte="base64")

    for att in (attachments or []):
        maintype, subtype = mime_type(att)
        disposition = "inline" if att.get("inline") else "attachment"
        cid = f"<{att['content_id']}>" if att.get("inline") and att.get("content_id") else None
        msg.add_attachment(
            _attachment_bytes(att), maintype=maintype, subtype=subtype,
            filename=att.get("filename", "attachment"), disposition=disposition, cid=cid,
        )
    return msg

def encode_raw(msg: EmailMessage) -> str:
    return base64.urlsafe_b64encode(msg.as_bytes()).decode("ascii").rstrip("=")

def _token_request(data: dict, action: str) -> dict:
    try:
        with httpx.Client(timeout=30) as client:
            r = client.post(TOKEN_URL, data={
                "client_id": settings.gmail_client_id,
                "client_secret": settings.gmail_client_secret,
                **data,
            })
    except httpx.HTTPError as e:
        raise GmailError(f"Failed to {action}: {e}") from e
    if r.status_code != 200:
        raise GmailError(f"Failed to {action}: {r.text}")
    return r.json()

def _refresh_access_token(refresh_token: str) -> dict:
    return _token_request({"refresh_token": refresh_token, "grant_type": "refresh_token"}, "refresh access token")

def exchange_code(code: str, redirect_uri: str) -> dict:
    """Trade an OAuth authorization code for tokens; Google only returns a refresh token on first consent."""
    token_data = _token_request({
        "code": code,
        "redirect_uri": redirect_uri,
        "grant_type": "authorization_code",
    }, "connect Gmail")
    if not token_data.get("refresh_token"):
        raise GmailError("Google did not return a refresh token. Remove the app's access in your Google account and connect again.")
    return token_data

def get_access_token(db: Session, user: User) -> str:
    prefs = db.exec(select(UserSettings).where(UserSettings.user_id == user.id)).first()
    if not prefs or not prefs.gmail_connected or not prefs.gmail_refresh_token:
        raise GmailNotConnected("Gmail not connected. Connect Gmail in Settings.")

    now = utcnow()
    if prefs.gmail_access_token and prefs.gmail_token_expiry and as_utc(prefs.gmail_token_expiry) > now:
        return prefs.gmail_access_token

    token_data = _refresh_access_token(prefs.gmail_refresh_token)
    prefs.gmail_access_token = token_data["access_token"]
    prefs.gmail_token_expiry = now + timedelta(seconds=int(token_data.get("expires_in", 3600)))
    db.add(prefs)
    db.commit()
    return prefs.gmail_access_token

def send_gmail(db: Session, user: User, *, to: list[str], subject: str, html: str,
               cc: Optional[list[str]] = None, bcc: Optional[list[str]] = None,
               attachments: Optional[list[dict]] = None, sender: Optional[str] = None) -> dict:
    """Send through the user's Gmail account; returns {"message_id", "thread_id"}."""
    check_attachment_limits(attachments)
    access_token = get_access_token(db, user)

    try:
        msg = build_mime_message(sender=sender or user.email, to=to, subject=subject, html=html,
                                 cc=cc, bcc=bcc, attachments=attachments)
    except InvalidAttachment as e:
        raise GmailError(str(e)) from e
    try:
        with httpx.Client(timeout=60) as client:
            r = client.post(SEND_URL, headers={"Authorization": f"Bearer {access_token}"},
                            json={"raw": encode_raw(msg)})
    except httpx.HTTPError as e:
        raise GmailError(f"Gmail API error: {e}") from e
    if r.status_code >= 400:
        raise GmailError(f"Gmail API error: {r.status_code} - {r.text}")

    result = r.json()
    logger.info("Gmail message %s sent for user %s", result.get("id"), user.id)
    return {"message_id": result.get("id"), "thread_id": result.get("threadId")}

def user_facing_error(message: str) -> str:
    if "Unauthorized" in message or "Session expired" in message:
        return "Session expired. Please sign in again."
    if "Gmail not connected" in message:
        return "Gmail not connected. Go to Settings > Email sending method > Connect Gmail."
    if re.search(r"(413|Message too large|larger than)", message, re.I):
        return "Message too large. Gmail limits attachments to about 25 MB in total. Use a download link instead."
    if "Gmail API error" in message:
        return "Gmail API error. Check the Gmail connection and its permissions."
    return message or "Unknown error"

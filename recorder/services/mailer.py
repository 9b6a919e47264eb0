"""
Per-recipient sending with open tracking.

Each "To" recipient gets a separate message carrying its own tracking pixel,
so an open can be attributed to a single person. CC and BCC recipients ride
along on every message. Every attempt is written to the email history.
"""
import logging
import uuid
from email.utils import formataddr
from typing import Optional
from urllib.parse import quote
from sqlmodel import Session
from ..config import get_settings
from ..models import EmailHistory, User
from . import emailer, gmail
from .preferences import SEND_METHODS, default_method, get_preferences

logger = logging.getLogger(__name__)
settings = get_settings()

def pixel_url(tracking_id: str, recipient: str) -> str:
    base = settings.public_base_url.rstrip("/")
    return f"{base}/track/open?id={tracking_id}&recipient={quote(recipient, safe='')}"

def inject_tracking_pixel(html_body: str, url: str) -> str:
    pixel = f'<img src="{url}" alt="" width="1" height="1" style="display:none;" />'
    if "</body>" in html_body:
        return html_body.replace("</body>", f"{pixel}</body>", 1)
    return f"{html_body}\n{pixel}"

def _clean(addresses: Optional[list[str]]) -> list[str]:
    return [a.strip() for a in (addresses or []) if a and a.strip()]

def _attachments_size(attachments: list[dict]) -> int:
    return sum(gmail.decoded_size(a.get("content", "")) for a in attachments)

def _send_one(db: Session, user: User, method: str, *, to: str, cc: list[str], bcc: list[str],
              subject: str, html_body: str, text_body: str, attachments: list[dict],
              sender_name: Optional[str] = None) -> dict:
    if method == "gmail":
        sender = formataddr((sender_name, user.email)) if sender_name else None
        return gmail.send_gmail(db, user, to=[to], cc=cc, bcc=bcc, subject=subject,
                                html=html_body, attachments=attachments, sender=sender)
    result = emailer.send_email(to, subject, text_body or gmail.html_to_text(html_body), html_body,
                                attachments=attachments, cc=cc, bcc=bcc, method=method,
                                sender_name=sender_name)
    return {"message_id": result.get("message_id"), "thread_id": None}

def send_individual_emails(
    db: Session,
    user: User,
    *,
    recipients: list[str],
    subject: str,
    html_body: str,
    text_body: str = "",
    cc: Optional[list[str]] = None,
    bcc: Optional[list[str]] = None,
    attachments: Optional[list[dict]] = None,
    method: Optional[str] = None,
    meeting_id: Optional[int] = None,
) -> dict:
    """Without an explicit method the user's saved preference is used."""
    prefs = get_preferences(db, user.id)
    method = method or default_method(prefs)
    sender_name = prefs.sender_name if prefs else None

    tracking_id = str(uuid.uuid4())
    to_list = _clean(recipients)
    cc_list = _clean(cc)
    bcc_list = _clean(bcc)
    attachments = attachments or []
    size = _attachments_size(attachments)

    failed: list[str] = []
    history_ids: list[int] = []

    for to in to_list:
        tracked_html = inject_tracking_pixel(html_body, pixel_url(tracking_id, to))
        row = EmailHistory(
            user_id=user.id,
            meeting_id=meeting_id,
            recipients=to,
            cc_recipients=", ".join(cc_list) or None,
            subject=subject,
            html_body=tracked_html,
            method=method,
            attachments_count=len(attachments),
            total_attachments_size=size,
            tracking_id=tracking_id,
        )
        try:
            result = _send_one(db, user, method, to=to, cc=cc_list, bcc=bcc_list, subject=subject,
                               html_body=tracked_html, text_body=text_body, attachments=attachments,
                               sender_name=sender_name)
            row.status = "sent"
            row.message_id = result.get("message_id")
            row.thread_id = result.get("thread_id")
            logger.info("Email sent to %s (tracking %s)", to, tracking_id)
        except (emailer.EmailSendError, gmail.GmailError) as e:
            logger.error("Email to %s failed: %s", to, e)
            failed.append(to)
            row.status = "failed"
            row.html_body = html_body
            row.error_message = gmail.user_facing_error(str(e))

        db.add(row)
        db.commit()
        db.refresh(row)
        if row.status == "sent":
            history_ids.append(row.id)

    return {
        "success": not failed,
        "total_sent": len(to_list) - len(failed),
        "failed": failed,
        "tracking_id": tracking_id,
        "history_ids": history_ids,
    }

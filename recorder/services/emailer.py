# recorder/services/emailer.py
import base64, binascii, logging, smtplib
from email.message import EmailMessage
from email.utils import formataddr
from pathlib import Path
import httpx
from ..config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()

RESEND_URL = "https://api.resend.com/emails"

# --- Dev outbox (always available) ---
OUTBOX_DIR = (Path(__file__).resolve().parents[2] / "data" / "outbox" / "email")

class EmailSendError(Exception):
    pass

class InvalidAttachment(EmailSendError):
    pass

def _attachment_bytes(att: dict) -> bytes:
    """Attachments travel as base64; strip data-URL prefixes and line breaks."""
    content = (att.get("content") or "").replace("\r", "").replace("\n", "")
    if content.startswith("data:") and "," in content:
        content = content.split(",", 1)[1]
    try:
        return base64.b64decode(content, validate=True)
    except (binascii.Error, ValueError) as e:
        raise InvalidAttachment(f"Attachment {att.get('filename') or 'attachment'} is not valid base64") from e

def mime_type(att: dict) -> tuple[str, str]:
    """(maintype, subtype) of an attachment; anything malformed is sent as octet-stream."""
    maintype, _, subtype = (att.get("content_type") or "").strip().partition("/")
    if not maintype or not subtype or "/" in subtype:
        return "application", "octet-stream"
    return maintype, subtype

def validate_attachments(attachments: list[dict] | None) -> None:
    for att in (attachments or []):
        _attachment_bytes(att)

def _from_header(sender_name: str | None) -> str:
    return formataddr(((sender_name or "").strip() or settings.from_name, settings.from_email))

def _dev_write(to: list[str], subject: str, body_text: str, body_html: str | None, attachments: list[dict] | None) -> dict:
    OUTBOX_DIR.mkdir(parents=True, exist_ok=True)
    safe_to = to[0].replace("@", "_at_") if to else "nobody"
    fname = OUTBOX_DIR / f"email_to={safe_to}_{subject.replace(' ','_').replace('/', '_')[:80]}.eml"
    lines = [f"TO: {', '.join(to)}", f"SUBJECT: {subject}", ""]
    lines.append(body_text or "")
    if body_html:
        lines.append("\n[HTML PART]\n" + body_html)
    if attachments:
        lines.append("\n[ATTACHMENTS]\n" + "\n".join(a.get("filename", "file") for a in attachments))
    fname.write_text("\n".join(lines), encoding="utf-8")
    logger.info("Email written to dev outbox: %s", fname.name)
    return {"provider": "outbox", "message_id": None}

# --- SMTP (fallback) ---
def _smtp_send(to: list[str], subject: str, body_text: str, body_html: str | None,
               attachments: list[dict] | None, cc: list[str] | None = None, bcc: list[str] | None = None,
               sender_name: str | None = None) -> dict:
    if not (settings.smtp_host and settings.smtp_user and settings.smtp_pass and settings.from_email):
        return _dev_write(to, subject, body_text, body_html, attachments)

    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = _from_header(sender_name)
    msg["To"] = ", ".join(to)
    if cc:
        msg["Cc"] = ", ".join(cc)

    msg.set_content(body_text or "", subtype="plain", charset="utf-8")
    if body_html:
        msg.add_alternative(body_html, subtype="html", charset="utf-8")

    for att in (attachments or []):
        maintype, subtype = mime_type(att)
        msg.add_attachment(_attachment_bytes(att), maintype=maintype, subtype=subtype,
                           filename=att.get("filename", "attachment"))

    with smtplib.SMTP(settings.smtp_host, int(settings.smtp_port or 587), timeout=30) as server:
        server.ehlo(); server.starttls(); server.ehlo()
        server.login(settings.smtp_user, settings.smtp_pass)
        server.send_message(msg, to_addrs=list(to) + list(cc or []) + list(bcc or []))
    return {"provider": "smtp", "message_id": msg.get("Message-ID")}

# --- Resend (primary) ---
def _resend_send(to: list[str], subject: str, body_text: str, body_html: str | None,
                 attachments: list[dict] | None, cc: list[str] | None = None, bcc: list[str] | None = None,
                 sender_name: str | None = None) -> dict:
    if not (settings.email_service == "resend" and settings.resend_api_key and settings.from_email):
        # not configured → try SMTP → then dev outbox
        return _smtp_send(to, subject, body_text, body_html, attachments, cc, bcc, sender_name)

    data = {
        "from": _from_header(sender_name),
        "to": list(to),
        "subject": subject,
        "text": body_text or "",
        "html": body_html or f"<pre style='white-space:pre-wrap'>{(body_text or '')}</pre>",
    }
    if cc:
        data["cc"] = list(cc)
    if bcc:
        data["bcc"] = list(bcc)
    if attachments:
        data["attachments"] = [
            {"filename": a.get("filename", "attachment"), "content": base64.b64encode(_attachment_bytes(a)).decode("utf-8")}
            for a in attachments
        ]

    headers = {"Authorization": f"Bearer {settings.resend_api_key}", "Content-Type": "application/json"}
    try:
        with httpx.Client(timeout=30) as client:
            r = client.post(RESEND_URL, headers=headers, json=data)
    except httpx.HTTPError as e:
        logger.warning("Resend request failed (%s); falling back to SMTP", e)
        return _smtp_send(to, subject, body_text, body_html, attachments, cc, bcc, sender_name)

    if r.status_code != 200:
        logger.warning("Resend error %s: %s; falling back to SMTP", r.status_code, r.text)
        return _smtp_send(to, subject, body_text, body_html, attachments, cc, bcc, sender_name)

    return {"provider": "resend", "message_id": r.json().get("id")}

# --- Public API ---
def send_email(to: str | list[str], subject: str, body_text: str, body_html: str | None = None,
               attachments: list[dict] | None = None, cc: list[str] | None = None,
               bcc: list[str] | None = None, method: str = "resend", sender_name: str | None = None) -> dict:
    """
    Send one message and return {"provider", "message_id"}.

    method="resend": Resend, falling back to SMTP, then the dev outbox.
    method="smtp":   SMTP, falling back to the dev outbox when unconfigured.
    sender_name replaces the configured display name in the From header.
    Undecodable attachments raise InvalidAttachment before anything is sent;
    transport errors surface as EmailSendError.
    """
    recipients = [to] if isinstance(to, str) else list(to)
    validate_attachments(attachments)
    try:
        if method == "smtp":
            return _smtp_send(recipients, subject, body_text, body_html, attachments, cc, bcc, sender_name)
        return _resend_send(recipients, subject, body_text, body_html, attachments, cc, bcc, sender_name)
    except (smtplib.SMTPException, OSError) as e:
        logger.exception("Email delivery failed for %s", recipients)
        raise EmailSendError(str(e)) from e

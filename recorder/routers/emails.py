# recorder/routers/emails.py
import logging
from email.utils import formataddr
from typing import List, Optional
from fastapi import APIRouter, HTTPException, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlmodel import Session, select, col
from ..db import get_session
from ..models import EmailHistory, EmailOpenEvent, Meeting, User
from ..security import require_user
from ..services import emailer, gmail
from ..services.branding import compose_meeting_email_parts
from ..services.mailer import send_individual_emails
from ..services.preferences import SEND_METHODS, get_preferences

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/emails", tags=["emails"])

class Attachment(BaseModel):
    filename: str
    content: str  # base64
    content_type: str = "application/octet-stream"
    inline: bool = False
    content_id: Optional[str] = None

class SendEmailsBody(BaseModel):
    recipients: List[str]
    cc: List[str] = Field(default_factory=list)
    bcc: List[str] = Field(default_factory=list)
    subject: str = ""
    html_body: str = ""
    text_body: str = ""
    attachments: List[Attachment] = Field(default_factory=list)
    method: Optional[str] = None  # saved preference when omitted
    meeting_id: Optional[int] = None

class GmailBody(BaseModel):
    to: List[str]
    cc: List[str] = Field(default_factory=list)
    bcc: List[str] = Field(default_factory=list)
    subject: str = ""
    html: str
    attachments: List[Attachment] = Field(default_factory=list)
    sender: Optional[str] = None

def _history_payload(row: EmailHistory) -> dict:
    return {
        "id": row.id,
        "meeting_id": row.meeting_id,
        "recipients": row.recipients,
        "cc_recipients": row.cc_recipients,
        "subject": row.subject,
        "method": row.method,
        "status": row.status,
        "error_message": row.error_message,
        "attachments_count": row.attachments_count,
        "tracking_id": row.tracking_id,
        "sent_at": row.sent_at.isoformat() if row.sent_at else None,
        "first_opened_at": row.first_opened_at.isoformat() if row.first_opened_at else None,
        "first_opened_recipient": row.first_opened_recipient,
        "open_count": row.open_count,
    }

def _checked_attachments(attachments: List[Attachment]) -> list[dict]:
    payload = [a.model_dump() for a in attachments]
    try:
        emailer.validate_attachments(payload)
    except emailer.InvalidAttachment as e:
        raise HTTPException(status_code=400, detail=str(e))
    return payload

@router.post("/send")
def send_emails(body: SendEmailsBody, user: User = Depends(require_user), db: Session = Depends(get_session)):
    """Send one tracked message per recipient; the result lists failures instead of raising."""
    if body.method is not None and body.method not in SEND_METHODS:
        raise HTTPException(status_code=400, detail=f"Unknown sending method: {body.method}")
    if not [r for r in body.recipients if r.strip()]:
        raise HTTPException(status_code=400, detail="At least one recipient is required")
    attachments = _checked_attachments(body.attachments)

    subject, text_body, html_body = body.subject, body.text_body, body.html_body
    if body.meeting_id is not None:
        meeting = db.exec(
            select(Meeting).where(Meeting.id == body.meeting_id, Meeting.user_id == user.id)
        ).first()
        if not meeting:
            raise HTTPException(status_code=404, detail="Meeting not found")
        if not html_body:
            prefs = get_preferences(db, user.id)
            default_subject, text_body, html_body = compose_meeting_email_parts(
                meeting_title=meeting.title,
                summary_text=meeting.summary or "",
                sender_name=prefs.sender_name if prefs else None,
                signature_text=prefs.signature_text if prefs else None,
            )
            subject = subject or default_subject

    if not html_body:
        raise HTTPException(status_code=400, detail="Email body is required")

    return send_individual_emails(
        db,
        user,
        recipients=body.recipients,
        cc=body.cc,
        bcc=body.bcc,
        subject=subject,
        html_body=html_body,
        text_body=text_body,
        attachments=attachments,
        method=body.method,
        meeting_id=body.meeting_id,
    )

@router.post("/gmail")
def send_via_gmail(body: GmailBody, user: User = Depends(require_user), db: Session = Depends(get_session)):
    attachments = _checked_attachments(body.attachments)
    sender = body.sender
    if not sender:
        prefs = get_preferences(db, user.id)
        if prefs and prefs.sender_name:
            sender = formataddr((prefs.sender_name, user.email))
    try:
        result = gmail.send_gmail(
            db, user, to=body.to, cc=body.cc, bcc=body.bcc, subject=body.subject, html=body.html,
            attachments=attachments, sender=sender,
        )
    except gmail.GmailError as e:
        logger.error("Gmail send failed for user %s: %s", user.id, e)
        return JSONResponse(
            status_code=500,
            content={"success": False, "error": gmail.user_facing_error(str(e)), "details": str(e)},
        )
    return {
        "success": True,
        "message_id": result["message_id"],
        "thread_id": result["thread_id"],
        "message": "Email sent via Gmail",
    }

@router.get("/history")
def email_history(
    meeting_id: Optional[int] = None,
    user: User = Depends(require_user),
    db: Session = Depends(get_session),
):
    statement = select(EmailHistory).where(EmailHistory.user_id == user.id)
    if meeting_id is not None:
        statement = statement.where(EmailHistory.meeting_id == meeting_id)
    rows = db.exec(statement.order_by(col(EmailHistory.sent_at).desc())).all()
    return [_history_payload(r) for r in rows]

@router.get("/history/{history_id}/opens")
def email_opens(history_id: int, user: User = Depends(require_user), db: Session = Depends(get_session)):
    row = db.exec(
        select(EmailHistory).where(EmailHistory.id == history_id, EmailHistory.user_id == user.id)
    ).first()
    if not row:
        raise HTTPException(status_code=404, detail="Email not found")

    events = db.exec(
        select(EmailOpenEvent)
        .where(EmailOpenEvent.email_history_id == history_id)
        .order_by(col(EmailOpenEvent.opened_at).desc())
    ).all()
    return [
        {
            "id": e.id,
            "recipient_email": e.recipient_email,
            "ip_address": e.ip_address,
            "user_agent": e.user_agent,
            "opened_at": e.opened_at.isoformat(),
        }
        for e in events
    ]

@router.get("/sent-meetings")
def sent_meetings(user: User = Depends(require_user), db: Session = Depends(get_session)):
    ids = db.exec(
        select(EmailHistory.meeting_id)
        .where(
            EmailHistory.user_id == user.id,
            EmailHistory.status == "sent",
            col(EmailHistory.meeting_id).is_not(None),
        )
        .distinct()
    ).all()
    return {"meeting_ids": sorted(ids)}

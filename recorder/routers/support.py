# recorder/routers/support.py
import logging
from typing import List, Optional
from fastapi import APIRouter, HTTPException, Depends, Header
from pydantic import BaseModel, Field
from sqlmodel import Session
from ..config import get_settings
from ..db import get_session
from ..models import SupportTicket
from ..security import _decode_token, normalize_email
from ..services.branding import compose_support_ticket_email, compose_support_auto_reply
from ..services.emailer import send_email, EmailSendError
from ..services.reset_codes import find_user

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/support", tags=["support"])
settings = get_settings()

class TicketBody(BaseModel):
    name: str = ""
    email: str = ""
    category: str = "question"
    subject: str = ""
    message: str = ""
    screenshots: List[str] = Field(default_factory=list)

def _optional_user_id(authorization: Optional[str], db: Session) -> Optional[int]:
    # tickets may come from signed-out visitors
    if not authorization or not authorization.lower().startswith("bearer "):
        return None
    try:
        email = _decode_token(authorization.split(" ", 1)[1]).get("sub")
    except HTTPException:
        return None
    user = find_user(db, email) if email else None
    return user.id if user else None

@router.post("/tickets")
def create_ticket(
    body: TicketBody,
    authorization: Optional[str] = Header(default=None),
    db: Session = Depends(get_session),
):
    name, email, message = body.name.strip(), body.email.strip(), body.message.strip()
    if not name or not email or not message:
        raise HTTPException(status_code=400, detail="Missing required fields")
    email = normalize_email(email)
    subject = body.subject.strip() or "Support request"

    ticket = SupportTicket(
        user_id=_optional_user_id(authorization, db),
        name=name,
        email=email,
        category=body.category,
        subject=subject,
        message=message,
    )
    db.add(ticket)
    db.commit()
    db.refresh(ticket)

    mail_subject, text, html_body = compose_support_ticket_email(
        ticket_id=ticket.id, name=name, email=email, category=body.category,
        subject=subject, message=message, screenshots=body.screenshots,
    )
    try:
        send_email(settings.support_email, mail_subject, text, html_body)
    except EmailSendError as e:
        raise HTTPException(status_code=500, detail=f"Could not send the ticket: {e}")

    reply_subject, reply_text, reply_html = compose_support_auto_reply(name=name, ticket_id=ticket.id)
    auto_reply_sent = True
    try:
        send_email(email, reply_subject, reply_text, reply_html)
    except EmailSendError:
        # ticket already reached support
        auto_reply_sent = False

    logger.info("Support ticket %s created (%s)", ticket.id, body.category)
    return {"success": True, "ticket_id": ticket.id, "auto_reply_sent": auto_reply_sent}

# recorder/services/tracking.py
import logging
import re
from datetime import datetime
from typing import Mapping, Optional, Tuple
from sqlalchemy import update
from sqlmodel import Session, select, col
from ..config import get_settings
from ..models import EmailHistory, EmailOpenEvent, as_utc, utcnow

logger = logging.getLogger(__name__)
settings = get_settings()

# 1x1 transparent PNG
PIXEL_PNG = bytes([
    0x89, 0x50, 0x4E, 0x47, 0x0D, 0x0A, 0x1A, 0x0A,
    0x00, 0x00, 0x00, 0x0D, 0x49, 0x48, 0x44, 0x52,
    0x00, 0x00, 0x00, 0x01, 0x00, 0x00, 0x00, 0x01,
    0x08, 0x06, 0x00, 0x00, 0x00, 0x1F, 0x15, 0xC4,
    0x89, 0x00, 0x00, 0x00, 0x0A, 0x49, 0x44, 0x41,
    0x54, 0x78, 0x9C, 0x63, 0x00, 0x01, 0x00, 0x00,
    0x05, 0x00, 0x01, 0x0D, 0x0A, 0x2D, 0xB4, 0x00,
    0x00, 0x00, 0x00, 0x49, 0x45, 0x4E, 0x44, 0xAE,
    0x42, 0x60, 0x82,
])

PIXEL_HEADERS = {
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}

# Bots, link scanners, image proxies and mail-security gateways
SUSPICIOUS_AGENT_PATTERNS = [re.compile(p, re.I) for p in (
    r"bot", r"crawler", r"spider", r"scan", r"check", r"monitor",
    r"preview", r"prerender", r"validator", r"fetcher",
    r"googleimageproxy", r"google-proxy", r"yahoo.*slurp",
    r"outlook", r"microsoft.*office", r"ms-office", r"windows-mail",
    r"mailchimp", r"sendgrid", r"mailgun", r"postmark", r"sparkpost", r"amazonses",
    r"barracuda", r"proofpoint", r"mimecast", r"messagelabs", r"websense",
    r"bluecoat", r"fortinet", r"sophos", r"symantec", r"mcafee", r"kaspersky",
    r"antivirus", r"security",
    r"safelinks\.protection", r"url-protection", r"link-protection",
)]

KNOWN_BROWSER_PATTERN = re.compile(r"chrome|firefox|safari|edge|opera|mobile", re.I)

def client_ip(headers: Mapping[str, str], peer: Optional[str] = None) -> Optional[str]:
    forwarded = (headers.get("x-forwarded-for") or "").split(",")[0].strip()
    return (
        forwarded
        or (headers.get("x-real-ip") or "").strip()
        or (headers.get("cf-connecting-ip") or "").strip()
        or peer
        or None
    )

def is_suspicious_agent(user_agent: Optional[str]) -> bool:
    if not user_agent:
        return False
    return any(p.search(user_agent) for p in SUSPICIOUS_AGENT_PATTERNS)

def is_known_browser(user_agent: Optional[str]) -> bool:
    return bool(user_agent and KNOWN_BROWSER_PATTERN.search(user_agent))

def classify_open(
    user_agent: Optional[str],
    sent_at: Optional[datetime],
    now: Optional[datetime] = None,
    min_delay_seconds: Optional[float] = None,
) -> Tuple[bool, str]:
    """
    Decide whether a pixel hit counts as a human open.
    Returns: (accepted, reason) with reason in {"ok", "suspicious_agent", "too_early"}
    """
    if is_suspicious_agent(user_agent):
        return False, "suspicious_agent"

    delay = settings.tracking_min_delay_seconds if min_delay_seconds is None else min_delay_seconds
    if sent_at is not None:
        elapsed = (as_utc(now or utcnow()) - as_utc(sent_at)).total_seconds()
        if elapsed < delay and not is_known_browser(user_agent):
            return False, "too_early"

    return True, "ok"

def find_history(session: Session, tracking_id: str, recipient: Optional[str]) -> Optional[EmailHistory]:
    """Most recent history row for the tracking id, narrowed to the recipient when given."""
    statement = select(EmailHistory).where(EmailHistory.tracking_id == tracking_id)
    if recipient:
        statement = statement.where(col(EmailHistory.recipients).ilike(f"%{recipient}%"))
    statement = statement.order_by(col(EmailHistory.sent_at).desc())
    return session.exec(statement).first()

def record_open(
    session: Session,
    tracking_id: str,
    recipient: Optional[str],
    ip_address: Optional[str],
    user_agent: Optional[str],
) -> Optional[EmailOpenEvent]:
    """
    Register a pixel hit. Returns the stored open event, or None when the hit
    was unknown or filtered out.
    """
    normalized = recipient.strip().lower() if recipient else None
    history = find_history(session, tracking_id, normalized)
    if not history:
        logger.warning("Tracking id not found: %s", tracking_id)
        return None

    now = utcnow()
    accepted, reason = classify_open(user_agent, history.sent_at, now)
    if not accepted:
        logger.info("Open ignored for history %s (%s): %s", history.id, reason, user_agent)
        return None

    if not history.first_opened_at:
        history.first_opened_at = now
        history.first_opened_recipient = recipient
        session.add(history)

    event = EmailOpenEvent(
        email_history_id=history.id,
        recipient_email=normalized,
        ip_address=ip_address,
        user_agent=user_agent,
        opened_at=now,
    )
    session.add(event)
    session.execute(
        update(EmailHistory)
        .where(EmailHistory.id == history.id)
        .values(open_count=EmailHistory.open_count + 1)
    )
    session.commit()
    session.refresh(event)
    logger.info("Open recorded for history %s (%s)", history.id, normalized or "unknown")
    return event

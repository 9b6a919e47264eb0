"""
Password-reset OTP codes.

A user asks for a code by email; a 6-digit code valid for a short window is
stored and mailed. Submitting the code with a new password resets it once.
"""
import logging
import secrets
from datetime import timedelta
from typing import Optional, Tuple
from sqlmodel import Session, select
from ..config import get_settings
from ..models import PasswordResetCode, User, as_utc, utcnow
from ..security import hash_password

logger = logging.getLogger(__name__)
settings = get_settings()

def generate_code() -> str:
    return str(100000 + secrets.randbelow(900000))

def find_user(session: Session, email: str) -> Optional[User]:
    return session.exec(select(User).where(User.email == email)).first()

def issue_reset_code(session: Session, email: str) -> Optional[PasswordResetCode]:
    """
    Replace any previous codes for this email with a fresh one.
    Returns None when no account uses the email.
    """
    if not find_user(session, email):
        return None

    for old in session.exec(select(PasswordResetCode).where(PasswordResetCode.email == email)).all():
        session.delete(old)

    reset = PasswordResetCode(
        email=email,
        code=generate_code(),
        expires_at=utcnow() + timedelta(minutes=settings.reset_code_ttl_minutes),
        used=False,
    )
    session.add(reset)
    session.commit()
    session.refresh(reset)

    logger.info("Reset code issued for %s (expires %s)", email, reset.expires_at.isoformat())
    return reset

def check_reset_code(session: Session, email: str, code: str) -> Tuple[bool, Optional[PasswordResetCode], Optional[str]]:
    """
    Validate a reset code
    Returns: (is_valid, code_obj, error_message)
    """
    statement = select(PasswordResetCode).where(
        PasswordResetCode.email == email,
        PasswordResetCode.code == code,
        PasswordResetCode.used == False,  # noqa: E712
    )
    reset = session.exec(statement).first()

    if not reset:
        return False, None, "Invalid or expired code"

    if utcnow() > as_utc(reset.expires_at):
        return False, reset, "Code expired"

    return True, reset, None

def reset_password(session: Session, reset: PasswordResetCode, user: User, new_password: str) -> None:
    user.hashed_password = hash_password(new_password)
    reset.used = True
    session.add(user)
    session.add(reset)
    session.commit()
    logger.info("Password reset for %s", user.email)

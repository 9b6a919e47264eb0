"""
Per-user email preferences: default sending method, sender name, signature
and the Gmail OAuth connection.
"""
import logging
from datetime import timedelta
from typing import Optional
from sqlmodel import Session, select
from ..models import UserSettings, utcnow

logger = logging.getLogger(__name__)

SEND_METHODS = ("resend", "smtp", "gmail")
DEFAULT_METHOD = "resend"

class PreferencesError(Exception):
    pass

def get_preferences(db: Session, user_id: int) -> Optional[UserSettings]:
    return db.exec(select(UserSettings).where(UserSettings.user_id == user_id)).first()

def get_or_create_preferences(db: Session, user_id: int) -> UserSettings:
    prefs = get_preferences(db, user_id)
    if prefs:
        return prefs
    prefs = UserSettings(user_id=user_id)
    db.add(prefs)
    db.commit()
    db.refresh(prefs)
    return prefs

def preferences_view(prefs: Optional[UserSettings]) -> dict:
    # tokens never leave the server
    return {
        "email_method": prefs.email_method if prefs else DEFAULT_METHOD,
        "gmail_connected": bool(prefs and prefs.gmail_connected),
        "sender_name": prefs.sender_name if prefs else None,
        "signature_text": prefs.signature_text if prefs else None,
    }

def default_method(prefs: Optional[UserSettings]) -> str:
    """Preferred sending method; Gmail falls back to the default until it is connected."""
    if not prefs or prefs.email_method not in SEND_METHODS:
        return DEFAULT_METHOD
    if prefs.email_method == "gmail" and not prefs.gmail_connected:
        return DEFAULT_METHOD
    return prefs.email_method

def update_preferences(
    db: Session,
    user_id: int,
    *,
    email_method: Optional[str] = None,
    sender_name: Optional[str] = None,
    signature_text: Optional[str] = None,
) -> UserSettings:
    """Apply the given fields; an empty string clears sender name or signature."""
    if email_method is not None and email_method not in SEND_METHODS:
        raise PreferencesError(f"Unknown sending method: {email_method}")

    prefs = get_or_create_preferences(db, user_id)
    if email_method is not None:
        prefs.email_method = email_method
    if sender_name is not None:
        prefs.sender_name = sender_name.strip() or None
    if signature_text is not None:
        prefs.signature_text = signature_text.strip() or None
    db.add(prefs)
    db.commit()
    db.refresh(prefs)
    return prefs

def connect_gmail(db: Session, user_id: int, token_data: dict) -> UserSettings:
    prefs = get_or_create_preferences(db, user_id)
    prefs.gmail_connected = True
    prefs.gmail_refresh_token = token_data["refresh_token"]
    prefs.gmail_access_token = token_data.get("access_token")
    prefs.gmail_token_expiry = (
        utcnow() + timedelta(seconds=int(token_data.get("expires_in", 3600)))
        if prefs.gmail_access_token else None
    )
    prefs.email_method = "gmail"
    db.add(prefs)
    db.commit()
    db.refresh(prefs)
    logger.info("Gmail connected for user %s", user_id)
    return prefs

def disconnect_gmail(db: Session, user_id: int) -> UserSettings:
    prefs = get_or_create_preferences(db, user_id)
    prefs.gmail_connected = False
    prefs.gmail_access_token = None
    prefs.gmail_refresh_token = None
    prefs.gmail_token_expiry = None
    if prefs.email_method == "gmail":
        prefs.email_method = DEFAULT_METHOD
    db.add(prefs)
    db.commit()
    db.refresh(prefs)
    logger.info("Gmail disconnected for user %s", user_id)
    return prefs

# recorder/routers/settings.py
import logging
from typing import Optional
from fastapi import APIRouter, HTTPException, Depends
from pydantic import BaseModel
from sqlmodel import Session
from ..db import get_session
from ..models import User
from ..security import require_user
from ..services import gmail, preferences

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/settings", tags=["settings"])

class SettingsUpdate(BaseModel):
    email_method: Optional[str] = None
    sender_name: Optional[str] = None
    signature_text: Optional[str] = None

class GmailConnectBody(BaseModel):
    code: str
    redirect_uri: str

@router.get("")
def read_settings(user: User = Depends(require_user), db: Session = Depends(get_session)):
    return preferences.preferences_view(preferences.get_preferences(db, user.id))

@router.put("")
def update_settings(body: SettingsUpdate, user: User = Depends(require_user), db: Session = Depends(get_session)):
    try:
        prefs = preferences.update_preferences(
            db, user.id,
            email_method=body.email_method,
            sender_name=body.sender_name,
            signature_text=body.signature_text,
        )
    except preferences.PreferencesError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return preferences.preferences_view(prefs)

@router.post("/gmail/connect")
def connect_gmail(body: GmailConnectBody, user: User = Depends(require_user), db: Session = Depends(get_session)):
    """Finish the Google OAuth flow: store the tokens and make Gmail the sending method."""
    if not body.code.strip():
        raise HTTPException(status_code=400, detail="Authorization code is required")
    try:
        token_data = gmail.exchange_code(body.code.strip(), body.redirect_uri)
    except gmail.GmailError as e:
        logger.error("Gmail connection failed for user %s: %s", user.id, e)
        raise HTTPException(status_code=400, detail=str(e))
    return preferences.preferences_view(preferences.connect_gmail(db, user.id, token_data))

@router.delete("/gmail")
def disconnect_gmail(user: User = Depends(require_user), db: Session = Depends(get_session)):
    return preferences.preferences_view(preferences.disconnect_gmail(db, user.id))

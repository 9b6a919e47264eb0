# recorder/routers/auth.py
import logging
from fastapi import APIRouter, HTTPException, Depends
from pydantic import BaseModel
from sqlmodel import Session, select
from ..config import get_settings
from ..db import get_session
from ..models import User
from ..security import create_access_token, hash_password, normalize_email, verify_password, require_user
from ..services import reset_codes
from ..services.branding import compose_reset_code_email
from ..services.emailer import send_email, EmailSendError

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/auth", tags=["auth"])
settings = get_settings()

GENERIC_RESET_MESSAGE = "If this email exists, a code has been sent"

class RegisterBody(BaseModel):
    email: str
    password: str
    name: str = ""

class LoginBody(BaseModel):
    email: str
    password: str

class UpdatePasswordBody(BaseModel):
    password: str
    confirm_password: str

class SendResetCodeBody(BaseModel):
    email: str = ""

class VerifyResetCodeBody(BaseModel):
    email: str = ""
    code: str = ""
    new_password: str = ""

def _validate_password(password: str) -> None:
    if len(password or "") < settings.min_password_length:
        raise HTTPException(
            status_code=400,
            detail=f"Password must be at least {settings.min_password_length} characters",
        )

def _token_response(user: User) -> dict:
    return {
        "access_token": create_access_token(sub=user.email),
        "token_type": "bearer",
        "expires_in": settings.jwt_expires_minutes * 60,
        "user": {"id": user.id, "email": user.email, "name": user.name},
    }

@router.post("/register")
def register(body: RegisterBody, db: Session = Depends(get_session)):
    email = normalize_email(body.email)
    _validate_password(body.password)

    if db.exec(select(User).where(User.email == email)).first():
        raise HTTPException(status_code=400, detail="Email already registered")

    user = User(email=email, name=body.name.strip(), hashed_password=hash_password(body.password))
    db.add(user)
    db.commit()
    db.refresh(user)
    return _token_response(user)

@router.post("/login")
def login(body: LoginBody, db: Session = Depends(get_session)):
    user = db.exec(select(User).where(User.email == body.email.strip().lower())).first()
    if not user or not verify_password(body.password, user.hashed_password):
        raise HTTPException(status_code=401, detail="Invalid email or password")
    return _token_response(user)

@router.get("/me")
def me(user: User = Depends(require_user)):
    return {"id": user.id, "email": user.email, "name": user.name}

@router.post("/update-password")
def update_password(body: UpdatePasswordBody, user: User = Depends(require_user), db: Session = Depends(get_session)):
    """Change the password of the signed-in user."""
    _validate_password(body.password)
    if body.password != body.confirm_password:
        raise HTTPException(status_code=400, detail="Passwords do not match")

    user.hashed_password = hash_password(body.password)
    db.add(user)
    db.commit()
    return {"success": True, "message": "Password updated"}

@router.post("/send-reset-code")
def send_reset_code(body: SendResetCodeBody, db: Session = Depends(get_session)):
    email = normalize_email(body.email)

    reset = reset_codes.issue_reset_code(db, email)
    if not reset:
        # same answer whether or not the account exists
        return {"success": True, "message": GENERIC_RESET_MESSAGE}

    subject, text, html_body = compose_reset_code_email(reset.code, settings.reset_code_ttl_minutes)
    try:
        send_email(email, subject, text, html_body)
    except EmailSendError as e:
        raise HTTPException(status_code=500, detail=f"Could not send the code: {e}")

    payload = {"success": True, "message": "A verification code has been sent to your email"}
    if settings.is_dev:
        payload["debug_code"] = reset.code
    return payload

@router.post("/verify-reset-code")
def verify_reset_code(body: VerifyResetCodeBody, db: Session = Depends(get_session)):
    email = body.email.strip().lower()
    if not email or not body.code or not body.new_password:
        raise HTTPException(status_code=400, detail="Email, code and new password are required")
    _validate_password(body.new_password)

    is_valid, reset, error = reset_codes.check_reset_code(db, email, body.code.strip())
    if not is_valid:
        raise HTTPException(status_code=400, detail=error)

    user = reset_codes.find_user(db, email)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")

    reset_codes.reset_password(db, reset, user, body.new_password)
    return {"success": True, "message": "Password reset successfully"}

# recorder/security.py
from datetime import timedelta
from typing import Optional
import jwt  # PyJWT
from fastapi import HTTPException, Depends, Header
from fastapi.security.utils import get_authorization_scheme_param
from passlib.context import CryptContext
from pydantic import EmailStr, TypeAdapter, ValidationError
from sqlmodel import Session, select
from .config import get_settings
from .db import get_session
from .models import User, utcnow

settings = get_settings()
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
_email_adapter = TypeAdapter(EmailStr)

def normalize_email(value: Optional[str]) -> str:
    """Trimmed, lower-cased address; 400 when it is not a valid email."""
    email = (value or "").strip().lower()
    try:
        _email_adapter.validate_python(email)
    except ValidationError:
        raise HTTPException(status_code=400, detail="Invalid email")
    return email

def hash_password(password: str) -> str:
    return pwd_context.hash(password)

def verify_password(password: str, hashed: str) -> bool:
    return pwd_context.verify(password, hashed)

def create_access_token(sub: str, expires_minutes: Optional[int] = None) -> str:
    exp_mins = expires_minutes or settings.jwt_expires_minutes
    payload = {
        "sub": sub,
        "iat": int(utcnow().timestamp()),
        "exp": int((utcnow() + timedelta(minutes=exp_mins)).timestamp()),
        "iss": "hall-recorder",
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_alg)

def _decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_alg])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Session expired. Please sign in again.")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Unauthorized")

def require_user(
    authorization: Optional[str] = Header(default=None, alias="Authorization"),
    db: Session = Depends(get_session),
) -> User:
    """Resolve the bearer token to a User row, 401 otherwise."""
    if not authorization:
        raise HTTPException(status_code=401, detail="No authorization header")

    scheme, token = get_authorization_scheme_param(authorization)
    if scheme.lower() != "bearer" or not token:
        raise HTTPException(status_code=401, detail="Unauthorized")

    payload = _decode_token(token)
    user = db.exec(select(User).where(User.email == payload.get("sub"))).first()
    if not user:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return user

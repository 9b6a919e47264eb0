# recorder/routers/dashboard.py
from datetime import date
from typing import Optional
from fastapi import APIRouter, HTTPException, Depends
from sqlmodel import Session
from ..db import get_session
from ..models import User
from ..security import require_user
from ..services.stats import dashboard_stats

router = APIRouter(prefix="/dashboard", tags=["dashboard"])

@router.get("/stats")
def stats(
    start: Optional[date] = None,
    end: Optional[date] = None,
    user: User = Depends(require_user),
    db: Session = Depends(get_session),
):
    if start and end and start > end:
        raise HTTPException(status_code=400, detail="start must be before end")
    return dashboard_stats(db, user.id, start=start, end=end)

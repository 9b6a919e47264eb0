# recorder/services/stats.py
from datetime import date, datetime, time, timezone
from typing import Optional
from sqlmodel import Session, select, col
from ..models import Meeting, UserSubscription, as_utc, utcnow

def _minutes(seconds: int) -> int:
    return round(seconds / 60)

def cycle_start(sub: Optional[UserSubscription], now: Optional[datetime] = None) -> datetime:
    """Usage counts from the billing cycle start, or the first of the month when unknown."""
    if sub and sub.billing_cycle_start:
        return as_utc(sub.billing_cycle_start)
    now = as_utc(now) if now else utcnow()
    return datetime(now.year, now.month, 1, tzinfo=timezone.utc)

def dashboard_stats(
    session: Session,
    user_id: int,
    start: Optional[date] = None,
    end: Optional[date] = None,
    now: Optional[datetime] = None,
) -> dict:
    sub = session.exec(select(UserSubscription).where(UserSubscription.user_id == user_id)).first()
    meetings = session.exec(
        select(Meeting).where(Meeting.user_id == user_id).order_by(col(Meeting.created_at).desc())
    ).all()

    total_seconds = sum(m.duration or 0 for m in meetings)

    since = cycle_start(sub, now)
    cycle_meetings = [m for m in meetings if as_utc(m.created_at) >= since]
    cycle_seconds = sum(m.duration or 0 for m in cycle_meetings)

    if start or end:
        lo = datetime.combine(start, time.min, tzinfo=timezone.utc) if start else None
        hi = datetime.combine(end, time.max, tzinfo=timezone.utc) if end else None
        period = [
            m for m in meetings
            if (lo is None or as_utc(m.created_at) >= lo) and (hi is None or as_utc(m.created_at) <= hi)
        ]
    else:
        period = cycle_meetings
    period_seconds = sum(m.duration or 0 for m in period)

    quota = sub.minutes_quota if sub else None
    cycle_minutes = _minutes(cycle_seconds)

    return {
        "total_meetings": len(meetings),
        "total_minutes": _minutes(total_seconds),
        "cycle_meetings": len(cycle_meetings),
        "cycle_minutes": cycle_minutes,
        "period_meetings": len(period),
        "period_minutes": _minutes(period_seconds),
        "average_duration": _minutes(period_seconds // len(period)) if period else 0,
        "recent_activity": [
            {"id": m.id, "title": m.title, "duration": m.duration, "created_at": m.created_at.isoformat()}
            for m in meetings[:5]
        ],
        "quota": {
            "plan_type": sub.plan_type if sub else None,
            "minutes_quota": quota,
            "minutes_used": cycle_minutes,
            "minutes_remaining": max(quota - cycle_minutes, 0) if quota is not None else None,
        },
    }

"""
Meeting categories: per-user names with a badge color.

Badge text color is picked from the perceived luminance of the background so
labels stay readable on any palette color.
"""
from typing import Optional, Tuple
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select
from ..models import MeetingCategory, Meeting, DEFAULT_CATEGORY_COLOR

COLOR_PALETTE = [
    "#F97316", "#EC4899", "#6366F1", "#10B981", "#FACC15",
    "#0EA5E9", "#F97373", "#8B5CF6", "#FB923C", "#14B8A6",
]

DARK_TEXT = "#1F2937"
LIGHT_TEXT = "#FFFFFF"
LUMINANCE_THRESHOLD = 0.62

EMPTY_NAME_ERROR = "Name cannot be empty"
DUPLICATE_NAME_ERROR = "A category with this name already exists"

def normalize_hex(hex_color: Optional[str]) -> str:
    """Six hex digits without the leading #; 3-digit forms are expanded."""
    clean = (hex_color or "").replace("#", "").strip()
    if len(clean) == 3:
        clean = "".join(c * 2 for c in clean)
    if len(clean) != 6:
        clean = clean.ljust(6, "0")[:6]
    return clean

def _rgb(hex_color: str) -> Tuple[int, int, int]:
    try:
        value = int(normalize_hex(hex_color), 16)
    except ValueError:
        value = 0
    return (value >> 16) & 255, (value >> 8) & 255, value & 255

def with_alpha(hex_color: str, alpha: float) -> str:
    r, g, b = _rgb(hex_color)
    return f"rgba({r}, {g}, {b}, {alpha})"

def luminance(hex_color: str) -> float:
    r, g, b = _rgb(hex_color)
    return (0.299 * r + 0.587 * g + 0.114 * b) / 255

def readable_text_color(hex_color: str) -> str:
    return DARK_TEXT if luminance(hex_color) > LUMINANCE_THRESHOLD else LIGHT_TEXT

def badge_style(hex_color: Optional[str]) -> dict:
    if not hex_color:
        # uncategorized
        return {
            "background": "linear-gradient(135deg, rgba(248,113,113,0.18) 0%, rgba(248,113,113,0.08) 100%)",
            "color": "#B91C1C",
            "border_color": "rgba(248,113,113,0.35)",
            "box_shadow": None,
        }
    return {
        "background": hex_color,
        "color": readable_text_color(hex_color),
        "border_color": with_alpha(hex_color, 0.4),
        "box_shadow": f"0 6px 16px {with_alpha(hex_color, 0.28)}",
    }

def category_payload(category: MeetingCategory) -> dict:
    color = category.color or DEFAULT_CATEGORY_COLOR
    return {
        "id": category.id,
        "name": category.name,
        "color": color,
        "created_at": category.created_at.isoformat() if category.created_at else None,
        "badge": badge_style(color),
    }

def list_categories(session: Session, user_id: int) -> list[MeetingCategory]:
    return session.exec(
        select(MeetingCategory).where(MeetingCategory.user_id == user_id).order_by(MeetingCategory.name)
    ).all()

def get_category(session: Session, user_id: int, category_id: int) -> Optional[MeetingCategory]:
    return session.exec(
        select(MeetingCategory).where(MeetingCategory.id == category_id, MeetingCategory.user_id == user_id)
    ).first()

def create_category(session: Session, user_id: int, name: str, color: Optional[str] = None) -> Tuple[Optional[MeetingCategory], Optional[str]]:
    """
    Create a category
    Returns: (category, error_message)
    """
    trimmed = (name or "").strip()
    if not trimmed:
        return None, EMPTY_NAME_ERROR

    existing = session.exec(
        select(MeetingCategory).where(MeetingCategory.user_id == user_id, MeetingCategory.name == trimmed)
    ).first()
    if existing:
        return None, DUPLICATE_NAME_ERROR

    category = MeetingCategory(
        user_id=user_id,
        name=trimmed,
        color="#" + normalize_hex(color or DEFAULT_CATEGORY_COLOR).upper(),
    )
    session.add(category)
    try:
        session.commit()
    except IntegrityError:
        session.rollback()
        return None, DUPLICATE_NAME_ERROR
    session.refresh(category)
    return category, None

def update_color(session: Session, category: MeetingCategory, color: str) -> MeetingCategory:
    category.color = "#" + normalize_hex(color).upper()
    session.add(category)
    session.commit()
    session.refresh(category)
    return category

def delete_category(session: Session, category: MeetingCategory) -> int:
    """Delete a category; its meetings become uncategorized. Returns how many were detached."""
    meetings = session.exec(select(Meeting).where(Meeting.category_id == category.id)).all()
    for m in meetings:
        m.category_id = None
        session.add(m)
    session.flush()
    session.delete(category)
    session.commit()
    return len(meetings)

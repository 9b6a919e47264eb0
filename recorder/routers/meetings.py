# recorder/routers/meetings.py
import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional
from anyio import from_thread
from fastapi import APIRouter, HTTPException, Depends, Query
from pydantic import BaseModel
from sqlalchemy import delete
from sqlmodel import Session, select, col
from ..db import get_session
from ..models import CustomDictionary, Meeting, MeetingCategory, SummaryMode, User, utcnow
from ..security import require_user
from ..services import dictionary
from ..services.categories import badge_style, get_category
from ..services.pagination import ITEMS_PER_PAGE, clamp_page, page_slice, pagination_range, total_pages
from ..services.summarizer import summarize

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/meetings", tags=["meetings"])

class MeetingUpdate(BaseModel):
    title: Optional[str] = None
    summary: Optional[str] = None
    display_transcript: Optional[str] = None

class CategoryAssign(BaseModel):
    category_id: Optional[int] = None

class RegenerateBody(BaseModel):
    mode: SummaryMode

class WordCorrectionBody(BaseModel):
    selected_word: str
    replacement: str
    replace_all: bool = True
    save_to_dictionary: bool = False
    target: str = "summary"  # summary|transcript

class DictionaryEntryBody(BaseModel):
    incorrect_word: str
    correct_word: str

class ApplyDictionaryBody(BaseModel):
    text: str

def _meeting_payload(m: Meeting, category: Optional[MeetingCategory] = None, full: bool = False) -> dict:
    data = {
        "id": m.id,
        "title": m.title,
        "duration": m.duration,
        "summary_mode": m.summary_mode,
        "category_id": m.category_id,
        "category": (
            {"id": category.id, "name": category.name, "color": category.color, "badge": badge_style(category.color)}
            if category else None
        ),
        "created_at": m.created_at.isoformat(),
        "updated_at": m.updated_at.isoformat() if m.updated_at else None,
    }
    if full:
        data.update({
            "summary": m.summary,
            "summary_short": m.summary_short,
            "summary_detailed": m.summary_detailed,
            "transcript": m.transcript,
            "display_transcript": m.display_transcript,
        })
    return data

def _get_meeting(db: Session, user: User, meeting_id: int) -> Meeting:
    meeting = db.exec(select(Meeting).where(Meeting.id == meeting_id, Meeting.user_id == user.id)).first()
    if not meeting:
        raise HTTPException(status_code=404, detail="Meeting not found")
    return meeting

def _categories_by_id(db: Session, user: User) -> dict[int, MeetingCategory]:
    rows = db.exec(select(MeetingCategory).where(MeetingCategory.user_id == user.id)).all()
    return {c.id: c for c in rows}

@router.get("")
def list_meetings(
    title: Optional[str] = None,
    date_filter: Optional[date] = Query(default=None, alias="date"),
    category_id: str = "all",
    page: int = 1,
    user: User = Depends(require_user),
    db: Session = Depends(get_session),
):
    """Filtered, paginated meeting history (newest first)."""
    statement = select(Meeting).where(Meeting.user_id == user.id)
    if title and title.strip():
        statement = statement.where(col(Meeting.title).ilike(f"%{title.strip()}%"))
    if date_filter:
        day = datetime.combine(date_filter, time.min, tzinfo=timezone.utc)
        statement = statement.where(Meeting.created_at >= day, Meeting.created_at < day + timedelta(days=1))
    if category_id == "none":
        statement = statement.where(col(Meeting.category_id).is_(None))
    elif category_id != "all":
        try:
            statement = statement.where(Meeting.category_id == int(category_id))
        except ValueError:
            raise HTTPException(status_code=400, detail="Invalid category filter")

    meetings = db.exec(statement.order_by(col(Meeting.created_at).desc())).all()
    pages = total_pages(len(meetings))
    current = clamp_page(page, pages)
    categories = _categories_by_id(db, user)

    return {
        "items": [_meeting_payload(m, categories.get(m.category_id)) for m in page_slice(meetings, current)],
        "page": current,
        "per_page": ITEMS_PER_PAGE,
        "total": len(meetings),
        "total_pages": pages,
        "pagination": pagination_range(current, pages),
    }

# --- Custom dictionary (declared before /{meeting_id}) ---

@router.get("/dictionary")
def get_dictionary(user: User = Depends(require_user), db: Session = Depends(get_session)):
    return [
        {"id": e.id, "incorrect_word": e.incorrect_word, "correct_word": e.correct_word}
        for e in dictionary.list_entries(db, user.id)
    ]

@router.post("/dictionary")
def add_dictionary_entry(body: DictionaryEntryBody, user: User = Depends(require_user), db: Session = Depends(get_session)):
    if not body.incorrect_word.strip() or not body.correct_word.strip():
        raise HTTPException(status_code=400, detail="Both words are required")
    entry = dictionary.upsert_entry(db, user.id, body.incorrect_word, body.correct_word.strip())
    return {"id": entry.id, "incorrect_word": entry.incorrect_word, "correct_word": entry.correct_word}

@router.delete("/dictionary/{entry_id}")
def delete_dictionary_entry(entry_id: int, user: User = Depends(require_user), db: Session = Depends(get_session)):
    result = db.execute(
        delete(CustomDictionary).where(CustomDictionary.id == entry_id, CustomDictionary.user_id == user.id)
    )
    db.commit()
    if not result.rowcount:
        raise HTTPException(status_code=404, detail="Entry not found")
    return {"success": True}

@router.post("/dictionary/apply")
def apply_dictionary(body: ApplyDictionaryBody, user: User = Depends(require_user), db: Session = Depends(get_session)):
    return {"text": dictionary.apply_user_dictionary(db, user.id, body.text)}

# --- Single meeting ---

@router.get("/{meeting_id}")
def get_meeting(meeting_id: int, user: User = Depends(require_user), db: Session = Depends(get_session)):
    meeting = _get_meeting(db, user, meeting_id)
    category = get_category(db, user.id, meeting.category_id) if meeting.category_id else None
    return _meeting_payload(meeting, category, full=True)

@router.patch("/{meeting_id}")
def update_meeting(meeting_id: int, body: MeetingUpdate, user: User = Depends(require_user), db: Session = Depends(get_session)):
    meeting = _get_meeting(db, user, meeting_id)
    if body.title is not None:
        if not body.title.strip():
            raise HTTPException(status_code=400, detail="Title cannot be empty")
        meeting.title = body.title.strip()
    if body.summary is not None:
        meeting.summary = body.summary
    if body.display_transcript is not None:
        meeting.display_transcript = body.display_transcript

    meeting.updated_at = utcnow()
    db.add(meeting)
    db.commit()
    db.refresh(meeting)
    return _meeting_payload(meeting, full=True)

@router.delete("/{meeting_id}")
def delete_meeting(meeting_id: int, user: User = Depends(require_user), db: Session = Depends(get_session)):
    meeting = _get_meeting(db, user, meeting_id)
    db.delete(meeting)
    db.commit()
    return {"success": True}

@router.put("/{meeting_id}/category")
def assign_category(meeting_id: int, body: CategoryAssign, user: User = Depends(require_user), db: Session = Depends(get_session)):
    """Assign a category, or clear it with category_id=null."""
    meeting = _get_meeting(db, user, meeting_id)
    category = None
    if body.category_id is not None:
        category = get_category(db, user.id, body.category_id)
        if not category:
            raise HTTPException(status_code=404, detail="Category not found")

    meeting.category_id = category.id if category else None
    meeting.updated_at = utcnow()
    db.add(meeting)
    db.commit()
    db.refresh(meeting)
    return _meeting_payload(meeting, category)

@router.post("/{meeting_id}/regenerate-summary")
def regenerate_summary(meeting_id: int, body: RegenerateBody, user: User = Depends(require_user), db: Session = Depends(get_session)):
    meeting = _get_meeting(db, user, meeting_id)
    transcript = meeting.transcript or meeting.display_transcript
    if not transcript:
        raise HTTPException(status_code=400, detail="No transcript available for this meeting")

    # sync route runs in a worker thread; the LLM call goes back to the event loop
    summary = from_thread.run(summarize, transcript, meeting.title, body.mode)
    if body.mode == SummaryMode.DETAILED:
        meeting.summary_detailed = summary
    else:
        meeting.summary_short = summary
    meeting.summary = summary
    meeting.summary_mode = body.mode.value
    meeting.updated_at = utcnow()
    db.add(meeting)
    db.commit()
    db.refresh(meeting)
    logger.info("Regenerated %s summary for meeting %s", body.mode.value, meeting.id)
    return _meeting_payload(meeting, full=True)

@router.post("/{meeting_id}/word-correction")
def word_correction(meeting_id: int, body: WordCorrectionBody, user: User = Depends(require_user), db: Session = Depends(get_session)):
    meeting = _get_meeting(db, user, meeting_id)
    word, replacement = body.selected_word.strip(), body.replacement.strip()
    if not word or not replacement:
        raise HTTPException(status_code=400, detail="Word and replacement are required")
    if body.target not in ("summary", "transcript"):
        raise HTTPException(status_code=400, detail="Invalid target")

    if body.target == "summary":
        meeting.summary = dictionary.replace_word(meeting.summary or "", word, replacement, body.replace_all)
    else:
        source = meeting.display_transcript or meeting.transcript or ""
        meeting.display_transcript = dictionary.replace_word(source, word, replacement, body.replace_all)

    if body.save_to_dictionary:
        dictionary.upsert_entry(db, user.id, word, replacement)

    meeting.updated_at = utcnow()
    db.add(meeting)
    db.commit()
    db.refresh(meeting)
    return _meeting_payload(meeting, full=True)

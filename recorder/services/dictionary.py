# recorder/services/dictionary.py
import re
from typing import Iterable
from sqlmodel import Session, select
from ..models import CustomDictionary, utcnow

def _word_pattern(word: str) -> re.Pattern:
    return re.compile(rf"\b{re.escape(word)}\b", re.IGNORECASE)

def replace_word(text: str, word: str, replacement: str, replace_all: bool = True) -> str:
    """Whole-word, case-insensitive replacement; otherwise only the first exact occurrence."""
    if not text or not word:
        return text or ""
    if replace_all:
        return _word_pattern(word).sub(lambda _m: replacement, text)
    return text.replace(word, replacement, 1)

def apply_corrections(text: str, entries: Iterable[tuple[str, str]]) -> str:
    corrected = text or ""
    for incorrect, correct in entries:
        corrected = replace_word(corrected, incorrect, correct, replace_all=True)
    return corrected

def list_entries(session: Session, user_id: int) -> list[CustomDictionary]:
    return session.exec(
        select(CustomDictionary)
        .where(CustomDictionary.user_id == user_id)
        .order_by(CustomDictionary.incorrect_word)
    ).all()

def apply_user_dictionary(session: Session, user_id: int, text: str) -> str:
    entries = list_entries(session, user_id)
    if not entries:
        return text
    return apply_corrections(text, ((e.incorrect_word, e.correct_word) for e in entries))

def upsert_entry(session: Session, user_id: int, incorrect_word: str, correct_word: str) -> CustomDictionary:
    key = incorrect_word.strip().lower()
    entry = session.exec(
        select(CustomDictionary).where(
            CustomDictionary.user_id == user_id,
            CustomDictionary.incorrect_word == key,
        )
    ).first()
    if entry:
        entry.correct_word = correct_word
        entry.updated_at = utcnow()
    else:
        entry = CustomDictionary(user_id=user_id, incorrect_word=key, correct_word=correct_word)
    session.add(entry)
    session.commit()
    session.refresh(entry)
    return entry

# recorder/db.py
import os
import logging
from pathlib import Path
from sqlmodel import SQLModel, create_engine, Session
from sqlalchemy import text

logger = logging.getLogger(__name__)

DATA_DIR = Path(__file__).resolve().parents[1] / "data"
DATA_DIR.mkdir(parents=True, exist_ok=True)
DB_PATH = DATA_DIR / "app.db"

DATABASE_URL = (os.getenv("DATABASE_URL") or "").strip()
ALLOW_SQLITE_FALLBACK = os.getenv("DB_ALLOW_SQLITE_FALLBACK", "1") == "1"

def _pg_url(url: str) -> str:
    if url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql+psycopg://", 1)
    elif url.startswith("postgresql://") and "+psycopg" not in url:
        url = url.replace("postgresql://", "postgresql+psycopg://", 1)
    return url

def _try_pg_engine():
    if not DATABASE_URL:
        return None
    try:
        eng = create_engine(_pg_url(DATABASE_URL), pool_pre_ping=True)
        with eng.connect() as conn:
            conn.execute(text("SELECT 1"))
        return eng
    except Exception as e:
        logger.error("Postgres connect failed: %r", e)
        if not ALLOW_SQLITE_FALLBACK:
            raise
        return None

_engine = _try_pg_engine() or create_engine(
    f"sqlite:///{DB_PATH}", echo=False, connect_args={"check_same_thread": False}
)

def init_db(engine=None):
    from . import models  # noqa: F401  register tables
    SQLModel.metadata.create_all(engine or _engine)

def get_session():
    with Session(_engine) as session:
        yield session

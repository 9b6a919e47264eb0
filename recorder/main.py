import logging
from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

load_dotenv()

from .config import get_settings
from .db import init_db
from .routers import auth, billing, tracking, emails, support, meetings, categories, dashboard
from .routers import settings as settings_router

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)
settings = get_settings()

app = FastAPI(title="HALL Recorder")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.on_event("startup")
def on_startup():
    init_db()
    logger.info("Startup complete (env=%s)", settings.env)

app.include_router(auth.router)
app.include_router(billing.router)
app.include_router(tracking.router)
app.include_router(emails.router)
app.include_router(support.router)
app.include_router(meetings.router)
app.include_router(categories.router)
app.include_router(dashboard.router)
app.include_router(settings_router.router)

@app.get("/healthz")
def healthz():
    return {"ok": True}

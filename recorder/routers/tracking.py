# recorder/routers/tracking.py
import logging
from typing import Optional
from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session
from ..db import get_session
from ..services.tracking import PIXEL_PNG, PIXEL_HEADERS, client_ip, record_open

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/track", tags=["tracking"])

def _pixel() -> Response:
    return Response(content=PIXEL_PNG, media_type="image/png", headers=PIXEL_HEADERS)

@router.head("/open")
def open_pixel_head():
    return Response(status_code=200, media_type="image/png", headers=PIXEL_HEADERS)

@router.get("/open")
def open_pixel(
    request: Request,
    id: Optional[str] = None,
    recipient: Optional[str] = None,
    db: Session = Depends(get_session),
):
    """Email-open pixel. Always answers with the image, whatever happens behind it."""
    if not id:
        return _pixel()

    peer = request.client.host if request.client else None
    try:
        record_open(
            db,
            tracking_id=id,
            recipient=recipient,
            ip_address=client_ip(request.headers, peer),
            user_agent=request.headers.get("user-agent"),
        )
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Error tracking email open for %s", id)
    return _pixel()

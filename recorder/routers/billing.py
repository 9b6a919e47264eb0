# recorder/routers/billing.py
import logging
import stripe
from fastapi import APIRouter, HTTPException, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlmodel import Session
from ..db import get_session
from ..models import User
from ..security import require_user
from ..services import billing
from ..services.billing import BillingError

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/billing", tags=["billing"])

class ChangePlanBody(BaseModel):
    new_plan: str = ""

class PortalBody(BaseModel):
    return_url: str = ""

@router.get("/subscription")
def get_subscription(user: User = Depends(require_user), db: Session = Depends(get_session)):
    sub = billing.get_user_subscription(db, user.id)
    if not sub:
        raise HTTPException(status_code=404, detail="Subscription not found")
    return billing.subscription_view(sub)

@router.post("/change-plan")
def change_plan(body: ChangePlanBody, user: User = Depends(require_user), db: Session = Depends(get_session)):
    try:
        return billing.change_plan(db, user.id, body.new_plan)
    except BillingError as e:
        logger.warning("Plan change refused for user %s: %s", user.id, e.message)
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except stripe.StripeError as e:
        logger.exception("Stripe error while changing plan for user %s", user.id)
        raise HTTPException(status_code=500, detail=e.user_message or str(e))

@router.get("/invoices")
def get_invoices(user: User = Depends(require_user), db: Session = Depends(get_session)):
    customer_id = billing.get_customer_id(db, user.id)
    if not customer_id:
        return {"error": "Stripe customer not found", "invoices": []}
    try:
        return {"invoices": billing.list_invoices(customer_id)}
    except stripe.StripeError as e:
        logger.exception("Stripe error while listing invoices for user %s", user.id)
        return JSONResponse(status_code=500, content={"error": str(e), "invoices": []})

@router.post("/portal")
def billing_portal(body: PortalBody, user: User = Depends(require_user), db: Session = Depends(get_session)):
    if not body.return_url.strip():
        raise HTTPException(status_code=400, detail="Missing or invalid return_url")

    customer_id = billing.get_customer_id(db, user.id)
    if not customer_id:
        raise HTTPException(status_code=404, detail="No Stripe customer found. Subscribe to a plan first.")
    try:
        return {"url": billing.create_portal_session(customer_id, body.return_url)}
    except stripe.StripeError as e:
        logger.exception("Billing portal error for user %s", user.id)
        raise HTTPException(status_code=500, detail=str(e))

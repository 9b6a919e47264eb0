"""
Stripe billing for the two subscription plans.

Upgrades apply immediately with proration; downgrades switch the Stripe price
without proration and are recorded as pending until the next billing cycle.
"""
import logging
from datetime import datetime, timezone
from typing import Optional
import stripe
from sqlmodel import Session, select
from ..config import get_settings
from ..models import PlanType, PLAN_LABELS, UserSubscription, StripeCustomer, StripeSubscription, utcnow

logger = logging.getLogger(__name__)
settings = get_settings()

stripe.api_key = settings.stripe_secret_key

class BillingError(Exception):
    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.message = message
        self.status_code = status_code

def plan_to_price_id() -> dict[str, str]:
    return {
        PlanType.STARTER.value: settings.price_id_starter,
        PlanType.UNLIMITED.value: settings.price_id_unlimited,
    }

def minutes_quota_for(plan: str) -> Optional[int]:
    return settings.starter_minutes_quota if plan == PlanType.STARTER.value else None

def plan_label(plan: str) -> str:
    try:
        return PLAN_LABELS[PlanType(plan)]
    except ValueError:
        return plan

def _ts(seconds: Optional[int]) -> Optional[datetime]:
    if not seconds:
        return None
    return datetime.fromtimestamp(int(seconds), tz=timezone.utc)

def _period(subscription) -> tuple[Optional[int], Optional[int]]:
    """Billing period of a subscription; newer API versions report it per item."""
    start = subscription.get("current_period_start")
    end = subscription.get("current_period_end")
    if start is None or end is None:
        items = (subscription.get("items") or {}).get("data") or []
        if items:
            start = start if start is not None else items[0].get("current_period_start")
            end = end if end is not None else items[0].get("current_period_end")
    return start, end

def get_user_subscription(session: Session, user_id: int) -> Optional[UserSubscription]:
    return session.exec(select(UserSubscription).where(UserSubscription.user_id == user_id)).first()

def get_customer_id(session: Session, user_id: int) -> Optional[str]:
    customer = session.exec(
        select(StripeCustomer).where(
            StripeCustomer.user_id == user_id,
            StripeCustomer.deleted_at == None,  # noqa: E711
        )
    ).first()
    return customer.customer_id if customer else None

def change_plan(session: Session, user_id: int, new_plan: str) -> dict:
    if new_plan not in plan_to_price_id():
        raise BillingError("Invalid plan specified")

    sub = get_user_subscription(session, user_id)
    if not sub:
        raise BillingError("Subscription not found", 404)
    if not sub.stripe_customer_id:
        raise BillingError("No Stripe customer found")

    current_plan = sub.plan_type
    logger.info("User %s: current plan=%s, requested plan=%s", user_id, current_plan, new_plan)

    if sub.pending_downgrade_plan:
        if sub.pending_downgrade_plan == new_plan:
            raise BillingError("A change to this plan is already scheduled")
        if new_plan == current_plan:
            logger.info("Cancelling pending downgrade to %s", sub.pending_downgrade_plan)
            sub.pending_downgrade_plan = None
            sub.updated_at = utcnow()
            session.add(sub)
            session.commit()
            return {
                "success": True,
                "type": "cancel",
                "message": f"Plan change cancelled. You stay on the {plan_label(current_plan)} plan.",
            }

    if current_plan == new_plan:
        raise BillingError("Already on this plan")

    is_upgrade = current_plan == PlanType.STARTER.value and new_plan == PlanType.UNLIMITED.value
    is_downgrade = current_plan == PlanType.UNLIMITED.value and new_plan == PlanType.STARTER.value
    if not (is_upgrade or is_downgrade):
        raise BillingError("Invalid plan change")

    subscriptions = stripe.Subscription.list(customer=sub.stripe_customer_id, status="active", limit=1)
    if not subscriptions["data"]:
        raise BillingError("No active subscription found")

    subscription = subscriptions["data"][0]
    item_id = subscription["items"]["data"][0]["id"]
    new_price_id = plan_to_price_id()[new_plan]

    if is_upgrade:
        logger.info("Processing upgrade %s -> %s for user %s", current_plan, new_plan, user_id)
        updated = stripe.Subscription.modify(
            subscription["id"],
            items=[{"id": item_id, "price": new_price_id}],
            proration_behavior="create_prorations",
        )
        period_start, period_end = _period(updated)

        sub.plan_type = new_plan
        sub.minutes_quota = minutes_quota_for(new_plan)
        sub.stripe_price_id = new_price_id
        sub.billing_cycle_start = _ts(period_start)
        sub.billing_cycle_end = _ts(period_end)
        sub.updated_at = utcnow()
        session.add(sub)

        stripe_row = session.exec(
            select(StripeSubscription).where(StripeSubscription.customer_id == sub.stripe_customer_id)
        ).first()
        if stripe_row:
            stripe_row.price_id = new_price_id
            stripe_row.current_period_start = period_start
            stripe_row.current_period_end = period_end
            stripe_row.updated_at = utcnow()
            session.add(stripe_row)
        session.commit()

        return {
            "success": True,
            "type": "upgrade",
            "message": f"Switched to the {plan_label(new_plan)} plan immediately. Stripe applied a prorated charge.",
        }

    logger.info("Processing downgrade %s -> %s for user %s", current_plan, new_plan, user_id)
    stripe.Subscription.modify(
        subscription["id"],
        items=[{"id": item_id, "price": new_price_id}],
        proration_behavior="none",
        billing_cycle_anchor="unchanged",
    )
    sub.pending_downgrade_plan = new_plan
    sub.updated_at = utcnow()
    session.add(sub)
    session.commit()

    _, period_end = _period(subscription)
    effective = _ts(period_end)
    return {
        "success": True,
        "type": "downgrade",
        "message": (
            f"Your change to the {plan_label(new_plan)} plan takes effect on "
            f"{effective.strftime('%B %d, %Y') if effective else 'your next billing date'}."
        ),
        "effective_date": effective.isoformat() if effective else None,
    }

def format_invoice(invoice) -> dict:
    lines = (invoice.get("lines") or {}).get("data") or []
    return {
        "id": invoice["id"],
        "number": invoice.get("number") or invoice["id"],
        "amount": (invoice.get("total") or 0) / 100,
        "currency": (invoice.get("currency") or "").upper(),
        "status": invoice.get("status"),
        "created": invoice.get("created"),
        "invoice_pdf": invoice.get("invoice_pdf"),
        "hosted_invoice_url": invoice.get("hosted_invoice_url"),
        "description": (lines[0].get("description") if lines else None) or "Subscription",
        "period_start": invoice.get("period_start"),
        "period_end": invoice.get("period_end"),
    }

def list_invoices(customer_id: str, limit: int = 100) -> list[dict]:
    invoices = stripe.Invoice.list(customer=customer_id, limit=limit)
    return [format_invoice(inv) for inv in invoices["data"]]

def create_portal_session(customer_id: str, return_url: str) -> str:
    session = stripe.billing_portal.Session.create(customer=customer_id, return_url=return_url)
    logger.info("Billing portal session created: %s", session["id"])
    return session["url"]

def subscription_view(sub: UserSubscription) -> dict:
    remaining = None
    if sub.minutes_quota is not None:
        remaining = max(sub.minutes_quota - (sub.minutes_used or 0), 0)
    return {
        "plan_type": sub.plan_type,
        "plan_label": plan_label(sub.plan_type),
        "minutes_quota": sub.minutes_quota,
        "minutes_used": sub.minutes_used,
        "minutes_remaining": remaining,
        "pending_downgrade_plan": sub.pending_downgrade_plan,
        "billing_cycle_start": sub.billing_cycle_start.isoformat() if sub.billing_cycle_start else None,
        "billing_cycle_end": sub.billing_cycle_end.isoformat() if sub.billing_cycle_end else None,
    }

"""Subscription plan change, invoices and billing portal tests (Stripe stubbed)."""

from datetime import datetime, timezone

import pytest
import stripe

from recorder.config import get_settings
from recorder.models import StripeCustomer, StripeSubscription, UserSubscription
from recorder.services import billing

settings = get_settings()

PERIOD_START = 1735689600  # 2025-01-01
PERIOD_END = 1738368000    # 2025-02-01


def _stripe_subscription(price_id: str) -> dict:
    return {
        "id": "sub_123",
        "current_period_start": PERIOD_START,
        "current_period_end": PERIOD_END,
        "items": {"data": [{"id": "si_1", "price": {"id": price_id}}]},
    }


@pytest.fixture()
def fake_stripe(monkeypatch):
    calls = {"list": [], "modify": []}
    state = {"active": [_stripe_subscription(settings.price_id_starter)]}

    def fake_list(**kwargs):
        calls["list"].append(kwargs)
        return {"data": state["active"]}

    def fake_modify(subscription_id, **kwargs):
        calls["modify"].append((subscription_id, kwargs))
        return _stripe_subscription(kwargs["items"][0]["price"])

    monkeypatch.setattr(stripe.Subscription, "list", fake_list)
    monkeypatch.setattr(stripe.Subscription, "modify", fake_modify)
    return calls, state


def _subscribe(session, user, plan="starter", pending=None, customer="cus_1"):
    sub = UserSubscription(
        user_id=user.id,
        plan_type=plan,
        minutes_quota=600 if plan == "starter" else None,
        stripe_customer_id=customer,
        pending_downgrade_plan=pending,
    )
    session.add(sub)
    if customer:
        session.add(StripeCustomer(user_id=user.id, customer_id=customer))
        session.add(StripeSubscription(customer_id=customer, subscription_id="sub_123"))
    session.commit()
    return sub


# ── Plan changes ─────────────────────────────────────────────────────────────


def test_change_plan_rejects_unknown_plan(client, auth_headers):
    response = client.post("/billing/change-plan", json={"new_plan": "gold"}, headers=auth_headers)
    assert response.status_code == 400
    assert response.json()["detail"] == "Invalid plan specified"


def test_change_plan_without_subscription(client, auth_headers):
    response = client.post("/billing/change-plan", json={"new_plan": "unlimited"}, headers=auth_headers)
    assert response.status_code == 404


def test_change_plan_without_customer(client, auth_headers, session, user):
    _subscribe(session, user, customer=None)
    response = client.post("/billing/change-plan", json={"new_plan": "unlimited"}, headers=auth_headers)
    assert response.status_code == 400
    assert response.json()["detail"] == "No Stripe customer found"


def test_change_plan_same_plan(client, auth_headers, session, user, fake_stripe):
    _subscribe(session, user, plan="starter")
    response = client.post("/billing/change-plan", json={"new_plan": "starter"}, headers=auth_headers)
    assert response.status_code == 400
    assert response.json()["detail"] == "Already on this plan"
    assert fake_stripe[0]["modify"] == []


def test_upgrade_applies_immediately_with_proration(client, auth_headers, session, user, fake_stripe):
    calls, _ = fake_stripe
    _subscribe(session, user, plan="starter")

    response = client.post("/billing/change-plan", json={"new_plan": "unlimited"}, headers=auth_headers)
    assert response.status_code == 200, response.text
    assert response.json()["type"] == "upgrade"

    sub_id, kwargs = calls["modify"][0]
    assert sub_id == "sub_123"
    assert kwargs["proration_behavior"] == "create_prorations"
    assert kwargs["items"] == [{"id": "si_1", "price": settings.price_id_unlimited}]
    assert calls["list"][0] == {"customer": "cus_1", "status": "active", "limit": 1}

    sub = billing.get_user_subscription(session, user.id)
    session.refresh(sub)
    assert sub.plan_type == "unlimited"
    assert sub.minutes_quota is None
    assert sub.stripe_price_id == settings.price_id_unlimited
    assert sub.billing_cycle_start == datetime(2025, 1, 1, tzinfo=timezone.utc)
    assert sub.billing_cycle_end == datetime(2025, 2, 1, tzinfo=timezone.utc)


def test_downgrade_is_scheduled(client, auth_headers, session, user, fake_stripe):
    calls, state = fake_stripe
    state["active"] = [_stripe_subscription(settings.price_id_unlimited)]
    _subscribe(session, user, plan="unlimited")

    response = client.post("/billing/change-plan", json={"new_plan": "starter"}, headers=auth_headers)
    assert response.status_code == 200, response.text
    body = response.json()
    assert body["type"] == "downgrade"
    assert body["effective_date"] == "2025-02-01T00:00:00+00:00"

    _, kwargs = calls["modify"][0]
    assert kwargs["proration_behavior"] == "none"
    assert kwargs["billing_cycle_anchor"] == "unchanged"

    sub = billing.get_user_subscription(session, user.id)
    session.refresh(sub)
    assert sub.plan_type == "unlimited"
    assert sub.pending_downgrade_plan == "starter"


def test_pending_downgrade_rules(client, auth_headers, session, user, fake_stripe):
    _subscribe(session, user, plan="unlimited", pending="starter")

    again = client.post("/billing/change-plan", json={"new_plan": "starter"}, headers=auth_headers)
    assert again.status_code == 400

    cancel = client.post("/billing/change-plan", json={"new_plan": "unlimited"}, headers=auth_headers)
    assert cancel.status_code == 200
    assert cancel.json()["type"] == "cancel"
    assert fake_stripe[0]["modify"] == []

    sub = billing.get_user_subscription(session, user.id)
    session.refresh(sub)
    assert sub.pending_downgrade_plan is None


def test_change_plan_without_active_stripe_subscription(client, auth_headers, session, user, fake_stripe):
    fake_stripe[1]["active"] = []
    _subscribe(session, user, plan="starter")
    response = client.post("/billing/change-plan", json={"new_plan": "unlimited"}, headers=auth_headers)
    assert response.status_code == 400
    assert response.json()["detail"] == "No active subscription found"


def test_stripe_error_maps_to_500(client, auth_headers, session, user, monkeypatch):
    def boom(**kwargs):
        raise stripe.StripeError("card declined")

    monkeypatch.setattr(stripe.Subscription, "list", boom)
    _subscribe(session, user, plan="starter")
    response = client.post("/billing/change-plan", json={"new_plan": "unlimited"}, headers=auth_headers)
    assert response.status_code == 500


# ── Invoices / portal ────────────────────────────────────────────────────────


def test_format_invoice_fallbacks():
    formatted = billing.format_invoice({
        "id": "in_1", "number": None, "total": 1999, "currency": "eur", "status": "paid",
        "created": 1, "lines": {"data": []},
    })
    assert formatted["number"] == "in_1"
    assert formatted["amount"] == 19.99
    assert formatted["currency"] == "EUR"
    assert formatted["description"] == "Subscription"


def test_invoices_without_customer(client, auth_headers):
    response = client.get("/billing/invoices", headers=auth_headers)
    assert response.status_code == 200
    assert response.json() == {"error": "Stripe customer not found", "invoices": []}


def test_invoices_listed(client, auth_headers, session, user, monkeypatch):
    _subscribe(session, user)
    seen = {}

    def fake_invoices(**kwargs):
        seen.update(kwargs)
        return {"data": [{
            "id": "in_9", "number": "A-9", "total": 2900, "currency": "usd", "status": "paid",
            "created": 1700000000, "invoice_pdf": "https://pdf", "hosted_invoice_url": "https://host",
            "lines": {"data": [{"description": "1 x Unlimited"}]},
            "period_start": 1, "period_end": 2,
        }]}

    monkeypatch.setattr(stripe.Invoice, "list", fake_invoices)
    response = client.get("/billing/invoices", headers=auth_headers)
    assert response.status_code == 200
    invoice = response.json()["invoices"][0]
    assert invoice["number"] == "A-9"
    assert invoice["amount"] == 29.0
    assert invoice["description"] == "1 x Unlimited"
    assert seen == {"customer": "cus_1", "limit": 100}


def test_portal_requires_return_url_and_customer(client, auth_headers, session, user, monkeypatch):
    assert client.post("/billing/portal", json={"return_url": ""}, headers=auth_headers).status_code == 400
    assert client.post("/billing/portal", json={"return_url": "https://app/x"}, headers=auth_headers).status_code == 404

    _subscribe(session, user)
    monkeypatch.setattr(
        stripe.billing_portal.Session, "create",
        lambda **kwargs: {"id": "bps_1", "url": f"https://billing.stripe.com/{kwargs['customer']}"},
    )
    response = client.post("/billing/portal", json={"return_url": "https://app/x"}, headers=auth_headers)
    assert response.status_code == 200
    assert response.json()["url"] == "https://billing.stripe.com/cus_1"


def test_portal_ignores_deleted_customer(client, auth_headers, session, user):
    session.add(StripeCustomer(user_id=user.id, customer_id="cus_old", deleted_at=datetime.now(timezone.utc)))
    session.commit()
    response = client.post("/billing/portal", json={"return_url": "https://app/x"}, headers=auth_headers)
    assert response.status_code == 404


def test_subscription_view(client, auth_headers, session, user):
    assert client.get("/billing/subscription", headers=auth_headers).status_code == 404

    session.add(UserSubscription(user_id=user.id, plan_type="starter", minutes_quota=600, minutes_used=450))
    session.commit()
    view = client.get("/billing/subscription", headers=auth_headers).json()
    assert view["plan_label"] == "Starter"
    assert view["minutes_remaining"] == 150
    assert view["pending_downgrade_plan"] is None

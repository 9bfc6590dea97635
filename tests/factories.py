"""
Provider payload builders and a fake Stripe client for tests
"""
import hashlib
import hmac
import json
import time
import uuid
from typing import Dict, Optional, Tuple

from exceptions import TransientProviderError
from models.billing_events import SubscriptionSnapshot

WEBHOOK_SECRET = "whsec_test_secret"
PERIOD = (1700000000, 1702592000)


def sign_payload(payload: str, secret: str = WEBHOOK_SECRET, timestamp: Optional[int] = None) -> str:
    """Stripe-Signature header value for the payload (t=<ts>,v1=<hmac-sha256>)."""
    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.{payload}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def subscription_object(
    sub_id: str = "sub_123",
    customer: str = "cus_123",
    status: str = "active",
    price_id: str = "price_pro_monthly",
    period: Tuple[int, int] = PERIOD,
    cancel_at_period_end: bool = False,
    trial: Optional[Tuple[int, int]] = None,
    canceled_at: Optional[int] = None,
    ended_at: Optional[int] = None,
    interval: str = "month",
) -> Dict:
    return {
        "id": sub_id,
        "object": "subscription",
        "customer": customer,
        "status": status,
        "items": {
            "object": "list",
            "data": [{
                "id": "si_1",
                "price": {"id": price_id, "lookup_key": None, "recurring": {"interval": interval}},
                "current_period_start": period[0],
                "current_period_end": period[1],
            }],
        },
        "trial_start": trial[0] if trial else None,
        "trial_end": trial[1] if trial else None,
        "cancel_at_period_end": cancel_at_period_end,
        "canceled_at": canceled_at,
        "ended_at": ended_at,
        "metadata": {},
    }


def checkout_session_object(
    session_id: str = "cs_123",
    user_id: str = "user_1",
    customer: str = "cus_123",
    subscription: Optional[str] = "sub_123",
    price_id: Optional[str] = None,
) -> Dict:
    session = {
        "id": session_id,
        "object": "checkout.session",
        "mode": "subscription",
        "client_reference_id": user_id,
        "customer": customer,
        "subscription": subscription,
    }
    if price_id:
        session["line_items"] = {"object": "list", "data": [{"id": "li_1", "price": {"id": price_id}}]}
    return session


def invoice_object(invoice_id: str = "in_123", subscription: str = "sub_123", customer: str = "cus_123") -> Dict:
    return {"id": invoice_id, "object": "invoice", "customer": customer, "subscription": subscription}


def event_payload(event_type: str, obj: Dict, event_id: Optional[str] = None, created: Optional[int] = None) -> Dict:
    return {
        "id": event_id or f"evt_{uuid.uuid4().hex[:16]}",
        "object": "event",
        "type": event_type,
        "created": created if created is not None else int(time.time()),
        "data": {"object": obj},
    }


def signed_request(event: Dict, secret: str = WEBHOOK_SECRET) -> Tuple[str, str]:
    payload = json.dumps(event)
    return payload, sign_payload(payload, secret)


class FakeStripeClient:
    """In-memory stand-in for StripeClient."""

    configured = True

    def __init__(self):
        self.subscriptions: Dict[str, Dict] = {}
        self.sessions: Dict[str, Dict] = {}
        self.fail = False
        self.calls = []

    def _check(self):
        if self.fail:
            raise TransientProviderError("Stripe is unavailable")

    def retrieve_subscription(self, subscription_id):
        self._check()
        self.calls.append(("retrieve_subscription", subscription_id))
        return SubscriptionSnapshot.from_stripe(self.subscriptions[subscription_id])

    def retrieve_checkout_session(self, session_id):
        self._check()
        self.calls.append(("retrieve_checkout_session", session_id))
        return self.sessions[session_id]

    def create_checkout_session(self, **kwargs):
        self._check()
        self.calls.append(("create_checkout_session", kwargs))
        return {"id": "cs_new", "url": "https://checkout.stripe.test/cs_new"}

    def create_portal_session(self, **kwargs):
        self._check()
        self.calls.append(("create_portal_session", kwargs))
        return "https://billing.stripe.test/session"

    def schedule_cancellation(self, subscription_id):
        self._check()
        self.calls.append(("schedule_cancellation", subscription_id))
        return {"id": subscription_id, "cancel_at": PERIOD[1]}

    def change_price(self, subscription_id, new_price_id):
        self._check()
        self.calls.append(("change_price", subscription_id, new_price_id))
        return {"id": subscription_id}

    def list_invoices(self, customer_id, starting_after=None, limit=10):
        self._check()
        self.calls.append(("list_invoices", customer_id, starting_after))
        return {"data": [{"id": "in_1"}], "has_more": False}

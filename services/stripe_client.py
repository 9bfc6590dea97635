"""
Billing provider client - thin wrapper over the Stripe SDK
"""
import logging
from typing import Any, Dict, List, Mapping, Optional

import stripe

from exceptions import TransientProviderError
from models.billing_events import SubscriptionSnapshot

logger = logging.getLogger(__name__)


def to_plain(obj: Any) -> Dict[str, Any]:
    """Convert an SDK object into plain nested dicts."""
    if hasattr(obj, "to_dict_recursive"):
        return obj.to_dict_recursive()
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    if isinstance(obj, Mapping):
        return dict(obj)
    raise TypeError(f"Cannot convert {type(obj).__name__} to a mapping")


class StripeClient:
    """
    Every call the service makes to the billing provider.
    SDK failures surface as TransientProviderError so callers can ask the
    provider to retry instead of committing partial state.
    """

    def __init__(self, api_key: Optional[str]):
        if api_key:
            stripe.api_key = api_key
        else:
            logger.warning("STRIPE_SECRET_KEY is not set. Stripe functionality will be unavailable.")
        self.configured = bool(api_key)

    def _call(self, description: str, func, *args, **kwargs):
        if not self.configured:
            raise TransientProviderError(f"Cannot {description}: STRIPE_SECRET_KEY is not set")
        try:
            return func(*args, **kwargs)
        except stripe.StripeError as e:
            logger.error(f"Stripe call failed ({description}): {e}")
            raise TransientProviderError(f"Failed to {description}: {e}") from e

    # Reconciliation re-fetches

    def retrieve_subscription(self, subscription_id: str) -> SubscriptionSnapshot:
        subscription = self._call(
            f"retrieve subscription {subscription_id}",
            stripe.Subscription.retrieve,
            subscription_id,
        )
        return SubscriptionSnapshot.from_stripe(to_plain(subscription))

    def retrieve_checkout_session(self, session_id: str) -> Dict[str, Any]:
        """Checkout session with its line items expanded."""
        session = self._call(
            f"retrieve checkout session {session_id}",
            stripe.checkout.Session.retrieve,
            session_id,
            expand=["line_items"],
        )
        return to_plain(session)

    # Request-scoped flows

    def create_checkout_session(
        self,
        user_id: str,
        price_id: str,
        success_url: str,
        cancel_url: str,
        customer_id: Optional[str] = None,
        email: Optional[str] = None,
        trial_period_days: Optional[int] = None,
    ) -> Dict[str, Any]:
        params: Dict[str, Any] = {
            "mode": "subscription",
            "payment_method_types": ["card"],
            "line_items": [{"price": price_id, "quantity": 1}],
            "client_reference_id": user_id,
            "success_url": success_url,
            "cancel_url": cancel_url,
            "metadata": {"user_id": user_id},
        }
        if customer_id:
            params["customer"] = customer_id
        elif email:
            params["customer_email"] = email
        if trial_period_days:
            params["subscription_data"] = {"trial_period_days": trial_period_days}
        session = self._call("create checkout session", stripe.checkout.Session.create, **params)
        return to_plain(session)

    def create_portal_session(
        self,
        customer_id: str,
        subscription_id: str,
        return_url: str,
        products: List[dict],
    ) -> str:
        configuration = self._call(
            "create billing portal configuration",
            stripe.billing_portal.Configuration.create,
            business_profile={"headline": "Manage your subscription"},
            features={
                "invoice_history": {"enabled": True},
                "payment_method_update": {"enabled": True},
                "subscription_update": {
                    "enabled": True,
                    "default_allowed_updates": ["price"],
                    "products": products,
                    "proration_behavior": "none",
                },
            },
        )
        portal_session = self._call(
            "create billing portal session",
            stripe.billing_portal.Session.create,
            customer=customer_id,
            return_url=return_url,
            configuration=configuration["id"],
            flow_data={
                "type": "subscription_update",
                "subscription_update": {"subscription": subscription_id},
                "after_completion": {"type": "redirect", "redirect": {"return_url": return_url}},
            },
        )
        return portal_session["url"]

    def schedule_cancellation(self, subscription_id: str) -> Dict[str, Any]:
        subscription = self._call(
            f"schedule cancellation of {subscription_id}",
            stripe.Subscription.modify,
            subscription_id,
            cancel_at_period_end=True,
        )
        return to_plain(subscription)

    def change_price(self, subscription_id: str, new_price_id: str) -> Dict[str, Any]:
        current = to_plain(self._call(
            f"retrieve subscription {subscription_id}",
            stripe.Subscription.retrieve,
            subscription_id,
        ))
        item_id = current["items"]["data"][0]["id"]
        subscription = self._call(
            f"change price of {subscription_id}",
            stripe.Subscription.modify,
            subscription_id,
            cancel_at_period_end=False,
            items=[{"id": item_id, "price": new_price_id}],
            proration_behavior="create_prorations",
        )
        return to_plain(subscription)

    def list_invoices(self, customer_id: str, starting_after: Optional[str] = None, limit: int = 10) -> Dict[str, Any]:
        params: Dict[str, Any] = {"customer": customer_id, "limit": limit}
        if starting_after:
            params["starting_after"] = starting_after
        invoices = self._call("list invoices", stripe.Invoice.list, **params)
        return to_plain(invoices)

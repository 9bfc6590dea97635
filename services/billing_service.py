"""
Billing Service - request-scoped Stripe flows around the reconciliation core

Nothing here changes a user's tier. Checkout, upgrade and cancellation only
ask the provider to act; the resulting webhook events do the local writes.
"""

import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from crud.subscription import SubscriptionRepository
from database_models import User
from exceptions import TransientProviderError
from services.stripe_client import StripeClient
from services.tier_catalog import TierCatalog
from services.trial_service import TrialService

logger = logging.getLogger(__name__)


def _error(code: str, status: int, message: str) -> dict:
    return {"error": code, "status": status, "message": message, "is_error": True}


class BillingService:
    """
    Service class for handling billing-related business logic.
    Returns normalized responses: {"data": ..., "is_error": False} or
    {"error": code, "status": http_status, "message": str, "is_error": True}
    """

    def __init__(self, db: AsyncSession, provider: StripeClient, catalog: TierCatalog):
        """
        Initialize the billing service.

        Args:
            db: AsyncSession instance for database operations
            provider: Stripe client
            catalog: Tier catalog used to validate prices
        """
        self.db = db
        self.provider = provider
        self.catalog = catalog
        self.subscriptions = SubscriptionRepository(db)
        self.trials = TrialService(db)

    async def create_checkout_session(self, user: User, price_id: str, with_trial: bool = False) -> dict:
        """
        Create a Stripe Checkout session for the user.

        Trial checkouts are refused once the user's trial is consumed; the
        reconciler marks consumption atomically when the trial actually starts.

        Args:
            user: Authenticated user
            price_id: Provider price to subscribe to
            with_trial: Request the one-time trial period
        """
        entry = self.catalog.get(price_id)
        if entry is None:
            return _error("unknown_price", 400, f"Price {price_id} is not offered")
        if self.catalog.is_student_price(entry.price_key) and not user.is_student:
            return _error("student_price_requires_student", 403, "Student prices require a student account")
        if with_trial and await self.trials.has_consumed_trial(user.id):
            return _error("trial_already_used", 409, "The free trial has already been used")

        frontend_url = settings.frontend_url or "http://localhost:3000"
        try:
            session = self.provider.create_checkout_session(
                user_id=user.id,
                price_id=price_id,
                success_url=f"{frontend_url}/payment-success?session_id={{CHECKOUT_SESSION_ID}}",
                cancel_url=f"{frontend_url}/cancel",
                customer_id=user.stripe_customer_id,
                email=user.email,
                trial_period_days=settings.trial_period_days if with_trial else None,
            )
        except TransientProviderError as e:
            logger.error(f"Failed to create checkout session: {e}")
            return _error("provider_error", 502, "Failed to create checkout session")
        return {"data": {"session_id": session.get("id"), "url": session.get("url")}, "is_error": False}

    async def create_billing_portal_session(self, user: User) -> dict:
        """
        Create a Stripe Billing Portal session limited to the user's product set
        (student or regular).
        """
        current = await self.subscriptions.find_current(user.id)
        if not user.stripe_customer_id or current is None:
            return _error("not_found", 404, "Stripe customer or active subscription not found for this user")

        frontend_url = settings.frontend_url or "http://localhost:3000"
        try:
            url = self.provider.create_portal_session(
                customer_id=user.stripe_customer_id,
                subscription_id=current.stripe_subscription_id,
                return_url=f"{frontend_url}/dashboard/upgrade",
                products=self.catalog.products_for(student=user.is_student),
            )
        except TransientProviderError as e:
            logger.error(f"Failed to create billing portal session: {e}")
            return _error("provider_error", 502, "Failed to create customer portal session")
        return {"data": {"url": url}, "is_error": False}

    async def cancel_subscription(self, user: User) -> dict:
        """
        Schedule cancellation at period end. The user keeps their tier until
        the provider reports the subscription deleted.
        """
        current = await self.subscriptions.find_current(user.id)
        if current is None:
            return _error("not_found", 404, "No active or trialing subscription found to cancel")
        try:
            updated = self.provider.schedule_cancellation(current.stripe_subscription_id)
        except TransientProviderError as e:
            logger.error(f"Failed to cancel subscription: {e}")
            return _error("provider_error", 502, "Failed to cancel subscription")
        logger.info(f"Cancellation scheduled for subscription {current.stripe_subscription_id} of user {user.id}")
        return {"data": {"cancel_at": updated.get("cancel_at")}, "is_error": False}

    async def upgrade_subscription(self, user: User, new_price_id: str) -> dict:
        """
        Swap the price on the user's active subscription with prorations.
        The subscription-updated webhook carries the tier change.
        """
        entry = self.catalog.get(new_price_id)
        if entry is None:
            return _error("unknown_price", 400, f"Price {new_price_id} is not offered")
        if self.catalog.is_student_price(entry.price_key) and not user.is_student:
            return _error("student_price_requires_student", 403, "Student prices require a student account")

        current = await self.subscriptions.find_current(user.id)
        if current is None or current.status != "active":
            return _error("not_found", 404, "No active subscription found to upgrade")
        try:
            self.provider.change_price(current.stripe_subscription_id, new_price_id)
        except TransientProviderError as e:
            logger.error(f"Failed to upgrade subscription: {e}")
            return _error("provider_error", 502, "Failed to upgrade subscription")
        return {"data": {"subscription_id": current.stripe_subscription_id}, "is_error": False}

    async def list_invoices(self, user: User, starting_after: Optional[str] = None) -> dict:
        """Ten invoices per page for the user's billing customer; empty when there is none."""
        customer_id = await self.subscriptions.find_customer_id(user.id)
        if not customer_id:
            return {"data": {"data": [], "has_more": False}, "is_error": False}
        try:
            invoices = self.provider.list_invoices(customer_id, starting_after=starting_after)
        except TransientProviderError as e:
            logger.error(f"Failed to fetch invoices: {e}")
            return _error("provider_error", 502, "Failed to fetch invoices")
        return {
            "data": {"data": invoices.get("data", []), "has_more": bool(invoices.get("has_more"))},
            "is_error": False,
        }

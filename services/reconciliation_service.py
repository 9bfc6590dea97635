"""
Reconciliation Service - verified billing event in, committed local state out

Pipeline: Event Verifier -> re-fetch (per event kind) -> State Transition Engine
-> Atomic Persistence Gateway. Each stage short-circuits with a defined outcome.
"""
import asyncio
import logging
from enum import Enum
from typing import Dict, Optional, Tuple, Union

from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError

from crud.subscription import SubscriptionRepository
from crud.user import UserRepository
from database import Database
from database_models import Subscription, User
from exceptions import TransientProviderError, VerificationError
from models.billing_events import (
    BillingEvent,
    CheckoutCompleted,
    EventKind,
    InvoicePaid,
    SubscriptionDeleted,
    SubscriptionUpdated,
    dig,
)
from models.reconciliation import ApplyResult, ApplyStatus
from services import alerts
from services.event_verifier import DEFAULT_TOLERANCE_SECONDS, verify_event
from services.persistence_gateway import DEFAULT_TIMEOUT_SECONDS, PersistenceGateway
from services.stripe_client import StripeClient
from services.tier_catalog import TierCatalog
from services.transition_engine import StateTransitionEngine

logger = logging.getLogger(__name__)


class StateSource(str, Enum):
    """Where the engine's view of provider state comes from, per event kind."""
    PAYLOAD = "payload"
    REFETCH_SUBSCRIPTION = "refetch_subscription"
    REFETCH_SESSION_AND_SUBSCRIPTION = "refetch_session_and_subscription"
    NONE = "none"


STATE_SOURCES: Dict[EventKind, StateSource] = {
    # Checkout payloads carry neither line items nor the subscription
    EventKind.CHECKOUT_COMPLETED: StateSource.REFETCH_SESSION_AND_SUBSCRIPTION,
    # Invoice payloads can lag the subscription they renew
    EventKind.INVOICE_PAID: StateSource.REFETCH_SUBSCRIPTION,
    EventKind.SUBSCRIPTION_UPDATED: StateSource.PAYLOAD,
    EventKind.SUBSCRIPTION_DELETED: StateSource.PAYLOAD,
    EventKind.UNRECOGNIZED: StateSource.NONE,
}

_missing_sources = set(EventKind) - set(STATE_SOURCES)
if _missing_sources:
    raise RuntimeError(f"No state source for: {sorted(k.value for k in _missing_sources)}")


class WebhookResult(BaseModel):
    status_code: int
    body: dict


class ReconciliationService:
    """
    Service class for reconciling billing provider events into local state.
    """

    def __init__(
        self,
        database: Database,
        provider: StripeClient,
        catalog: TierCatalog,
        webhook_secret: Optional[str],
        tolerance_seconds: int = DEFAULT_TOLERANCE_SECONDS,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    ):
        self.database = database
        self.provider = provider
        self.webhook_secret = webhook_secret
        self.tolerance_seconds = tolerance_seconds
        self.engine = StateTransitionEngine(catalog)
        self.gateway = PersistenceGateway(database, timeout_seconds=timeout_seconds)

    async def handle_webhook(self, payload: Union[bytes, str], signature: Optional[str]) -> WebhookResult:
        """
        Verify, reconcile and map the outcome onto the status the provider expects:
        200 acknowledged (including no-ops), 400 never retry, 500 retry later.
        """
        if not self.webhook_secret:
            logger.error("STRIPE_WEBHOOK_SECRET is not set. Cannot verify webhook events.")
            return WebhookResult(status_code=500, body={"received": False, "error": "Webhook secret not configured"})

        try:
            event = verify_event(payload, signature, self.webhook_secret, self.tolerance_seconds)
        except VerificationError as e:
            logger.warning(f"Webhook verification failed: {e}")
            return WebhookResult(status_code=400, body={"received": False, "error": str(e)})

        try:
            result = await self.reconcile(event)
        except TransientProviderError as e:
            logger.error(f"Provider re-fetch failed for {event.type} {event.id}: {e}")
            return WebhookResult(status_code=500, body={"received": False, "error": "Provider unavailable"})
        except SQLAlchemyError as e:
            logger.error(f"Database read failed for {event.type} {event.id}: {e}", exc_info=True)
            return WebhookResult(status_code=500, body={"received": False, "error": "Database unavailable"})

        if not result.committed:
            return WebhookResult(status_code=500, body={"received": False, "error": "Reconciliation failed"})
        return WebhookResult(
            status_code=200,
            body={"received": True, "event_type": event.type, "outcome": result.detail},
        )

    async def reconcile(self, event: BillingEvent) -> ApplyResult:
        """
        Reconcile one verified event.

        Raises:
            TransientProviderError: Re-fetching provider state failed; nothing was written
        """
        event = await self.refresh_state(event)
        current, user = await self.load_rows(event)
        plan = self.engine.plan(event, current, user)

        if plan.alert:
            alerts.emit_alert(plan.alert, plan.reason or "", event_id=event.id, event_type=event.type)

        if plan.is_noop:
            logger.info(f"Event {event.id} ({event.type}): no-op, {plan.reason}")
            return ApplyResult(status=ApplyStatus.COMMITTED, detail="noop")

        result = await self.gateway.apply(plan)
        if result.trial_consumed_now is False:
            alerts.emit_alert(
                alerts.TRIAL_REUSED,
                "trialing checkout for a user whose trial was already consumed",
                event_id=event.id,
                user_id=plan.user_change.user_id,
            )
        logger.info(f"Event {event.id} ({event.type}): {result.status.value} {result.detail}, {plan.reason}")
        return result

    async def refresh_state(self, event: BillingEvent) -> BillingEvent:
        """Replace payload state with provider state where the event kind requires it."""
        source = STATE_SOURCES[event.kind]
        if source == StateSource.REFETCH_SESSION_AND_SUBSCRIPTION:
            return await self._refresh_checkout(event)
        if source == StateSource.REFETCH_SUBSCRIPTION:
            return await self._refresh_invoice(event)
        return event

    async def _refresh_checkout(self, event: CheckoutCompleted) -> CheckoutCompleted:
        session = await asyncio.to_thread(self.provider.retrieve_checkout_session, event.session_id)
        subscription_id = event.subscription_id or session.get("subscription")
        if isinstance(subscription_id, dict):
            subscription_id = subscription_id.get("id")
        snapshot = None
        if subscription_id:
            snapshot = await asyncio.to_thread(self.provider.retrieve_subscription, subscription_id)
        return event.model_copy(update={
            "user_id": session.get("client_reference_id") or event.user_id,
            "subscription_id": subscription_id,
            "line_item_price_id": dig(session, "line_items", "data", 0, "price", "id"),
            "line_item_lookup_key": dig(session, "line_items", "data", 0, "price", "lookup_key"),
            "subscription": snapshot,
        })

    async def _refresh_invoice(self, event: InvoicePaid) -> InvoicePaid:
        if not event.subscription_id:
            return event
        snapshot = await asyncio.to_thread(self.provider.retrieve_subscription, event.subscription_id)
        return event.model_copy(update={"subscription": snapshot})

    async def load_rows(self, event: BillingEvent) -> Tuple[Optional[Subscription], Optional[User]]:
        """Committed subscription row and owning user the engine decides against."""
        subscription_id = None
        customer_id = None
        if isinstance(event, (CheckoutCompleted, InvoicePaid)):
            subscription_id = event.subscription_id
            customer_id = event.customer_id
        elif isinstance(event, (SubscriptionUpdated, SubscriptionDeleted)):
            subscription_id = event.subscription.id
            customer_id = event.subscription.customer_id

        async with self.database.session() as session:
            subscriptions = SubscriptionRepository(session)
            users = UserRepository(session)
            current = None
            if subscription_id:
                current = await subscriptions.get_by_provider_id(subscription_id)

            user = None
            if isinstance(event, CheckoutCompleted):
                if event.user_id:
                    user = await users.get_user_by_id(event.user_id)
            elif current is not None:
                user = await users.get_user_by_id(current.user_id)
            elif customer_id:
                user = await users.get_user_by_customer_id(customer_id)
            return current, user

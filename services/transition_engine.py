"""
State Transition Engine - decides what a billing event does to local state

``StateTransitionEngine.plan`` is a pure function of the (already re-fetched)
event, the stored subscription row and the owning user row. It never touches
the database; the persistence gateway applies whatever plan it returns.
"""
from typing import Dict, Optional

from config.settings import TIER_BASIC
from database_models import Subscription, User
from models.billing_events import (
    BillingEvent,
    CheckoutCompleted,
    EventKind,
    InvoicePaid,
    SubscriptionDeleted,
    SubscriptionUpdated,
)
from models.reconciliation import ReconciliationPlan, SubscriptionWrite, UserTierChange
from services import alerts
from services.tier_catalog import TierCatalog


# Handler method per event kind
_HANDLERS: Dict[EventKind, str] = {
    EventKind.CHECKOUT_COMPLETED: "_checkout_completed",
    EventKind.INVOICE_PAID: "_invoice_paid",
    EventKind.SUBSCRIPTION_UPDATED: "_subscription_updated",
    EventKind.SUBSCRIPTION_DELETED: "_subscription_deleted",
    EventKind.UNRECOGNIZED: "_unrecognized",
}

_missing_handlers = set(EventKind) - set(_HANDLERS)
if _missing_handlers:
    raise RuntimeError(f"No transition handler for: {sorted(k.value for k in _missing_handlers)}")


class StateTransitionEngine:

    def __init__(self, catalog: TierCatalog):
        self.catalog = catalog

    def plan(self, event: BillingEvent, current: Optional[Subscription], user: Optional[User]) -> ReconciliationPlan:
        """
        Decide the row mutations for one event.

        Args:
            event: Verified event, with re-fetched provider state where its kind requires it
            current: Stored row for the event's subscription id, if any
            user: Owning user row, if it could be found

        Returns:
            Plan to hand to the persistence gateway (possibly a no-op)
        """
        handler = getattr(self, _HANDLERS[event.kind])
        return handler(event, current, user)

    def _checkout_completed(self, event: CheckoutCompleted, current, user) -> ReconciliationPlan:
        snapshot = event.subscription
        if not event.subscription_id or snapshot is None:
            return ReconciliationPlan.noop(event, "checkout did not create a subscription")

        if user is None:
            return ReconciliationPlan.noop(
                event,
                f"no local user {event.user_id!r} for checkout {event.session_id}",
                alert=alerts.UNKNOWN_USER,
            )

        tier_id = self.catalog.resolve_tier(*event.price_keys, *snapshot.price_keys)
        if tier_id is None:
            return ReconciliationPlan.noop(
                event,
                f"could not determine tier for checkout {event.session_id} (price {event.line_item_price_id})",
                alert=alerts.UNKNOWN_PRICE,
            )

        start, expires = snapshot.period_bounds
        trialing = snapshot.status == "trialing"
        return ReconciliationPlan(
            event_id=event.id,
            event_type=event.type,
            event_created=event.created,
            subscription=SubscriptionWrite(
                stripe_subscription_id=event.subscription_id,
                user_id=user.id,
                state_version=event.created,
                fields={
                    "tier_id": tier_id,
                    "status": snapshot.status,
                    "billing_interval": snapshot.interval,
                    "period_start": start,
                    "period_end": expires,
                    "cancel_at_period_end": snapshot.cancel_at_period_end,
                    "canceled_at": snapshot.canceled_at,
                    "ended_at": snapshot.ended_at,
                },
            ),
            user_change=UserTierChange(
                user_id=user.id,
                tier_id=tier_id,
                stripe_customer_id=event.customer_id or snapshot.customer_id,
                consume_trial=trialing,
            ),
            reason=f"granted {tier_id}",
        )

    def _invoice_paid(self, event: InvoicePaid, current, user) -> ReconciliationPlan:
        if not event.subscription_id or event.subscription is None:
            return ReconciliationPlan.noop(event, "invoice is not for a subscription")
        if current is None:
            # The checkout completion for this subscription creates the row
            return ReconciliationPlan.noop(event, f"subscription {event.subscription_id} not recorded yet")

        snapshot = event.subscription
        _, expires = snapshot.period_bounds
        return ReconciliationPlan(
            event_id=event.id,
            event_type=event.type,
            event_created=event.created,
            subscription=SubscriptionWrite(
                stripe_subscription_id=event.subscription_id,
                state_version=event.created,
                create_if_missing=False,
                fields={"status": snapshot.status, "period_end": expires},
            ),
            reason="renewed",
        )

    def _subscription_updated(self, event: SubscriptionUpdated, current, user) -> ReconciliationPlan:
        snapshot = event.subscription
        owner_id = current.user_id if current is not None else (user.id if user is not None else None)
        if owner_id is None:
            return ReconciliationPlan.noop(
                event,
                f"no owner for subscription {snapshot.id} (customer {snapshot.customer_id})",
                alert=alerts.UNKNOWN_OWNER,
            )

        tier_id = self.catalog.resolve_tier(*snapshot.price_keys)
        if tier_id is None:
            return ReconciliationPlan.noop(
                event,
                f"could not determine tier for subscription {snapshot.id} (price {snapshot.price_id})",
                alert=alerts.UNKNOWN_PRICE,
            )

        start, expires = snapshot.period_bounds
        plan = ReconciliationPlan(
            event_id=event.id,
            event_type=event.type,
            event_created=event.created,
            subscription=SubscriptionWrite(
                stripe_subscription_id=snapshot.id,
                user_id=owner_id,
                state_version=event.created,
                fields={
                    "tier_id": tier_id,
                    "status": snapshot.status,
                    "billing_interval": snapshot.interval,
                    "period_start": start,
                    "period_end": expires,
                    "cancel_at_period_end": snapshot.cancel_at_period_end,
                    "canceled_at": snapshot.canceled_at,
                },
            ),
        )
        if snapshot.cancel_at_period_end:
            # Access persists through the notice period; deletion downgrades
            plan.reason = "cancellation scheduled, tier kept"
        else:
            plan.user_change = UserTierChange(user_id=owner_id, tier_id=tier_id)
            plan.reason = f"tier set to {tier_id}"
        return plan

    def _subscription_deleted(self, event: SubscriptionDeleted, current, user) -> ReconciliationPlan:
        snapshot = event.subscription
        owner_id = current.user_id if current is not None else (user.id if user is not None else None)
        if owner_id is None:
            return ReconciliationPlan.noop(
                event,
                f"no owner for deleted subscription {snapshot.id} (customer {snapshot.customer_id})",
                alert=alerts.UNKNOWN_OWNER,
            )

        fields = {
            "status": "canceled",
            "cancel_at_period_end": snapshot.cancel_at_period_end,
            "canceled_at": snapshot.canceled_at or snapshot.ended_at or event.created,
            "ended_at": snapshot.ended_at or snapshot.canceled_at or event.created,
        }
        if current is None:
            fields["tier_id"] = self.catalog.resolve_tier(*snapshot.price_keys) or TIER_BASIC
            fields["billing_interval"] = snapshot.interval
            fields["period_start"], fields["period_end"] = snapshot.period_bounds

        return ReconciliationPlan(
            event_id=event.id,
            event_type=event.type,
            event_created=event.created,
            subscription=SubscriptionWrite(
                stripe_subscription_id=snapshot.id,
                user_id=owner_id,
                state_version=event.created,
                fields=fields,
                terminal=True,
            ),
            user_change=UserTierChange(user_id=owner_id, tier_id=TIER_BASIC),
            reason="downgraded to basic",
        )

    def _unrecognized(self, event: BillingEvent, current, user) -> ReconciliationPlan:
        return ReconciliationPlan.noop(event, f"ignoring event type {event.type}")

"""
Typed billing lifecycle events decoded from verified provider payloads.

Every provider event type the reconciliation engine acts on has its own
variant; anything else decodes to ``UnrecognizedEvent``. ``EVENT_PARSERS`` is
checked at import time to cover every ``EventKind`` member.
"""
from enum import Enum
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

from pydantic import BaseModel, Field

from exceptions import VerificationError


class EventKind(str, Enum):
    CHECKOUT_COMPLETED = "checkout.session.completed"
    INVOICE_PAID = "invoice.paid"
    SUBSCRIPTION_UPDATED = "customer.subscription.updated"
    SUBSCRIPTION_DELETED = "customer.subscription.deleted"
    UNRECOGNIZED = "unrecognized"

    @classmethod
    def from_type(cls, event_type: str) -> "EventKind":
        try:
            return cls(event_type)
        except ValueError:
            return cls.UNRECOGNIZED


def dig(obj: Any, *path, default=None):
    """Walk nested mappings/lists, returning default on the first missing step."""
    current = obj
    for step in path:
        if current is None:
            return default
        if isinstance(step, int):
            if not isinstance(current, (list, tuple)) or len(current) <= step:
                return default
            current = current[step]
        else:
            if not isinstance(current, Mapping):
                return default
            current = current.get(step)
    return default if current is None else current


def _object_id(value: Any) -> Optional[str]:
    # Expandable fields arrive either as an id string or as the expanded object
    if isinstance(value, Mapping):
        return value.get("id")
    return value


class SubscriptionSnapshot(BaseModel):
    """Provider subscription state at one point in time."""

    id: str
    customer_id: Optional[str] = None
    status: str
    price_id: Optional[str] = None
    lookup_key: Optional[str] = None
    interval: Optional[str] = None
    current_period_start: Optional[int] = None
    current_period_end: Optional[int] = None
    trial_start: Optional[int] = None
    trial_end: Optional[int] = None
    cancel_at_period_end: bool = False
    canceled_at: Optional[int] = None
    ended_at: Optional[int] = None
    metadata: Dict[str, str] = Field(default_factory=dict)

    @classmethod
    def from_stripe(cls, obj: Mapping) -> "SubscriptionSnapshot":
        if not obj or not obj.get("id"):
            raise VerificationError("Subscription object is missing its id")
        item = dig(obj, "items", "data", 0, default={})
        price = item.get("price") or {}
        # Newer API versions report billing periods per subscription item
        period_start = item.get("current_period_start", obj.get("current_period_start"))
        period_end = item.get("current_period_end", obj.get("current_period_end"))
        return cls(
            id=obj["id"],
            customer_id=_object_id(obj.get("customer")),
            status=obj.get("status") or "incomplete",
            price_id=price.get("id"),
            lookup_key=price.get("lookup_key"),
            interval=dig(price, "recurring", "interval"),
            current_period_start=period_start,
            current_period_end=period_end,
            trial_start=obj.get("trial_start"),
            trial_end=obj.get("trial_end"),
            cancel_at_period_end=bool(obj.get("cancel_at_period_end")),
            canceled_at=obj.get("canceled_at"),
            ended_at=obj.get("ended_at"),
            metadata=dict(obj.get("metadata") or {}),
        )

    @property
    def price_keys(self) -> Tuple[str, ...]:
        return tuple(key for key in (self.price_id, self.lookup_key) if key)

    @property
    def period_bounds(self) -> Tuple[Optional[int], Optional[int]]:
        """(start, expires): trial window while trialing, billing period otherwise."""
        if self.status == "trialing" and self.trial_end:
            return self.trial_start, self.trial_end
        return self.current_period_start, self.current_period_end


class BillingEvent(BaseModel):
    id: str
    type: str
    created: int = 0
    kind: EventKind


class CheckoutCompleted(BillingEvent):
    kind: EventKind = EventKind.CHECKOUT_COMPLETED
    session_id: str
    user_id: Optional[str] = None
    customer_id: Optional[str] = None
    subscription_id: Optional[str] = None
    # Filled in from the re-fetched session and subscription
    line_item_price_id: Optional[str] = None
    line_item_lookup_key: Optional[str] = None
    subscription: Optional[SubscriptionSnapshot] = None

    @property
    def price_keys(self) -> Tuple[str, ...]:
        return tuple(key for key in (self.line_item_price_id, self.line_item_lookup_key) if key)


class InvoicePaid(BillingEvent):
    kind: EventKind = EventKind.INVOICE_PAID
    invoice_id: str
    subscription_id: Optional[str] = None
    customer_id: Optional[str] = None
    # Filled in from the re-fetched subscription
    subscription: Optional[SubscriptionSnapshot] = None


class SubscriptionUpdated(BillingEvent):
    kind: EventKind = EventKind.SUBSCRIPTION_UPDATED
    subscription: SubscriptionSnapshot


class SubscriptionDeleted(BillingEvent):
    kind: EventKind = EventKind.SUBSCRIPTION_DELETED
    subscription: SubscriptionSnapshot


class UnrecognizedEvent(BillingEvent):
    kind: EventKind = EventKind.UNRECOGNIZED


def _parse_checkout(base: dict, obj: Mapping) -> CheckoutCompleted:
    return CheckoutCompleted(
        **base,
        session_id=obj.get("id"),
        user_id=obj.get("client_reference_id"),
        customer_id=_object_id(obj.get("customer")),
        subscription_id=_object_id(obj.get("subscription")),
        line_item_price_id=dig(obj, "line_items", "data", 0, "price", "id"),
        line_item_lookup_key=dig(obj, "line_items", "data", 0, "price", "lookup_key"),
    )


def _parse_invoice(base: dict, obj: Mapping) -> InvoicePaid:
    subscription_id = _object_id(obj.get("subscription")) or dig(
        obj, "parent", "subscription_details", "subscription"
    )
    return InvoicePaid(
        **base,
        invoice_id=obj.get("id"),
        subscription_id=_object_id(subscription_id),
        customer_id=_object_id(obj.get("customer")),
    )


def _parse_updated(base: dict, obj: Mapping) -> SubscriptionUpdated:
    return SubscriptionUpdated(**base, subscription=SubscriptionSnapshot.from_stripe(obj))


def _parse_deleted(base: dict, obj: Mapping) -> SubscriptionDeleted:
    return SubscriptionDeleted(**base, subscription=SubscriptionSnapshot.from_stripe(obj))


def _parse_unrecognized(base: dict, obj: Mapping) -> UnrecognizedEvent:
    return UnrecognizedEvent(**base)


EVENT_PARSERS: Dict[EventKind, Callable[[dict, Mapping], BillingEvent]] = {
    EventKind.CHECKOUT_COMPLETED: _parse_checkout,
    EventKind.INVOICE_PAID: _parse_invoice,
    EventKind.SUBSCRIPTION_UPDATED: _parse_updated,
    EventKind.SUBSCRIPTION_DELETED: _parse_deleted,
    EventKind.UNRECOGNIZED: _parse_unrecognized,
}

_missing_parsers = set(EventKind) - set(EVENT_PARSERS)
if _missing_parsers:
    raise RuntimeError(f"No event parser registered for: {sorted(k.value for k in _missing_parsers)}")


def parse_event(payload: Mapping) -> BillingEvent:
    """
    Decode a verified provider event payload into its typed variant.

    Raises:
        VerificationError: If the payload does not have the shape of a provider event
    """
    if not isinstance(payload, Mapping):
        raise VerificationError("Event payload is not an object")
    event_id = payload.get("id")
    event_type = payload.get("type")
    obj = dig(payload, "data", "object")
    if not event_id or not event_type or not isinstance(obj, Mapping):
        raise VerificationError("Event payload is missing id, type or data.object")

    kind = EventKind.from_type(event_type)
    base = {"id": event_id, "type": event_type, "created": payload.get("created") or 0}
    try:
        return EVENT_PARSERS[kind](base, obj)
    except VerificationError:
        raise
    except (ValueError, TypeError) as e:
        # pydantic.ValidationError is a ValueError
        raise VerificationError(f"Malformed {event_type} payload: {e}") from e

"""
Unit tests for webhook signature verification and event decoding
"""
import json
import time

import pytest

from exceptions import VerificationError
from models.billing_events import (
    CheckoutCompleted,
    EventKind,
    InvoicePaid,
    SubscriptionDeleted,
    SubscriptionUpdated,
    UnrecognizedEvent,
)
from services.event_verifier import verify_event
from tests.factories import (
    WEBHOOK_SECRET,
    checkout_session_object,
    event_payload,
    invoice_object,
    sign_payload,
    signed_request,
    subscription_object,
)


def test_valid_signature_returns_typed_event():
    payload, signature = signed_request(
        event_payload("customer.subscription.updated", subscription_object(), event_id="evt_1", created=1700000100)
    )

    event = verify_event(payload.encode("utf-8"), signature, WEBHOOK_SECRET)

    assert isinstance(event, SubscriptionUpdated)
    assert event.id == "evt_1"
    assert event.created == 1700000100
    assert event.kind == EventKind.SUBSCRIPTION_UPDATED
    assert event.subscription.id == "sub_123"
    assert event.subscription.price_id == "price_pro_monthly"


def test_missing_signature_header():
    payload, _ = signed_request(event_payload("invoice.paid", invoice_object()))

    with pytest.raises(VerificationError):
        verify_event(payload, None, WEBHOOK_SECRET)


def test_signature_with_wrong_secret():
    payload, signature = signed_request(event_payload("invoice.paid", invoice_object()), secret="whsec_other")

    with pytest.raises(VerificationError):
        verify_event(payload, signature, WEBHOOK_SECRET)


def test_tampered_payload():
    payload, signature = signed_request(event_payload("invoice.paid", invoice_object()))
    tampered = payload.replace("in_123", "in_999")

    with pytest.raises(VerificationError):
        verify_event(tampered, signature, WEBHOOK_SECRET)


def test_expired_signature_timestamp():
    payload = json.dumps(event_payload("invoice.paid", invoice_object()))
    signature = sign_payload(payload, timestamp=int(time.time()) - 3600)

    with pytest.raises(VerificationError):
        verify_event(payload, signature, WEBHOOK_SECRET, tolerance=300)


def test_malformed_json_with_valid_signature():
    payload = "{not json"
    signature = sign_payload(payload)

    with pytest.raises(VerificationError):
        verify_event(payload, signature, WEBHOOK_SECRET)


def test_payload_without_event_shape():
    payload = json.dumps({"id": "evt_1", "type": "invoice.paid"})
    signature = sign_payload(payload)

    with pytest.raises(VerificationError):
        verify_event(payload, signature, WEBHOOK_SECRET)


def test_subscription_event_without_id_is_rejected():
    obj = subscription_object()
    del obj["id"]
    payload, signature = signed_request(event_payload("customer.subscription.deleted", obj))

    with pytest.raises(VerificationError):
        verify_event(payload, signature, WEBHOOK_SECRET)


def test_decodes_each_event_kind():
    cases = [
        ("checkout.session.completed", checkout_session_object(), CheckoutCompleted),
        ("invoice.paid", invoice_object(), InvoicePaid),
        ("customer.subscription.updated", subscription_object(), SubscriptionUpdated),
        ("customer.subscription.deleted", subscription_object(status="canceled"), SubscriptionDeleted),
        ("customer.created", {"id": "cus_123"}, UnrecognizedEvent),
    ]
    for event_type, obj, expected in cases:
        payload, signature = signed_request(event_payload(event_type, obj))
        event = verify_event(payload, signature, WEBHOOK_SECRET)
        assert isinstance(event, expected), event_type
        assert event.type == event_type


def test_checkout_fields():
    payload, signature = signed_request(event_payload("checkout.session.completed", checkout_session_object()))

    event = verify_event(payload, signature, WEBHOOK_SECRET)

    assert event.session_id == "cs_123"
    assert event.user_id == "user_1"
    assert event.customer_id == "cus_123"
    assert event.subscription_id == "sub_123"
    assert event.subscription is None


def test_non_utf8_payload():
    with pytest.raises(VerificationError):
        verify_event(b"\xff\xfe", sign_payload("x"), WEBHOOK_SECRET)

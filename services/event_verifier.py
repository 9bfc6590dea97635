"""
Event Verifier - authenticates inbound billing events before anything reads them
"""
import json
import logging
from typing import Optional, Union

import stripe

from exceptions import VerificationError
from models.billing_events import BillingEvent, parse_event

logger = logging.getLogger(__name__)

DEFAULT_TOLERANCE_SECONDS = 300


def verify_event(
    payload: Union[bytes, str],
    signature: Optional[str],
    secret: str,
    tolerance: int = DEFAULT_TOLERANCE_SECONDS,
) -> BillingEvent:
    """
    Verify a provider-signed payload and decode it into a typed event.

    The signature is checked against the raw bytes before the body is parsed,
    so nothing downstream ever sees an unauthenticated payload.

    Args:
        payload: Raw request body exactly as received
        signature: Value of the Stripe-Signature header
        secret: Webhook signing secret
        tolerance: Maximum accepted age of the signed timestamp, in seconds

    Returns:
        Decoded event variant

    Raises:
        VerificationError: Missing header, bad signature or malformed payload
    """
    if not signature:
        raise VerificationError("Missing Stripe-Signature header")

    # The signed string is "<timestamp>.<body text>"
    if isinstance(payload, bytes):
        try:
            payload = payload.decode("utf-8")
        except UnicodeDecodeError as e:
            raise VerificationError(f"Webhook payload is not UTF-8: {e}") from e

    try:
        stripe.WebhookSignature.verify_header(payload, signature, secret, tolerance)
    except stripe.SignatureVerificationError as e:
        raise VerificationError(f"Invalid webhook signature: {e}") from e
    except ValueError as e:
        raise VerificationError(f"Unreadable webhook payload: {e}") from e

    try:
        data = json.loads(payload)
    except ValueError as e:
        raise VerificationError(f"Invalid payload format: {e}") from e

    return parse_event(data)

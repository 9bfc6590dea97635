"""
Billing Router - API endpoints for Stripe billing integration
Webhook is defined FIRST; it reads the raw body for signature verification
"""

import logging
from typing import Optional
from fastapi import APIRouter, Request, Depends, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_current_user
from config.settings import settings
from database import Database, get_database, get_db
from database_models import User
from services.billing_service import BillingService
from services.reconciliation_service import ReconciliationService
from services.stripe_client import StripeClient
from services.tier_catalog import TierCatalog
from utils.responses import service_response

logger = logging.getLogger(__name__)

# Create billing router
billing_router = APIRouter(prefix="/api/billing", tags=["billing"])


class CheckoutRequest(BaseModel):
    price_id: str
    with_trial: bool = False


class UpgradeRequest(BaseModel):
    new_price_id: str


def get_tier_catalog(request: Request) -> TierCatalog:
    """Catalog built once at startup; see main.load_tier_catalog."""
    return request.app.state.tier_catalog


def get_stripe_client() -> StripeClient:
    return StripeClient(settings.stripe_secret_key)


def get_reconciliation_service(
    database: Database = Depends(get_database),
    provider: StripeClient = Depends(get_stripe_client),
    catalog: TierCatalog = Depends(get_tier_catalog),
) -> ReconciliationService:
    return ReconciliationService(
        database,
        provider,
        catalog,
        webhook_secret=settings.stripe_webhook_secret,
        tolerance_seconds=settings.stripe_webhook_tolerance_seconds,
        timeout_seconds=settings.reconciliation_timeout_seconds,
    )


def get_billing_service(
    db: AsyncSession = Depends(get_db),
    provider: StripeClient = Depends(get_stripe_client),
    catalog: TierCatalog = Depends(get_tier_catalog),
) -> BillingService:
    return BillingService(db, provider, catalog)


# WEBHOOK ENDPOINT - MUST BE DEFINED FIRST TO AVOID MIDDLEWARE CONFLICTS
@billing_router.post("/webhook")
async def stripe_webhook(
    request: Request,
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    """
    Handle Stripe webhook events with signature verification.

    Status codes drive the provider's retry policy:
    - 200: acknowledged, including deliberate no-ops
    - 400: bad signature or payload, retrying cannot help
    - 500: internal failure, the provider should retry
    """
    payload = await request.body()
    signature = request.headers.get("stripe-signature")
    result = await service.handle_webhook(payload, signature)
    return JSONResponse(status_code=result.status_code, content=result.body)


@billing_router.post("/create-checkout-session")
async def create_checkout_session(
    body: CheckoutRequest,
    user: User = Depends(get_current_user),
    service: BillingService = Depends(get_billing_service),
):
    """Create a Stripe Checkout session for the authenticated user."""
    return service_response(await service.create_checkout_session(user, body.price_id, body.with_trial))


@billing_router.post("/portal")
async def create_billing_portal_session(
    user: User = Depends(get_current_user),
    service: BillingService = Depends(get_billing_service),
):
    """Create a Stripe Billing Portal session for the current subscription."""
    return service_response(await service.create_billing_portal_session(user))


@billing_router.post("/cancel")
async def cancel_subscription(
    user: User = Depends(get_current_user),
    service: BillingService = Depends(get_billing_service),
):
    """Schedule cancellation of the current subscription at period end."""
    return service_response(await service.cancel_subscription(user))


@billing_router.post("/upgrade")
async def upgrade_subscription(
    body: UpgradeRequest,
    user: User = Depends(get_current_user),
    service: BillingService = Depends(get_billing_service),
):
    """Move the active subscription to a different price."""
    return service_response(await service.upgrade_subscription(user, body.new_price_id))


@billing_router.get("/invoices")
async def list_invoices(
    starting_after: Optional[str] = Query(default=None),
    user: User = Depends(get_current_user),
    service: BillingService = Depends(get_billing_service),
):
    """Page through the user's invoices, ten at a time."""
    return service_response(await service.list_invoices(user, starting_after))

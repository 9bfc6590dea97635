"""
Profile Router - fetch-or-register of the authenticated user's profile
"""

import logging
from datetime import timezone
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from auth import Identity, get_current_identity
from crud.user import UserRepository
from database import Database, get_database, get_db
from services.subscription_query_service import SubscriptionQueryService
from utils.responses import success_response

logger = logging.getLogger(__name__)

profile_router = APIRouter(prefix="/api/profile", tags=["profile"])


def get_subscription_queries(database: Database = Depends(get_database)) -> SubscriptionQueryService:
    return SubscriptionQueryService(database)


def _epoch(value):
    # Stored datetimes are naive UTC
    return int(value.replace(tzinfo=timezone.utc).timestamp()) if value is not None else None


@profile_router.get("")
async def get_user_profile(
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
    queries: SubscriptionQueryService = Depends(get_subscription_queries),
):
    """
    Return the caller's profile, registering the user on first sight.
    Existing users get last_login_at refreshed.
    """
    user, created = await UserRepository(db).upsert_on_login(
        identity.user_id, identity.email, identity.display_name
    )
    if created:
        logger.info(f"User {identity.user_id} not found. Registered new user.")

    current = await queries.find_current(user.id)
    subscription = None
    if current is not None:
        subscription = {
            "stripe_subscription_id": current.stripe_subscription_id,
            "tier_id": current.tier_id,
            "status": current.status,
            "billing_interval": current.billing_interval,
            "period_start": current.period_start,
            "period_end": current.period_end,
            "cancel_at_period_end": current.cancel_at_period_end,
        }

    return success_response(
        {
            "user_id": user.id,
            "email": user.email,
            "display_name": user.display_name,
            "current_tier": user.current_tier,
            "is_student": user.is_student,
            "trial_consumed": user.trial_consumed,
            "created_at": _epoch(user.created_at),
            "tier_updated_at": _epoch(user.tier_updated_at),
            "last_login_at": _epoch(user.last_login_at),
            "subscription": subscription,
        },
        message="User profile fetched/registered successfully."
    )

"""
SubscriptionRepository for database operations on Subscription model
"""

from typing import Any, Dict, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from database_models import CURRENT_STATUSES, Subscription, User

# Columns a reconciliation write may replace
WRITABLE_FIELDS = (
    "tier_id",
    "status",
    "billing_interval",
    "period_start",
    "period_end",
    "cancel_at_period_end",
    "canceled_at",
    "ended_at",
)


class SubscriptionRepository:
    """
    Repository class for Subscription database operations.
    Rows are keyed by the provider subscription id and never deleted.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_by_provider_id(self, stripe_subscription_id: str, for_update: bool = False) -> Optional[Subscription]:
        """
        Retrieve a subscription by provider id.

        Args:
            stripe_subscription_id: Provider subscription id
            for_update: Lock the row so concurrent writers for the same id serialize

        Returns:
            Subscription object if found, None otherwise
        """
        query = select(Subscription).where(Subscription.stripe_subscription_id == stripe_subscription_id)
        if for_update:
            query = query.with_for_update()
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def find_current(self, user_id: str) -> Optional[Subscription]:
        """Most recent active or trialing subscription for the user."""
        result = await self.db.execute(
            select(Subscription)
            .where(Subscription.user_id == user_id, Subscription.status.in_(CURRENT_STATUSES))
            .order_by(Subscription.created_at.desc(), Subscription.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def find_customer_id(self, user_id: str) -> Optional[str]:
        result = await self.db.execute(
            select(User.stripe_customer_id).where(User.id == user_id)
        )
        return result.scalar_one_or_none()

    async def create(self, stripe_subscription_id: str, user_id: str, fields: Dict[str, Any], state_version: int) -> Subscription:
        subscription = Subscription(
            stripe_subscription_id=stripe_subscription_id,
            user_id=user_id,
            state_version=state_version,
            **{key: value for key, value in fields.items() if key in WRITABLE_FIELDS},
        )
        self.db.add(subscription)
        await self.db.flush()
        return subscription

    async def replace(self, subscription: Subscription, fields: Dict[str, Any], state_version: int) -> Subscription:
        """Overwrite the given fields with the latest known state."""
        for key, value in fields.items():
            if key in WRITABLE_FIELDS:
                setattr(subscription, key, value)
        subscription.state_version = max(subscription.state_version or 0, state_version)
        await self.db.flush()
        return subscription

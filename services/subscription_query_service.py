"""
Subscription Query Service - read side used by the billing routes and the reconciler
"""
from typing import Optional

from crud.subscription import SubscriptionRepository
from database import Database
from database_models import Subscription


class SubscriptionQueryService:
    """
    Each query runs in its own short session, so it only ever sees committed
    rows and never the inside of an in-flight reconciliation transaction.
    """

    def __init__(self, database: Database):
        self.database = database

    async def find_current(self, user_id: str) -> Optional[Subscription]:
        async with self.database.session() as session:
            return await SubscriptionRepository(session).find_current(user_id)

    async def find_by_provider_id(self, stripe_subscription_id: str) -> Optional[Subscription]:
        async with self.database.session() as session:
            return await SubscriptionRepository(session).get_by_provider_id(stripe_subscription_id)

    async def find_customer_id(self, user_id: str) -> Optional[str]:
        async with self.database.session() as session:
            return await SubscriptionRepository(session).find_customer_id(user_id)

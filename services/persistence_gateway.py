"""
Atomic Persistence Gateway - the single commit point for reconciliation plans
"""
import asyncio
import logging
from typing import Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from crud.subscription import SubscriptionRepository
from crud.user import UserRepository
from database import Database
from database_models import BillingEvent
from exceptions import PersistenceError
from models.reconciliation import ApplyResult, ApplyStatus, ReconciliationPlan
from services.trial_service import TrialService

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10.0


class PersistenceGateway:
    """
    Applies every write of one ReconciliationPlan in a single transaction.

    Writers for the same provider subscription id serialize on the row lock
    taken before any write; writers for different ids never touch the same
    rows. The first insert of a subscription id can collide with a concurrent
    insert, in which case the whole plan is retried once against the row that won.
    """

    def __init__(self, database: Database, timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS):
        self.database = database
        self.timeout_seconds = timeout_seconds

    async def apply(self, plan: ReconciliationPlan) -> ApplyResult:
        """
        Commit the plan or nothing.

        Returns:
            COMMITTED (detail: applied / stale / duplicate / missing) or FAILED.
            A FAILED result guarantees no row changed.
        """
        try:
            return await asyncio.wait_for(self._apply_with_retry(plan), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            logger.error(f"Reconciliation of {plan.event_id} exceeded {self.timeout_seconds}s, rolled back")
            return ApplyResult(status=ApplyStatus.FAILED, detail="timeout", error="deadline exceeded")
        except (SQLAlchemyError, PersistenceError) as e:
            logger.error(f"Reconciliation of {plan.event_id} rolled back: {e}", exc_info=True)
            return ApplyResult(status=ApplyStatus.FAILED, detail="rolled_back", error=str(e))

    async def _apply_with_retry(self, plan: ReconciliationPlan) -> ApplyResult:
        try:
            async with self.database.transaction() as session:
                return await self._apply_in_session(session, plan)
        except IntegrityError:
            logger.info(f"Concurrent write for event {plan.event_id}, retrying once")
        async with self.database.transaction() as session:
            return await self._apply_in_session(session, plan)

    async def _apply_in_session(self, session: AsyncSession, plan: ReconciliationPlan) -> ApplyResult:
        if await session.get(BillingEvent, plan.event_id) is not None:
            return ApplyResult(status=ApplyStatus.COMMITTED, detail="duplicate")

        detail = "applied"
        write = plan.subscription
        if write is not None:
            subscriptions = SubscriptionRepository(session)
            row = await subscriptions.get_by_provider_id(write.stripe_subscription_id, for_update=True)
            if row is None:
                if write.create_if_missing:
                    if not write.user_id or "tier_id" not in write.fields:
                        raise PersistenceError(
                            f"Cannot create subscription {write.stripe_subscription_id} without owner and tier"
                        )
                    await subscriptions.create(
                        write.stripe_subscription_id, write.user_id, write.fields, write.state_version
                    )
                else:
                    detail = "missing"
            elif not write.terminal and row.is_closed:
                logger.info(
                    f"Skipping {plan.event_type} {plan.event_id}: subscription {write.stripe_subscription_id} is closed"
                )
                detail = "stale"
            elif not write.terminal and (row.state_version or 0) > write.state_version:
                logger.info(
                    f"Skipping stale {plan.event_type} {plan.event_id} for {write.stripe_subscription_id}: "
                    f"version {write.state_version} < stored {row.state_version}"
                )
                detail = "stale"
            else:
                await subscriptions.replace(row, write.fields, write.state_version)

        trial_consumed_now: Optional[bool] = None
        change = plan.user_change
        if change is not None and detail != "stale":
            users = UserRepository(session)
            user = await users.get_user_by_id(change.user_id, for_update=True)
            if user is None:
                raise PersistenceError(f"User {change.user_id} does not exist")
            await users.apply_tier_change(user, change.tier_id, change.stripe_customer_id)
            if change.consume_trial:
                trial_consumed_now = await TrialService(session).mark_trial_consumed(user.id)

        session.add(BillingEvent(
            event_id=plan.event_id,
            event_type=plan.event_type,
            provider_created=plan.event_created,
        ))
        await session.flush()
        return ApplyResult(status=ApplyStatus.COMMITTED, detail=detail, trial_consumed_now=trial_consumed_now)

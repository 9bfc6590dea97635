"""
Trial Service - one discounted trial per user, lifetime
"""
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from database_models import User


class TrialService:
    """
    Trial eligibility gate.
    Runs inside the caller's session so the trial mark commits (or rolls back)
    together with whatever else the caller is writing.
    """

    def __init__(self, db: AsyncSession):
        """
        Initialize the trial service with a database session.

        Args:
            db: AsyncSession instance for database operations
        """
        self.db = db

    async def has_consumed_trial(self, user_id: str) -> bool:
        """
        Check whether the user has already used their trial.
        Unknown users have not consumed one.
        """
        result = await self.db.execute(
            select(User.trial_consumed).where(User.id == user_id)
        )
        return bool(result.scalar_one_or_none())

    async def mark_trial_consumed(self, user_id: str) -> bool:
        """
        Set-once test-and-set of the user's trial flag.

        A single conditional UPDATE, so two concurrent callers cannot both
        observe the flag as unset.

        Args:
            user_id: Owning user id

        Returns:
            True if this call consumed the trial, False if it was already consumed
            (or the user does not exist)
        """
        result = await self.db.execute(
            update(User)
            .where(User.id == user_id, User.trial_consumed.is_(False))
            .values(trial_consumed=True)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

"""
UserRepository for database operations on User model
"""

from datetime import datetime
from typing import Optional, Tuple
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from database_models import User


class UserRepository:
    """
    Repository class for User database operations.
    Encapsulates all database logic for the User model.
    """

    def __init__(self, db: AsyncSession):
        """
        Initialize the repository with a database session.

        Args:
            db: AsyncSession instance for database operations
        """
        self.db = db

    async def get_user_by_id(self, user_id: str, for_update: bool = False) -> Optional[User]:
        """
        Retrieve a user by identity-provider subject id.

        Args:
            user_id: User's subject id
            for_update: Lock the row for the rest of the transaction

        Returns:
            User object if found, None otherwise
        """
        query = select(User).where(User.id == user_id)
        if for_update:
            query = query.with_for_update()
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def get_user_by_customer_id(self, stripe_customer_id: str) -> Optional[User]:
        """Retrieve the user a billing customer belongs to."""
        result = await self.db.execute(
            select(User).where(User.stripe_customer_id == stripe_customer_id)
        )
        return result.scalars().first()

    async def upsert_on_login(self, user_id: str, email: Optional[str], display_name: Optional[str]) -> Tuple[User, bool]:
        """
        Fetch the user, creating the record on first sight.
        Existing users get their last_login_at refreshed.

        Returns:
            (user, created)
        """
        now = datetime.utcnow()
        user = await self.get_user_by_id(user_id)
        if user is None:
            user = User(
                id=user_id,
                email=email.lower() if email else None,
                display_name=display_name,
                last_login_at=now,
            )
            self.db.add(user)
            await self.db.flush()
            await self.db.refresh(user)
            return user, True

        user.last_login_at = now
        await self.db.flush()
        return user, False

    async def apply_tier_change(self, user: User, tier_id: str, stripe_customer_id: Optional[str] = None) -> User:
        """
        Set the user's current tier (and billing customer, when known).

        Args:
            user: User object to update
            tier_id: New tier id
            stripe_customer_id: Billing customer reference to record, if any

        Returns:
            Updated User object
        """
        updates = {"current_tier": tier_id, "tier_updated_at": datetime.utcnow()}
        if stripe_customer_id:
            updates["stripe_customer_id"] = stripe_customer_id
        return await self.update_user(user, updates)

    async def update_user(self, user: User, updates: dict) -> User:
        """
        Update user fields.

        Args:
            user: User object to update
            updates: Dictionary of fields to update (e.g., {"current_tier": "pro"})

        Returns:
            Updated User object
        """
        for key, value in updates.items():
            if hasattr(user, key):
                setattr(user, key, value)

        await self.db.flush()
        return user

from sqlalchemy import Column, Integer, BigInteger, String, Boolean, DateTime, ForeignKey, Index
from datetime import datetime
from database import Base
from config.settings import TIER_BASIC

# Subscription statuses that count as the user's current subscription
CURRENT_STATUSES = ("active", "trialing")


class User(Base):
    """
    User account keyed by the identity provider's subject id.
    current_tier and trial_consumed are written only by billing reconciliation.
    """
    __tablename__ = "users"

    id = Column(String, primary_key=True)
    email = Column(String, nullable=True, index=True)
    display_name = Column(String, nullable=True)
    current_tier = Column(String, default=TIER_BASIC, nullable=False)
    is_student = Column(Boolean, default=False, nullable=False)
    stripe_customer_id = Column(String, nullable=True, index=True)
    trial_consumed = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    tier_updated_at = Column(DateTime, nullable=True)
    last_login_at = Column(DateTime, nullable=True)


class Subscription(Base):
    """
    Local mirror of one provider subscription.
    Provider timestamps are stored as epoch seconds, the way the provider reports them.
    """
    __tablename__ = "subscriptions"
    __table_args__ = (
        Index("ix_subscriptions_user_status", "user_id", "status"),
    )

    id = Column(Integer, primary_key=True, index=True)
    stripe_subscription_id = Column(String, unique=True, nullable=False, index=True)
    user_id = Column(String, ForeignKey("users.id"), nullable=False)
    tier_id = Column(String, nullable=False)
    status = Column(String, nullable=False)
    billing_interval = Column(String, nullable=True)
    period_start = Column(BigInteger, nullable=True)
    period_end = Column(BigInteger, nullable=True)
    cancel_at_period_end = Column(Boolean, default=False, nullable=False)
    canceled_at = Column(BigInteger, nullable=True)
    ended_at = Column(BigInteger, nullable=True)
    # Provider-side time of the state this row reflects; older plans are skipped
    state_version = Column(BigInteger, nullable=False, default=0)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    @property
    def is_closed(self) -> bool:
        """Deleted at the provider; only another deletion may touch the row."""
        return self.status == "canceled" and self.ended_at is not None


class BillingEvent(Base):
    """Provider event ids already reconciled, for redelivery detection."""
    __tablename__ = "billing_events"

    event_id = Column(String, primary_key=True)
    event_type = Column(String, nullable=False, index=True)
    provider_created = Column(BigInteger, nullable=True)
    processed_at = Column(DateTime, default=datetime.utcnow, nullable=False)

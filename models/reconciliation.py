from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class SubscriptionWrite(BaseModel):
    """
    Replace-with-latest write for one subscription row.
    Only the keys present in ``fields`` are replaced; ``user_id`` and
    ``tier_id`` are required when the row does not exist yet.
    """
    stripe_subscription_id: str
    user_id: Optional[str] = None
    fields: Dict[str, Any] = Field(default_factory=dict)
    state_version: int = 0
    create_if_missing: bool = True
    # Terminal writes (deletion) apply regardless of the stored state_version
    terminal: bool = False


class UserTierChange(BaseModel):
    user_id: str
    tier_id: str
    stripe_customer_id: Optional[str] = None
    consume_trial: bool = False


class ReconciliationPlan(BaseModel):
    """Every row mutation one event implies; applied as a single transaction."""
    event_id: str
    event_type: str
    event_created: int = 0
    subscription: Optional[SubscriptionWrite] = None
    user_change: Optional[UserTierChange] = None
    reason: Optional[str] = None
    # Operator alert code raised by this decision, if any
    alert: Optional[str] = None

    @property
    def is_noop(self) -> bool:
        return self.subscription is None and self.user_change is None

    @classmethod
    def noop(cls, event, reason: str, alert: Optional[str] = None) -> "ReconciliationPlan":
        return cls(
            event_id=event.id,
            event_type=event.type,
            event_created=event.created,
            reason=reason,
            alert=alert,
        )


class ApplyStatus(str, Enum):
    COMMITTED = "committed"
    FAILED = "failed"


class ApplyResult(BaseModel):
    status: ApplyStatus
    detail: str = "applied"
    trial_consumed_now: Optional[bool] = None
    error: Optional[str] = None

    @property
    def committed(self) -> bool:
        return self.status == ApplyStatus.COMMITTED

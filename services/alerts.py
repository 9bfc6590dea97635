"""
Operator alerts for billing events that were acknowledged but need a human
"""
import logging

alert_logger = logging.getLogger("billing.alerts")

UNKNOWN_PRICE = "unknown_price"
UNKNOWN_USER = "unknown_user"
UNKNOWN_OWNER = "unknown_owner"
TRIAL_REUSED = "trial_reused"


def emit_alert(code: str, message: str, **context) -> None:
    """Log an alert line log-based alerting can match on via ``alert=<code>``."""
    details = " ".join(f"{key}={value}" for key, value in sorted(context.items()))
    alert_logger.error(f"alert={code} {message} {details}".rstrip())

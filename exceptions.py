"""
Error taxonomy for billing reconciliation and the request-scoped routes
"""
from fastapi import HTTPException, status


class BillingError(Exception):
    """Base class for reconciliation pipeline failures."""


class VerificationError(BillingError):
    """Raised when an inbound event cannot be authenticated or parsed.

    Terminal: answered with a client error and never retried.
    """


class ConfigurationError(BillingError):
    """Raised when a provider price has no tier mapping.

    The event is acknowledged as a no-op and operators are alerted.
    """

    def __init__(self, message: str, price_key: str = None):
        super().__init__(message)
        self.price_key = price_key


class TransientProviderError(BillingError):
    """Raised when re-fetching state from the billing provider fails."""


class PersistenceError(BillingError):
    """Raised when a reconciliation transaction cannot be committed."""


class AuthenticationError(HTTPException):
    """Exception raised for authentication failures."""

    def __init__(self, message: str = "Authentication failed"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=message,
            headers={"WWW-Authenticate": "Bearer"}
        )


class NotFoundError(HTTPException):
    """Exception raised when a billing resource for the user does not exist."""

    def __init__(self, message: str):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=message
        )

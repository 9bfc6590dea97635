"""
Authentication dependencies for request-scoped routes
"""

import logging
from typing import Optional
from fastapi import Header, Depends, Cookie
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from database_models import User
from crud.user import UserRepository
from auth_utils import decode_jwt
from exceptions import AuthenticationError, NotFoundError

logger = logging.getLogger(__name__)


class Identity(BaseModel):
    """Verified caller identity supplied by the token issuer."""
    user_id: str
    email: Optional[str] = None
    display_name: Optional[str] = None


async def get_current_identity(
    auth_token: Optional[str] = Cookie(None),
    authorization: Optional[str] = Header(None, alias="Authorization"),
) -> Identity:
    """
    Dependency function to get the verified caller identity.

    Authentication priority:
    1. Check auth_token cookie first (httpOnly cookie)
    2. Fallback to Authorization header (Bearer token) for API consumers
    3. Raise 401 if neither is found
    """
    token = None
    if auth_token:
        token = auth_token
    elif authorization and authorization.startswith("Bearer "):
        token = authorization.replace("Bearer ", "").strip()

    if not token:
        raise AuthenticationError("Missing authentication token")

    try:
        payload = decode_jwt(token)
    except ValueError as e:
        logger.error(f"Token verification unavailable: {e}")
        raise AuthenticationError("Authentication is not configured")
    if not payload:
        raise AuthenticationError("Invalid or expired token")

    user_id = payload.get("sub")
    if not user_id:
        raise AuthenticationError("Invalid token payload")

    return Identity(user_id=user_id, email=payload.get("email"), display_name=payload.get("name"))


async def get_current_user(
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db)
) -> User:
    """Dependency returning the caller's stored user record."""
    user = await UserRepository(db).get_user_by_id(identity.user_id)
    if user is None:
        raise NotFoundError("User profile not found")
    return user

"""
Identity tokens: HS256 JWTs issued by the identity collaborator.

The billing API never logs anyone in. It only checks that a bearer token was
signed with the shared secret and reads the caller's id (``sub``) plus the
optional ``email`` / ``name`` claims used to register a profile on first sight.
"""

import jwt
from datetime import datetime, timedelta
from typing import Any, Dict, Optional
from config import settings

ALGORITHM = "HS256"
TOKEN_LIFETIME = timedelta(days=7)


def _signing_key() -> str:
    if not settings.jwt_secret_key:
        raise ValueError("JWT_SECRET_KEY is not set; identity tokens cannot be signed or verified")
    return settings.jwt_secret_key


def _sign(claims: Dict[str, Any], expires_at: datetime) -> str:
    claims = {key: value for key, value in claims.items() if value is not None}
    claims["exp"] = expires_at
    return jwt.encode(claims, _signing_key(), algorithm=ALGORITHM)


def create_jwt(user_id: str, email: Optional[str] = None, name: Optional[str] = None) -> str:
    """Issue a token the way the identity collaborator does (local tooling and tests)."""
    return _sign({"sub": user_id, "email": email, "name": name}, datetime.utcnow() + TOKEN_LIFETIME)


def decode_jwt(token: str) -> Optional[Dict[str, Any]]:
    """
    Verify an identity token.

    Returns:
        The claims, or None for a bad signature, a malformed token or an expired one

    Raises:
        ValueError: If no signing secret is configured
    """
    key = _signing_key()
    try:
        return jwt.decode(token, key, algorithms=[ALGORITHM])
    except jwt.InvalidTokenError:
        return None


def create_expired_jwt(user_id: str, expired_seconds_ago: int = 1) -> str:
    """Token whose expiry is already in the past."""
    return _sign({"sub": user_id}, datetime.utcnow() - timedelta(seconds=expired_seconds_ago))

"""
Bearer tokens.

The identity provider issues tokens; the core only reads who the caller is.
A token is accepted when its signature and expiry check out and it names
the caller in a non-empty `user_id` claim.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt

from fleetcore.core.config import settings


def create_access_token(user_id: str, email: Optional[str] = None, expires_delta: Optional[timedelta] = None) -> str:
    """Sign a token for `user_id` (used by the identity provider and tests)."""
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=settings.access_token_expire_minutes))
    claims = {"user_id": user_id, "exp": expire}
    if email:
        claims["sub"] = email
    return jwt.encode(claims, settings.secret_key, algorithm=settings.algorithm)


def caller_id_from_token(token: str) -> Optional[str]:
    """
    The `user_id` claim of a valid token.

    Returns:
        The caller id, or None when the token is malformed, expired,
        wrongly signed, or carries no usable `user_id`
    """
    try:
        claims = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except JWTError:
        return None

    user_id = claims.get("user_id")
    if not isinstance(user_id, str) or not user_id.strip():
        return None
    return user_id

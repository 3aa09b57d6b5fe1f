"""
Authentication dependencies for FastAPI.

This module resolves the bearer token to an Actor through the Identity Gate.
"""

from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from fleetcore.core.exceptions import Unauthenticated
from fleetcore.core.jwt import caller_id_from_token
from fleetcore.db.session import get_db
from fleetcore.services.identity import Actor, IdentityGate

# HTTP Bearer security scheme (missing header handled below, not by FastAPI)
security = HTTPBearer(auto_error=False)


async def get_current_actor(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: AsyncSession = Depends(get_db)
) -> Actor:
    """
    Resolve the bearer token to the calling Actor.

    The token only names the caller; tenant and role always come from the
    live users table, so a deactivated user is rejected at once.

    Raises:
        Unauthenticated: 401 if any step fails
    """
    if credentials is None:
        raise Unauthenticated("Missing bearer token")
    
    user_id = caller_id_from_token(credentials.credentials)
    if user_id is None:
        raise Unauthenticated("Could not validate credentials")

    return await IdentityGate.authorize(db, user_id)

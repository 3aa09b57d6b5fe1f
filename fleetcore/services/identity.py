"""
Identity Gate.

Resolves a caller to (user id, tenant id, role). Pure lookup, no mutation.
Every other component receives the resolved Actor as a parameter and never
re-derives identity itself.
"""

from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from fleetcore.core.exceptions import Unauthenticated
from fleetcore.models.enums import UserRole
from fleetcore.models.user import User


@dataclass(frozen=True)
class Actor:
    """A resolved caller."""
    user_id: str
    tenant_id: str
    role: UserRole


class IdentityGate:

    @staticmethod
    async def authorize(db: AsyncSession, caller_id: str) -> Actor:
        """
        Resolve a caller id supplied by the identity provider.

        Args:
            db: Database session
            caller_id: Public user id taken from the verified token

        Returns:
            Actor with the caller's tenant and role

        Raises:
            Unauthenticated: If no active user has this id
        """
        if not caller_id:
            raise Unauthenticated("Missing caller identity")

        result = await db.execute(
            select(User)
            .where(User.id == str(caller_id))
            .order_by(User.created_at, User.pk)
            .limit(1)
        )
        user = result.scalar_one_or_none()

        if user is None:
            raise Unauthenticated("User not found")
        if not user.is_active:
            raise Unauthenticated("User account is inactive")

        return Actor(user_id=user.id, tenant_id=user.tenant_id, role=user.role)

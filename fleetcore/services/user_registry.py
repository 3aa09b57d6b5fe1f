"""
User registry service.

Users are invited into a tenant by a manager (technicians) or by an
admin/owner (managers and admins). Each new seat is checked against the
tier's quota for its class inside the same unit of work as the insert.
"""

import logging
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from fleetcore.core.exceptions import Forbidden
from fleetcore.core.guards import Operation, enforce
from fleetcore.core.locks import quota_key
from fleetcore.db.transaction import serialized
from fleetcore.domain.quota.quota_ledger import QuotaLedger, resource_class_for_role
from fleetcore.models.enums import UserRole
from fleetcore.models.user import User
from fleetcore.schemas.user import UserCreate
from fleetcore.services.audit import AuditAction, record_event
from fleetcore.services.identity import Actor
from fleetcore.services.lookup import get_or_404

logger = logging.getLogger(__name__)


async def create_user(db: AsyncSession, actor: Actor, data: UserCreate) -> User:
    """
    Create a technician, manager or admin in the caller's tenant.

    Args:
        db: Database session
        actor: Resolved caller
        data: Invitation details

    Returns:
        Created user

    Raises:
        Forbidden: If the role may not be created by the caller (or is OWNER)
        QuotaExceeded: If the tier's limit for the role's class is reached
    """
    if data.role == UserRole.OWNER:
        raise Forbidden("The owner seat cannot be created", details={"role": data.role.value})

    operation = Operation.USER_CREATE_TECHNICIAN if data.role == UserRole.TECHNICIAN else Operation.USER_CREATE_MANAGER
    enforce(actor, operation)

    resource_class = resource_class_for_role(data.role)

    async with serialized(db, [quota_key(actor.tenant_id, resource_class.value)]):
        await QuotaLedger.enforce(db, actor.tenant_id, resource_class)

        user = User(
            tenant_id=actor.tenant_id,
            email=data.email,
            full_name=data.full_name,
            role=data.role,
            is_active=True
        )
        db.add(user)
        await db.flush()

        record_event(
            db,
            AuditAction.USER_CREATED,
            tenant_id=actor.tenant_id,
            actor_id=actor.user_id,
            target_type="user",
            target_id=user.id,
            metadata={"email": user.email, "role": user.role.value}
        )

    logger.info("User %s (%s) created in tenant %s", user.id, user.role.value, actor.tenant_id)
    return user


async def get_user(db: AsyncSession, actor: Actor, user_id: str) -> User:
    enforce(actor, Operation.USER_READ)
    return await get_or_404(db, User, user_id, actor.tenant_id, "User")


async def list_users(db: AsyncSession, actor: Actor, role: Optional[UserRole] = None) -> List[User]:
    enforce(actor, Operation.USER_READ)

    query = select(User).where(User.tenant_id == actor.tenant_id)
    if role is not None:
        query = query.where(User.role == role)

    result = await db.execute(query.order_by(User.created_at, User.pk))
    return list(result.scalars().all())

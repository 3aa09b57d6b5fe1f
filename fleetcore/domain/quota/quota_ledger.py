"""
Quota Ledger (Domain Logic).

Given a tenant and a resource class, returns current usage and the tier's
maximum and refuses creations that would exceed it. Counts are always
recomputed from the live tables, never cached.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from fleetcore.core.exceptions import NotFound, QuotaExceeded
from fleetcore.domain.quota.tiers import quota_for_tier, per_unit_charge
from fleetcore.models.enums import ResourceClass, SubscriptionTier, UserRole
from fleetcore.models.tenant import Tenant
from fleetcore.models.user import User
from fleetcore.models.vehicle import Vehicle

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QuotaDecision:
    """Allow or Deny(limit). Deny is an expected outcome, not an error."""
    allowed: bool
    limit: Optional[int]
    current: int

    @property
    def denied(self) -> bool:
        return not self.allowed


def decide(tier: SubscriptionTier, resource_class: ResourceClass, current_count: int) -> QuotaDecision:
    """
    Pure quota decision.

    `current_count` excludes the resource about to be created, so the
    comparison is strict: with a limit of 5, a count of 4 is allowed and a
    count of 5 is denied.
    """
    limit = quota_for_tier(tier, resource_class)
    if limit is None:
        return QuotaDecision(allowed=True, limit=None, current=current_count)
    return QuotaDecision(allowed=current_count < limit, limit=limit, current=current_count)


ROLES_BY_CLASS = {
    ResourceClass.TECHNICIAN: (UserRole.TECHNICIAN,),
    ResourceClass.MANAGER: (UserRole.MANAGER, UserRole.ADMIN),
}


def resource_class_for_role(role: UserRole) -> Optional[ResourceClass]:
    """Quota class a new user of `role` consumes (None for the owner seat)."""
    for resource_class, roles in ROLES_BY_CLASS.items():
        if role in roles:
            return resource_class
    return None


class QuotaLedger:

    @staticmethod
    async def tier_of(db: AsyncSession, tenant_id: str) -> SubscriptionTier:
        tenant = await db.get(Tenant, tenant_id)
        if tenant is None:
            raise NotFound("Tenant", tenant_id)
        return tenant.tier

    @staticmethod
    async def current_usage(db: AsyncSession, tenant_id: str, resource_class: ResourceClass) -> int:
        """
        Count live resources of a class for a tenant.

        Vehicles: every vehicle row of the tenant.
        Technicians / managers: active users holding the matching roles.
        """
        if resource_class == ResourceClass.VEHICLE:
            query = select(func.count(Vehicle.pk)).where(Vehicle.tenant_id == tenant_id)
        else:
            query = select(func.count(User.pk)).where(
                User.tenant_id == tenant_id,
                User.is_active.is_(True),
                User.role.in_(ROLES_BY_CLASS[resource_class])
            )
        result = await db.execute(query)
        return result.scalar() or 0

    @staticmethod
    async def check_and_reserve(
        db: AsyncSession,
        tenant_id: str,
        resource_class: ResourceClass,
        current_count: int
    ) -> QuotaDecision:
        """
        Decide whether one more resource of this class is allowed.

        Args:
            db: Database session
            tenant_id: Tenant whose tier applies
            resource_class: vehicle, manager or technician
            current_count: Count before the new resource is added

        Returns:
            QuotaDecision (never raises for a denial)
        """
        tier = await QuotaLedger.tier_of(db, tenant_id)
        return decide(tier, resource_class, current_count)

    @staticmethod
    async def status(db: AsyncSession, tenant_id: str, resource_class: ResourceClass) -> dict:
        """Current usage, limit and whether one more is allowed."""
        tier = await QuotaLedger.tier_of(db, tenant_id)
        current = await QuotaLedger.current_usage(db, tenant_id, resource_class)
        decision = decide(tier, resource_class, current)
        return {
            "tenant_id": tenant_id,
            "resource_class": resource_class,
            "tier": tier,
            "current": current,
            "limit": decision.limit,
            "allowed": decision.allowed,
            "per_unit_charge": per_unit_charge(tier, resource_class),
        }

    @staticmethod
    async def enforce(db: AsyncSession, tenant_id: str, resource_class: ResourceClass) -> QuotaDecision:
        """
        Recount and decide inside the creation's serialized scope.

        Must run under the quota:<tenant>:<class> key together with the
        insert, otherwise two concurrent creations can both pass.

        Raises:
            QuotaExceeded: If the tier does not allow another resource
        """
        current = await QuotaLedger.current_usage(db, tenant_id, resource_class)
        decision = await QuotaLedger.check_and_reserve(db, tenant_id, resource_class, current)
        if decision.denied:
            logger.info(
                "Quota denied for tenant %s: %s %d/%s",
                tenant_id, resource_class.value, current, decision.limit
            )
            raise QuotaExceeded(resource_class.value, decision.limit, current)
        return decision

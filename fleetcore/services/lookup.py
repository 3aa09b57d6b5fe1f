"""
Id-based lookups shared by the domain services.

Aggregates refer to each other by public id only. Because public ids are
not unique at the storage level, every lookup resolves to the first row in
(created_at, pk) order, the same row the Integrity Auditor keeps.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Type

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from fleetcore.core.config import settings
from fleetcore.core.exceptions import NotFound
from fleetcore.domain.stock.location import LocationRef
from fleetcore.models.enums import SubscriptionTier, UserRole
from fleetcore.models.stock_enums import LocationType
from fleetcore.models.tenant import Tenant, TenantSettings
from fleetcore.models.vehicle import Vehicle
from fleetcore.models.warehouse import Warehouse


@dataclass(frozen=True)
class TenantConfig:
    """Tenant-scoped configuration passed explicitly into operations."""
    tenant_id: str
    tier: SubscriptionTier
    single_vehicle_per_technician: bool = False
    assignable_roles: List[UserRole] = field(default_factory=lambda: [UserRole.TECHNICIAN])
    assignment_future_tolerance_days: int = 365
    warehouse_enabled: bool = True
    tracking_enabled: bool = False


async def first_by_id(db: AsyncSession, model: Type, public_id: str, tenant_id: Optional[str] = None):
    """Return the canonical row with this public id, or None."""
    query = select(model).where(model.id == public_id)
    if tenant_id is not None:
        query = query.where(model.tenant_id == tenant_id)
    query = query.order_by(model.created_at, model.pk).limit(1).execution_options(populate_existing=True)
    result = await db.execute(query)
    return result.scalar_one_or_none()


async def get_or_404(db: AsyncSession, model: Type, public_id: str, tenant_id: str, resource_name: str):
    """Like first_by_id, but a missing or foreign row raises NotFound."""
    row = await first_by_id(db, model, public_id, tenant_id)
    if row is None:
        raise NotFound(resource_name, public_id)
    return row


async def load_tenant_config(db: AsyncSession, tenant_id: str) -> TenantConfig:
    """
    Read the tenant's tier and settings record.

    Raises:
        NotFound: If the tenant does not exist
    """
    tenant = await db.get(Tenant, tenant_id)
    if tenant is None:
        raise NotFound("Tenant", tenant_id)

    record = await db.get(TenantSettings, tenant_id)
    if record is None:
        return TenantConfig(
            tenant_id=tenant_id,
            tier=tenant.tier,
            assignment_future_tolerance_days=settings.assignment_future_tolerance_days,
        )

    tolerance = record.assignment_future_tolerance_days
    return TenantConfig(
        tenant_id=tenant_id,
        tier=tenant.tier,
        single_vehicle_per_technician=record.single_vehicle_per_technician,
        assignable_roles=[UserRole(role) for role in (record.assignable_roles or [UserRole.TECHNICIAN.value])],
        assignment_future_tolerance_days=tolerance if tolerance is not None else settings.assignment_future_tolerance_days,
        warehouse_enabled=record.warehouse_enabled,
        tracking_enabled=record.tracking_enabled,
    )


async def location_exists(db: AsyncSession, location: LocationRef, tenant_id: Optional[str] = None) -> bool:
    model = Warehouse if location.kind == LocationType.WAREHOUSE else Vehicle
    return await first_by_id(db, model, location.id, tenant_id) is not None


async def require_location(db: AsyncSession, location: LocationRef, tenant_id: str) -> None:
    """
    Raises:
        NotFound: If the warehouse or vehicle does not exist in the tenant
    """
    if not await location_exists(db, location, tenant_id):
        resource = "Warehouse" if location.kind == LocationType.WAREHOUSE else "Vehicle"
        raise NotFound(resource, location.id)

"""
Tenant settings service.

The settings record is the only place tenant-wide toggles live. Operations
load it inside their own transaction as a TenantConfig value.
"""

from sqlalchemy.ext.asyncio import AsyncSession

from fleetcore.core.guards import Operation, enforce
from fleetcore.db.transaction import serialized
from fleetcore.models.tenant import TenantSettings
from fleetcore.schemas.tenant import TenantSettingsUpdate
from fleetcore.services.audit import AuditAction, record_event
from fleetcore.services.identity import Actor
from fleetcore.services.lookup import TenantConfig, load_tenant_config


async def get_settings(db: AsyncSession, actor: Actor) -> TenantConfig:
    enforce(actor, Operation.TENANT_SETTINGS_READ)
    return await load_tenant_config(db, actor.tenant_id)


async def update_settings(db: AsyncSession, actor: Actor, data: TenantSettingsUpdate) -> TenantConfig:
    """
    Create or update the tenant's settings record.

    Returns:
        The effective configuration after the update
    """
    enforce(actor, Operation.TENANT_SETTINGS_WRITE)
    changes = data.model_dump(exclude_unset=True, exclude_none=True)

    async with serialized(db, [f"tenant_settings:{actor.tenant_id}"]):
        # Raises NotFound for an unknown tenant before anything is written
        await load_tenant_config(db, actor.tenant_id)

        record = await db.get(TenantSettings, actor.tenant_id)
        if record is None:
            record = TenantSettings(tenant_id=actor.tenant_id)
            db.add(record)

        for field, value in changes.items():
            if field == "assignable_roles":
                value = [role.value for role in value]
            setattr(record, field, value)
        await db.flush()

        record_event(
            db,
            AuditAction.TENANT_SETTINGS_UPDATED,
            tenant_id=actor.tenant_id,
            actor_id=actor.user_id,
            target_type="tenant",
            target_id=actor.tenant_id,
            metadata=data.model_dump(mode="json", exclude_unset=True, exclude_none=True)
        )

        config = await load_tenant_config(db, actor.tenant_id)

    return config

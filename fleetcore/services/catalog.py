"""
Warehouse and inventory catalog service.
"""

import logging
from typing import List

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from fleetcore.core.exceptions import Forbidden
from fleetcore.core.guards import Operation, enforce
from fleetcore.db.transaction import serialized
from fleetcore.models.inventory_item import InventoryItem
from fleetcore.models.warehouse import Warehouse
from fleetcore.schemas.catalog import InventoryItemCreate, WarehouseCreate
from fleetcore.services.audit import AuditAction, record_event
from fleetcore.services.identity import Actor
from fleetcore.services.lookup import load_tenant_config

logger = logging.getLogger(__name__)


async def create_warehouse(db: AsyncSession, actor: Actor, data: WarehouseCreate) -> Warehouse:
    """
    Register a warehouse.

    Raises:
        Forbidden: If warehouses are disabled in the tenant's settings
    """
    enforce(actor, Operation.CATALOG_WRITE)

    async with serialized(db, []):
        config = await load_tenant_config(db, actor.tenant_id)
        if not config.warehouse_enabled:
            raise Forbidden("Warehouses are disabled for this tenant")

        warehouse = Warehouse(tenant_id=actor.tenant_id, name=data.name, address=data.address)
        db.add(warehouse)
        await db.flush()

        record_event(
            db,
            AuditAction.WAREHOUSE_CREATED,
            tenant_id=actor.tenant_id,
            actor_id=actor.user_id,
            target_type="warehouse",
            target_id=warehouse.id,
            metadata={"name": warehouse.name}
        )

    return warehouse


async def list_warehouses(db: AsyncSession, actor: Actor) -> List[Warehouse]:
    enforce(actor, Operation.STOCK_READ)
    result = await db.execute(
        select(Warehouse)
        .where(Warehouse.tenant_id == actor.tenant_id)
        .order_by(Warehouse.created_at, Warehouse.pk)
    )
    return list(result.scalars().all())


async def create_inventory_item(db: AsyncSession, actor: Actor, data: InventoryItemCreate) -> InventoryItem:
    """Add a part or consumable to the tenant's catalog."""
    enforce(actor, Operation.CATALOG_WRITE)

    async with serialized(db, []):
        item = InventoryItem(tenant_id=actor.tenant_id, **data.model_dump())
        db.add(item)
        await db.flush()

        record_event(
            db,
            AuditAction.INVENTORY_ITEM_CREATED,
            tenant_id=actor.tenant_id,
            actor_id=actor.user_id,
            target_type="inventory_item",
            target_id=item.id,
            metadata={"name": item.name, "price_per_unit": item.price_per_unit}
        )

    logger.info("Inventory item %s (%s) added", item.id, item.name)
    return item


async def list_inventory_items(db: AsyncSession, actor: Actor) -> List[InventoryItem]:
    enforce(actor, Operation.STOCK_READ)
    result = await db.execute(
        select(InventoryItem)
        .where(InventoryItem.tenant_id == actor.tenant_id)
        .order_by(InventoryItem.name, InventoryItem.pk)
    )
    return list(result.scalars().all())

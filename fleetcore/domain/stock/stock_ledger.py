"""
Stock Ledger (Domain Logic).

Per-location quantities of inventory items. Quantities never go negative,
min/max bookkeeping stays consistent, and a transfer changes both sides in
one transaction or not at all.

Every write runs under stock:<location>:<item> keys, plus vehicle:<id> when a
side of the write is a vehicle, so it cannot interleave with that vehicle's
deletion. A transfer locks the source and destination keys in global order,
so two opposite-direction transfers of the same item cannot deadlock.
"""

import logging
from typing import List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from fleetcore.core.exceptions import (
    InsufficientStock,
    InvalidLocation,
    InvalidQuantity,
    InvalidStockBounds,
    NotFound,
)
from fleetcore.core.guards import Operation, enforce
from fleetcore.core.locks import stock_key, vehicle_key
from fleetcore.db.transaction import serialized
from fleetcore.domain.stock.location import LocationRef
from fleetcore.models.inventory_item import InventoryItem
from fleetcore.models.stock_enums import LocationType
from fleetcore.models.stock_location_item import StockLocationItem
from fleetcore.models.stock_transfer import StockTransfer
from fleetcore.services.audit import AuditAction, record_event
from fleetcore.services.identity import Actor
from fleetcore.services.lookup import get_or_404, require_location

logger = logging.getLogger(__name__)


def location_filter(location: LocationRef):
    if location.kind == LocationType.WAREHOUSE:
        return StockLocationItem.warehouse_id == location.id
    return StockLocationItem.vehicle_id == location.id


def location_keys(location: LocationRef, item_id: str) -> List[str]:
    """Lock keys for writing one item at one location."""
    keys = [stock_key(str(location), item_id)]
    if location.kind == LocationType.VEHICLE:
        keys.append(vehicle_key(location.id))
    return keys


def validate_bounds(minimum: int, maximum: Optional[int]) -> None:
    """
    Raises:
        InvalidStockBounds: If minimum < 0 or maximum < minimum
    """
    if minimum < 0 or (maximum is not None and maximum < minimum):
        raise InvalidStockBounds(minimum, maximum)


async def get_row(db: AsyncSession, location: LocationRef, item_id: str) -> Optional[StockLocationItem]:
    result = await db.execute(
        select(StockLocationItem)
        .where(StockLocationItem.inventory_item_id == item_id, location_filter(location))
        .order_by(StockLocationItem.created_at, StockLocationItem.pk)
        .execution_options(populate_existing=True)
    )
    return result.scalars().first()


async def rows_at_location(db: AsyncSession, location: LocationRef) -> List[StockLocationItem]:
    result = await db.execute(
        select(StockLocationItem)
        .where(location_filter(location))
        .order_by(StockLocationItem.inventory_item_id, StockLocationItem.pk)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


def new_row(
    tenant_id: str,
    location: LocationRef,
    item_id: str,
    quantity: int = 0,
    minimum: int = 0,
    maximum: Optional[int] = None
) -> StockLocationItem:
    return StockLocationItem(
        tenant_id=tenant_id,
        inventory_item_id=item_id,
        quantity=quantity,
        minimum_stock_level=minimum,
        max_stock_level=maximum,
        **location.column_values()
    )


async def transfer_locked(
    db: AsyncSession,
    actor: Actor,
    source: LocationRef,
    destination: LocationRef,
    item_id: str,
    quantity: int,
    destination_minimum: int = 0,
    destination_maximum: Optional[int] = None,
    reason: Optional[str] = None
) -> Tuple[StockLocationItem, StockLocationItem]:
    """
    Move stock between two locations. The caller holds both stock keys.

    Raises:
        InsufficientStock: If the source holds less than `quantity`
        NotFound: If the destination does not exist in the tenant
    """
    await require_location(db, destination, actor.tenant_id)

    source_row = await get_row(db, source, item_id)
    available = source_row.quantity if source_row is not None else 0
    if available < quantity:
        raise InsufficientStock(str(source), item_id, available, quantity)

    destination_row = await get_row(db, destination, item_id)
    if destination_row is None:
        destination_row = new_row(
            actor.tenant_id, destination, item_id,
            minimum=destination_minimum, maximum=destination_maximum
        )
        db.add(destination_row)

    source_row.quantity -= quantity
    destination_row.quantity += quantity

    db.add(StockTransfer(
        tenant_id=actor.tenant_id,
        inventory_item_id=item_id,
        from_location=str(source),
        to_location=str(destination),
        quantity=quantity,
        performed_by=actor.user_id,
        reason=reason
    ))
    await db.flush()

    record_event(
        db,
        AuditAction.STOCK_TRANSFERRED,
        tenant_id=actor.tenant_id,
        actor_id=actor.user_id,
        target_type="inventory_item",
        target_id=item_id,
        metadata={
            "from": str(source),
            "to": str(destination),
            "quantity": quantity,
            "reason": reason
        }
    )
    return source_row, destination_row


class StockLedger:

    @staticmethod
    async def set_quantity(
        db: AsyncSession,
        actor: Actor,
        location: LocationRef,
        item_id: str,
        quantity: int,
        prune_if_zero: bool = False
    ) -> Optional[StockLocationItem]:
        """
        Directly set the quantity at a location (manual count correction).

        Creates the row the first time stock is placed at the location.
        With prune_if_zero, setting 0 deletes the row and returns None.

        Raises:
            InvalidQuantity: If quantity is negative
            NotFound: If the location or item does not exist in the tenant
        """
        enforce(actor, Operation.STOCK_WRITE)
        if quantity < 0:
            raise InvalidQuantity(quantity)

        async with serialized(db, location_keys(location, item_id)):
            await require_location(db, location, actor.tenant_id)
            await get_or_404(db, InventoryItem, item_id, actor.tenant_id, "InventoryItem")

            row = await get_row(db, location, item_id)
            previous = row.quantity if row is not None else None

            if quantity == 0 and prune_if_zero:
                if row is not None:
                    await db.delete(row)
                row = None
            else:
                if row is None:
                    row = new_row(actor.tenant_id, location, item_id)
                    db.add(row)
                row.quantity = quantity
                await db.flush()

            record_event(
                db,
                AuditAction.STOCK_QUANTITY_SET,
                tenant_id=actor.tenant_id,
                actor_id=actor.user_id,
                target_type="inventory_item",
                target_id=item_id,
                metadata={
                    "location": str(location),
                    "previous": previous,
                    "quantity": quantity,
                    "pruned": row is None
                }
            )

        return row

    @staticmethod
    async def adjust_min_max(
        db: AsyncSession,
        actor: Actor,
        location: LocationRef,
        item_id: str,
        minimum: int,
        maximum: Optional[int] = None
    ) -> StockLocationItem:
        """
        Set minimum / maximum stock levels. Nothing is applied on a bounds violation.

        Raises:
            InvalidStockBounds: If minimum < 0 or maximum < minimum
            NotFound: If the location or item does not exist in the tenant
        """
        enforce(actor, Operation.STOCK_WRITE)
        validate_bounds(minimum, maximum)

        async with serialized(db, location_keys(location, item_id)):
            await require_location(db, location, actor.tenant_id)
            await get_or_404(db, InventoryItem, item_id, actor.tenant_id, "InventoryItem")

            row = await get_row(db, location, item_id)
            if row is None:
                row = new_row(actor.tenant_id, location, item_id)
                db.add(row)
            row.minimum_stock_level = minimum
            row.max_stock_level = maximum
            await db.flush()

            record_event(
                db,
                AuditAction.STOCK_LEVELS_ADJUSTED,
                tenant_id=actor.tenant_id,
                actor_id=actor.user_id,
                target_type="inventory_item",
                target_id=item_id,
                metadata={"location": str(location), "minimum": minimum, "maximum": maximum}
            )

        return row

    @staticmethod
    async def transfer(
        db: AsyncSession,
        actor: Actor,
        source: LocationRef,
        destination: LocationRef,
        item_id: str,
        quantity: int,
        destination_minimum: int = 0,
        destination_maximum: Optional[int] = None,
        reason: Optional[str] = None
    ) -> Tuple[StockLocationItem, StockLocationItem]:
        """
        Atomically move `quantity` units of an item from source to destination.

        The destination row is created when missing, with the given (or
        default 0 / unset) min/max levels.

        Returns:
            (source row, destination row) after the transfer

        Raises:
            InvalidQuantity: If quantity <= 0
            InvalidLocation: If source and destination are the same
            InvalidStockBounds: If the destination levels are inconsistent
            InsufficientStock: If the source holds less than quantity
            NotFound: If a location or the item does not exist in the tenant
        """
        enforce(actor, Operation.STOCK_WRITE)
        if quantity <= 0:
            raise InvalidQuantity(quantity, "Transfer quantity must be positive")
        if source == destination:
            raise InvalidLocation("Source and destination must differ", str(source))
        validate_bounds(destination_minimum, destination_maximum)

        keys = location_keys(source, item_id) + location_keys(destination, item_id)
        async with serialized(db, keys):
            await require_location(db, source, actor.tenant_id)
            await get_or_404(db, InventoryItem, item_id, actor.tenant_id, "InventoryItem")
            source_row, destination_row = await transfer_locked(
                db, actor, source, destination, item_id, quantity,
                destination_minimum, destination_maximum, reason
            )

        logger.info("Transferred %d x %s from %s to %s", quantity, item_id, source, destination)
        return source_row, destination_row

    @staticmethod
    async def get(db: AsyncSession, actor: Actor, location: LocationRef, item_id: str) -> StockLocationItem:
        enforce(actor, Operation.STOCK_READ)
        await require_location(db, location, actor.tenant_id)
        row = await get_row(db, location, item_id)
        if row is None:
            raise NotFound("Stock", f"{location}/{item_id}")
        return row

    @staticmethod
    async def below_minimum(db: AsyncSession, actor: Actor, location: LocationRef, item_id: str) -> bool:
        """True when quantity < minimum stock level at the location."""
        row = await StockLedger.get(db, actor, location, item_id)
        return row.is_below_minimum

    @staticmethod
    async def list_at_location(db: AsyncSession, actor: Actor, location: LocationRef) -> List[StockLocationItem]:
        enforce(actor, Operation.STOCK_READ)
        await require_location(db, location, actor.tenant_id)
        return await rows_at_location(db, location)

    @staticmethod
    async def low_stock(db: AsyncSession, actor: Actor) -> List[StockLocationItem]:
        """Every row of the tenant whose quantity is below its minimum."""
        enforce(actor, Operation.STOCK_READ)
        result = await db.execute(
            select(StockLocationItem)
            .where(
                StockLocationItem.tenant_id == actor.tenant_id,
                StockLocationItem.quantity < StockLocationItem.minimum_stock_level
            )
            .order_by(StockLocationItem.inventory_item_id, StockLocationItem.pk)
        )
        return list(result.scalars().all())

    @staticmethod
    async def aggregate_across_locations(db: AsyncSession, actor: Actor, item_id: str) -> dict:
        """
        Roll up an item across every warehouse and vehicle.

        All rows are read by a single statement, and transfers commit both
        sides together, so the total never observes half a transfer.
        """
        enforce(actor, Operation.STOCK_READ)
        item = await get_or_404(db, InventoryItem, item_id, actor.tenant_id, "InventoryItem")

        result = await db.execute(
            select(StockLocationItem)
            .where(
                StockLocationItem.tenant_id == actor.tenant_id,
                StockLocationItem.inventory_item_id == item_id
            )
            .order_by(StockLocationItem.pk)
        )
        rows = list(result.scalars().all())

        total_quantity = sum(row.quantity for row in rows)
        return {
            "item_id": item_id,
            "total_quantity": total_quantity,
            "total_value": round(total_quantity * (item.price_per_unit or 0.0), 2),
            "locations": [
                {"location": str(LocationRef.of_row(row)), "quantity": row.quantity}
                for row in rows
            ],
        }

    @staticmethod
    async def transfer_log(
        db: AsyncSession,
        actor: Actor,
        item_id: Optional[str] = None,
        limit: int = 100
    ) -> List[StockTransfer]:
        enforce(actor, Operation.STOCK_READ)
        query = select(StockTransfer).where(StockTransfer.tenant_id == actor.tenant_id)
        if item_id:
            query = query.where(StockTransfer.inventory_item_id == item_id)
        query = query.order_by(StockTransfer.transferred_at.desc(), StockTransfer.pk.desc()).limit(limit)
        result = await db.execute(query)
        return list(result.scalars().all())

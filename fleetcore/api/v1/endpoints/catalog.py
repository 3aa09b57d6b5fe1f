"""
Warehouse and inventory catalog API Endpoints.
"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from fleetcore.core.dependencies import get_current_actor
from fleetcore.core.guards import Operation, require_operation
from fleetcore.core.reliability import call_with_storage_retry
from fleetcore.db.session import get_db
from fleetcore.schemas.catalog import (
    InventoryItemCreate,
    InventoryItemListResponse,
    InventoryItemResponse,
    WarehouseCreate,
    WarehouseListResponse,
    WarehouseResponse,
)
from fleetcore.services import catalog
from fleetcore.services.identity import Actor

router = APIRouter(tags=["Catalog"])


@router.post("/warehouses", response_model=WarehouseResponse, status_code=status.HTTP_201_CREATED)
async def create_warehouse(
    data: WarehouseCreate,
    actor: Actor = Depends(require_operation(Operation.CATALOG_WRITE)),
    db: AsyncSession = Depends(get_db)
):
    """Register a warehouse (403 when warehouses are disabled for the tenant)."""
    warehouse = await call_with_storage_retry(catalog.create_warehouse, db, actor, data)
    return WarehouseResponse.model_validate(warehouse)


@router.get("/warehouses", response_model=WarehouseListResponse)
async def list_warehouses(
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db)
):
    warehouses = await catalog.list_warehouses(db, actor)
    return WarehouseListResponse(
        warehouses=[WarehouseResponse.model_validate(warehouse) for warehouse in warehouses],
        total=len(warehouses)
    )


@router.post("/inventory-items", response_model=InventoryItemResponse, status_code=status.HTTP_201_CREATED)
async def create_inventory_item(
    data: InventoryItemCreate,
    actor: Actor = Depends(require_operation(Operation.CATALOG_WRITE)),
    db: AsyncSession = Depends(get_db)
):
    item = await call_with_storage_retry(catalog.create_inventory_item, db, actor, data)
    return InventoryItemResponse.model_validate(item)


@router.get("/inventory-items", response_model=InventoryItemListResponse)
async def list_inventory_items(
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db)
):
    items = await catalog.list_inventory_items(db, actor)
    return InventoryItemListResponse(
        items=[InventoryItemResponse.model_validate(item) for item in items],
        total=len(items)
    )

"""
Warehouse and inventory catalog schemas.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional, List


class WarehouseCreate(BaseModel):
    """Schema for registering a warehouse."""
    name: str = Field(..., min_length=1, max_length=255)
    address: Optional[str] = Field(None, max_length=500)


class WarehouseResponse(BaseModel):
    id: str
    tenant_id: str
    name: str
    address: Optional[str]
    is_active: bool
    created_at: datetime

    class Config:
        from_attributes = True


class WarehouseListResponse(BaseModel):
    warehouses: List[WarehouseResponse]
    total: int


class InventoryItemCreate(BaseModel):
    """Schema for adding a part or consumable to the catalog."""
    name: str = Field(..., min_length=1, max_length=255)
    part_number: Optional[str] = Field(None, max_length=100)
    category: Optional[str] = Field(None, max_length=100)
    price_per_unit: float = Field(0.0, ge=0, description="Unit price used for stock valuation")
    supplier: Optional[str] = Field(None, max_length=255)


class InventoryItemResponse(BaseModel):
    id: str
    tenant_id: str
    name: str
    part_number: Optional[str]
    category: Optional[str]
    price_per_unit: float
    supplier: Optional[str]
    created_at: datetime

    class Config:
        from_attributes = True


class InventoryItemListResponse(BaseModel):
    items: List[InventoryItemResponse]
    total: int

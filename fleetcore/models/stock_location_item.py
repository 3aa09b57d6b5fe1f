"""
Stock Location Item database model.

Quantity of one inventory item held at one location (a warehouse XOR a vehicle).
"""

import uuid
from sqlalchemy import Column, Integer, String, DateTime, CheckConstraint, Index, text
from fleetcore.core.clock import utcnow
from fleetcore.db.session import Base
from fleetcore.models.stock_enums import LocationType


class StockLocationItem(Base):
    """
    Stock Location Item model.
    
    Exactly one of `warehouse_id` / `vehicle_id` is set. Quantity and
    minimum level are never negative; the maximum level, when set, is not
    below the minimum (checked by the Stock Ledger).
    """
    __tablename__ = "stock_location_items"
    
    pk = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String(64), index=True, nullable=False, default=lambda: str(uuid.uuid4()))
    tenant_id = Column(String(64), index=True, nullable=False)
    
    inventory_item_id = Column(String(64), nullable=False, index=True)
    
    # Location (tagged union stored as two exclusive columns)
    warehouse_id = Column(String(64), nullable=True, index=True)
    vehicle_id = Column(String(64), nullable=True, index=True)
    
    # Levels
    quantity = Column(Integer, default=0, nullable=False)
    minimum_stock_level = Column(Integer, default=0, nullable=False)
    max_stock_level = Column(Integer, nullable=True)
    
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)
    
    __table_args__ = (
        CheckConstraint(
            "(warehouse_id IS NULL AND vehicle_id IS NOT NULL) OR (warehouse_id IS NOT NULL AND vehicle_id IS NULL)",
            name="ck_stock_location_exclusive",
        ),
        CheckConstraint("quantity >= 0", name="ck_stock_quantity_non_negative"),
        CheckConstraint("minimum_stock_level >= 0", name="ck_stock_minimum_non_negative"),
        Index(
            "ix_stock_item_warehouse",
            "inventory_item_id", "warehouse_id",
            unique=True,
            postgresql_where=text("warehouse_id IS NOT NULL"),
            sqlite_where=text("warehouse_id IS NOT NULL"),
        ),
        Index(
            "ix_stock_item_vehicle",
            "inventory_item_id", "vehicle_id",
            unique=True,
            postgresql_where=text("vehicle_id IS NOT NULL"),
            sqlite_where=text("vehicle_id IS NOT NULL"),
        ),
    )
    
    @property
    def location_type(self) -> LocationType:
        return LocationType.WAREHOUSE if self.warehouse_id is not None else LocationType.VEHICLE
    
    @property
    def location_id(self) -> str:
        return self.warehouse_id if self.warehouse_id is not None else self.vehicle_id
    
    @property
    def is_below_minimum(self) -> bool:
        return self.quantity < self.minimum_stock_level
    
    def __repr__(self):
        return (
            f"<StockLocationItem(item='{self.inventory_item_id}', "
            f"location={self.location_type.value}:{self.location_id}, quantity={self.quantity})>"
        )

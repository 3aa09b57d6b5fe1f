"""
Inventory item (catalog) database model.
"""

import uuid
from sqlalchemy import Column, Integer, String, Float, DateTime
from fleetcore.core.clock import utcnow
from fleetcore.db.session import Base


class InventoryItem(Base):
    """
    Catalog definition of a part or consumable.
    
    Not owned by any location; stock rows reference it by `id`.
    """
    __tablename__ = "inventory_items"
    
    pk = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String(64), index=True, nullable=False, default=lambda: str(uuid.uuid4()))
    tenant_id = Column(String(64), index=True, nullable=False)
    
    name = Column(String(255), nullable=False)
    part_number = Column(String(100), nullable=True)
    category = Column(String(100), nullable=True)
    price_per_unit = Column(Float, default=0.0, nullable=False)
    supplier = Column(String(255), nullable=True)
    
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)
    
    def __repr__(self):
        return f"<InventoryItem(id='{self.id}', name='{self.name}')>"

"""
Stock Transfer log model.

Append-only record of every completed transfer between two locations.
"""

import uuid
from sqlalchemy import Column, Integer, String, DateTime
from fleetcore.core.clock import utcnow
from fleetcore.db.session import Base


class StockTransfer(Base):
    """One committed transfer. Written in the same transaction as the quantity change."""
    __tablename__ = "stock_transfers"
    
    pk = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String(64), index=True, nullable=False, default=lambda: str(uuid.uuid4()))
    tenant_id = Column(String(64), index=True, nullable=False)
    
    inventory_item_id = Column(String(64), nullable=False, index=True)
    from_location = Column(String(100), nullable=False)  # "warehouse:<id>" / "vehicle:<id>"
    to_location = Column(String(100), nullable=False)
    quantity = Column(Integer, nullable=False)
    
    performed_by = Column(String(64), nullable=True)
    reason = Column(String(100), nullable=True)
    transferred_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
    
    def __repr__(self):
        return f"<StockTransfer(item='{self.inventory_item_id}', {self.from_location} -> {self.to_location}, qty={self.quantity})>"

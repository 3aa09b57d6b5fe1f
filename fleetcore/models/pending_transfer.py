"""
Pending Transfer database model.

A manager's request to move stock from a warehouse onto a vehicle. Nothing
moves until the technician assigned to the vehicle accepts it.
"""

import uuid
from sqlalchemy import Column, Integer, String, DateTime, Enum, Text, CheckConstraint
from fleetcore.core.clock import utcnow
from fleetcore.db.session import Base
from fleetcore.models.stock_enums import PendingTransferStatus


class PendingTransfer(Base):
    """
    Transfer request awaiting acceptance.

    Status moves once, from PENDING to ACCEPTED or REJECTED; `processed_at`
    records when.
    """
    __tablename__ = "pending_transfers"
    
    pk = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String(64), index=True, nullable=False, default=lambda: str(uuid.uuid4()))
    tenant_id = Column(String(64), index=True, nullable=False)
    
    inventory_item_id = Column(String(64), nullable=False)
    from_warehouse_id = Column(String(64), nullable=False)
    to_vehicle_id = Column(String(64), nullable=False, index=True)
    quantity = Column(Integer, nullable=False)
    notes = Column(Text, nullable=True)
    
    requested_by = Column(String(64), nullable=False)
    assigned_technician_id = Column(String(64), nullable=False, index=True)
    
    status = Column(Enum(PendingTransferStatus), default=PendingTransferStatus.PENDING, nullable=False, index=True)
    requested_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    processed_at = Column(DateTime(timezone=True), nullable=True)
    rejection_reason = Column(String(255), nullable=True)
    
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    
    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_pending_transfers_quantity_positive"),
    )
    
    @property
    def is_pending(self) -> bool:
        return self.status == PendingTransferStatus.PENDING
    
    def __repr__(self):
        return f"<PendingTransfer(id='{self.id}', {self.from_warehouse_id} -> {self.to_vehicle_id}, qty={self.quantity}, status={self.status})>"

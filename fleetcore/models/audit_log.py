"""
Audit Log Database Model.

Tracks assignment, stock, fleet and integrity events for operators.
"""

from sqlalchemy import Column, Integer, String, DateTime, JSON
from fleetcore.core.clock import utcnow
from fleetcore.db.session import Base


class AuditLog(Base):
    """
    Audit log model.
    
    Events logged:
    - ASSIGNMENT_OPENED / ASSIGNMENT_CLOSED / VEHICLE_REASSIGNED
    - STOCK_QUANTITY_SET / STOCK_LEVELS_ADJUSTED / STOCK_TRANSFERRED
    - VEHICLE_CREATED / VEHICLE_DELETED / USER_CREATED / USER_DELETED
    - INTEGRITY_AUDIT_COMPLETED
    """
    __tablename__ = "audit_logs"
    
    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    
    # Tenant scope (None for system-wide sweeps)
    tenant_id = Column(String(64), index=True, nullable=True)
    
    # Who performed the action (None for system actions)
    actor_id = Column(String(64), index=True, nullable=True)
    
    # What action was performed
    action = Column(String(100), nullable=False, index=True)
    
    # What it was performed on
    target_type = Column(String(50), nullable=True)
    target_id = Column(String(64), index=True, nullable=True)
    
    # Additional context (JSON for flexibility)
    meta_data = Column(JSON, nullable=True)
    
    # Timestamp
    timestamp = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
    
    def __repr__(self):
        return f"<AuditLog(id={self.id}, action='{self.action}', actor={self.actor_id}, target={self.target_id})>"

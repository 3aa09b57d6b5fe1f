"""
Warehouse database model.
"""

import uuid
from sqlalchemy import Column, Integer, String, Boolean, DateTime
from fleetcore.core.clock import utcnow
from fleetcore.db.session import Base


class Warehouse(Base):
    """A fixed stock location owned by a tenant."""
    __tablename__ = "warehouses"
    
    pk = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String(64), index=True, nullable=False, default=lambda: str(uuid.uuid4()))
    tenant_id = Column(String(64), index=True, nullable=False)
    
    name = Column(String(255), nullable=False)
    address = Column(String(500), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)
    
    def __repr__(self):
        return f"<Warehouse(id='{self.id}', name='{self.name}')>"

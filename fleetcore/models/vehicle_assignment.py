"""
Vehicle Assignment database model.

Ensures only one open assignment per vehicle through a DB-level partial unique index.
"""

import uuid
from sqlalchemy import Column, Integer, String, DateTime, Index, text
from fleetcore.core.clock import utcnow
from fleetcore.db.session import Base


class VehicleAssignment(Base):
    """
    Vehicle Assignment model.
    
    One interval during which a vehicle is under a technician's responsibility.
    `end_date` NULL means the assignment is open. Rows are append-only: once
    closed they are never edited again.
    """
    __tablename__ = "vehicle_assignments"
    
    pk = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String(64), index=True, nullable=False, default=lambda: str(uuid.uuid4()))
    tenant_id = Column(String(64), index=True, nullable=False)
    
    # References (public ids, no live object links)
    vehicle_id = Column(String(64), nullable=False, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    
    # Interval
    start_date = Column(DateTime(timezone=True), nullable=False)
    end_date = Column(DateTime(timezone=True), nullable=True)
    
    created_by = Column(String(64), nullable=True)
    closed_by = Column(String(64), nullable=True)
    
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)
    
    # Unique constraint: only one open assignment per vehicle
    __table_args__ = (
        Index(
            "ix_vehicle_assignments_open",
            "vehicle_id",
            unique=True,
            postgresql_where=text("end_date IS NULL"),
            sqlite_where=text("end_date IS NULL"),
        ),
    )
    
    @property
    def is_open(self) -> bool:
        return self.end_date is None
    
    def __repr__(self):
        return f"<VehicleAssignment(id='{self.id}', vehicle_id='{self.vehicle_id}', user_id='{self.user_id}', open={self.end_date is None})>"

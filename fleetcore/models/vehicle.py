"""
Vehicle database model.

Vehicles are tenant-owned; creation is subject to the Quota Ledger.
"""

import uuid
from sqlalchemy import Column, Integer, String, Float, Boolean, DateTime, CheckConstraint
from fleetcore.core.clock import utcnow
from fleetcore.db.session import Base


class Vehicle(Base):
    """
    Vehicle model.
    
    Holds identification, mileage and the last known location reported by
    the telemetry provider. Stock and assignments reference it by `id`.
    """
    __tablename__ = "vehicles"
    
    pk = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String(64), index=True, nullable=False, default=lambda: str(uuid.uuid4()))
    tenant_id = Column(String(64), index=True, nullable=False)
    
    # Identification
    vin = Column(String(17), nullable=False, index=True)
    license_plate = Column(String(20), nullable=True)
    make = Column(String(100), nullable=False)
    model = Column(String(100), nullable=False)
    year = Column(Integer, nullable=False)
    
    # Telemetry-derived fields
    mileage = Column(Integer, default=0, nullable=False)
    tracking_enabled = Column(Boolean, default=False, nullable=False)
    last_latitude = Column(Float, nullable=True)
    last_longitude = Column(Float, nullable=True)
    last_location_at = Column(DateTime(timezone=True), nullable=True)
    
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)
    
    __table_args__ = (
        CheckConstraint("mileage >= 0", name="ck_vehicles_mileage_non_negative"),
    )
    
    @property
    def display_name(self) -> str:
        return f"{self.year} {self.make} {self.model}"
    
    def __repr__(self):
        return f"<Vehicle(id='{self.id}', vin='{self.vin}', tenant_id='{self.tenant_id}')>"

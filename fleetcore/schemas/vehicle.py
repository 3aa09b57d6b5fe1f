"""
Vehicle Pydantic schemas.

Defines request and response models for the fleet registry.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional, List


class VehicleCreate(BaseModel):
    """Schema for registering a new vehicle."""
    vin: str = Field(..., min_length=1, max_length=17, description="Vehicle identification number")
    license_plate: Optional[str] = Field(None, max_length=20)
    make: str = Field(..., min_length=1, max_length=100)
    model: str = Field(..., min_length=1, max_length=100)
    year: int = Field(..., ge=1900, le=2100)
    mileage: int = Field(0, ge=0, description="Odometer reading at registration")
    tracking_enabled: bool = False


class VehicleUpdate(BaseModel):
    """Schema for editing vehicle details. Mileage only moves through telemetry."""
    license_plate: Optional[str] = Field(None, max_length=20)
    make: Optional[str] = Field(None, min_length=1, max_length=100)
    model: Optional[str] = Field(None, min_length=1, max_length=100)
    year: Optional[int] = Field(None, ge=1900, le=2100)
    tracking_enabled: Optional[bool] = None


class TelemetryReading(BaseModel):
    """A reading supplied by a GPS/telemetry provider or a technician."""
    mileage: Optional[int] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    recorded_at: Optional[datetime] = None


class VehicleResponse(BaseModel):
    """Schema for vehicle response."""
    id: str
    tenant_id: str
    vin: str
    license_plate: Optional[str]
    make: str
    model: str
    year: int
    mileage: int
    tracking_enabled: bool
    last_latitude: Optional[float]
    last_longitude: Optional[float]
    last_location_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class VehicleListResponse(BaseModel):
    """Schema for paginated vehicle list."""
    vehicles: List[VehicleResponse]
    total: int
    page: int
    page_size: int


class VehicleDeleteResponse(BaseModel):
    """Outcome of a cascade vehicle delete."""
    vehicle_id: str
    closed_assignment_id: Optional[str]
    stock_rows_deleted: int
    stock_rows_transferred: int
    transferred_to: Optional[str]
    rejected_transfer_ids: List[str] = []

"""
Tenant settings schemas.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import Any, Dict, Optional, List

from fleetcore.models.enums import SubscriptionTier, UserRole


class TenantSettingsResponse(BaseModel):
    """Effective tenant configuration (stored record merged with defaults)."""
    tenant_id: str
    tier: SubscriptionTier
    single_vehicle_per_technician: bool
    assignable_roles: List[UserRole]
    assignment_future_tolerance_days: int
    warehouse_enabled: bool
    tracking_enabled: bool


class TenantSettingsUpdate(BaseModel):
    single_vehicle_per_technician: Optional[bool] = None
    assignable_roles: Optional[List[UserRole]] = Field(None, min_length=1)
    assignment_future_tolerance_days: Optional[int] = Field(None, ge=0)
    warehouse_enabled: Optional[bool] = None
    tracking_enabled: Optional[bool] = None


class AuditLogResponse(BaseModel):
    id: int
    tenant_id: Optional[str]
    actor_id: Optional[str]
    action: str
    target_type: Optional[str]
    target_id: Optional[str]
    meta_data: Optional[Dict[str, Any]]
    timestamp: datetime

    class Config:
        from_attributes = True


class AuditLogListResponse(BaseModel):
    logs: List[AuditLogResponse]
    total: int

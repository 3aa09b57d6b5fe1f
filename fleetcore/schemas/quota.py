"""
Quota schemas.
"""

from pydantic import BaseModel
from typing import Optional

from fleetcore.models.enums import ResourceClass, SubscriptionTier


class QuotaStatusResponse(BaseModel):
    """Current usage against the tier's maximum (limit None = uncapped)."""
    tenant_id: str
    resource_class: ResourceClass
    tier: SubscriptionTier
    current: int
    limit: Optional[int]
    allowed: bool
    per_unit_charge: float

"""
Subscription tier limits.

SubscriptionQuota is derived, never stored: a pure function of the tier.
Enterprise has no fixed cap and is billed per vehicle instead.
"""

from dataclasses import dataclass
from typing import Dict, Optional

from fleetcore.core.config import settings
from fleetcore.models.enums import ResourceClass, SubscriptionTier


@dataclass(frozen=True)
class TierQuota:
    max_vehicles: Optional[int]
    max_managers: Optional[int]
    max_technicians: Optional[int]

    def limit_for(self, resource_class: ResourceClass) -> Optional[int]:
        return {
            ResourceClass.VEHICLE: self.max_vehicles,
            ResourceClass.MANAGER: self.max_managers,
            ResourceClass.TECHNICIAN: self.max_technicians,
        }[resource_class]


# None = uncapped
TIER_QUOTAS: Dict[SubscriptionTier, TierQuota] = {
    SubscriptionTier.TRIAL: TierQuota(max_vehicles=5, max_managers=1, max_technicians=5),
    SubscriptionTier.BASIC: TierQuota(max_vehicles=5, max_managers=1, max_technicians=5),
    SubscriptionTier.PRO: TierQuota(max_vehicles=15, max_managers=4, max_technicians=15),
    SubscriptionTier.ENTERPRISE: TierQuota(max_vehicles=None, max_managers=None, max_technicians=None),
}


def quota_for_tier(tier: SubscriptionTier, resource_class: ResourceClass) -> Optional[int]:
    """Maximum count of `resource_class` under `tier`, or None when uncapped."""
    return TIER_QUOTAS[tier].limit_for(resource_class)


def per_unit_charge(tier: SubscriptionTier, resource_class: ResourceClass) -> float:
    """Billing increment the caller applies for each additional resource."""
    if tier == SubscriptionTier.ENTERPRISE and resource_class == ResourceClass.VEHICLE:
        return settings.enterprise_vehicle_rate
    return 0.0

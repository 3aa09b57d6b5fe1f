"""
User role and subscription enumerations.

Defines the role, tier and quota resource types for the fleet core.
"""

import enum


class UserRole(str, enum.Enum):
    """
    User role enumeration.
    
    Roles:
        OWNER: Owns the business account (one per tenant)
        ADMIN: Full administrative access within the tenant
        MANAGER: Manages vehicles, technicians and stock
        TECHNICIAN: Operates assigned vehicles (default role)
    """
    OWNER = "OWNER"
    ADMIN = "ADMIN"
    MANAGER = "MANAGER"
    TECHNICIAN = "TECHNICIAN"


class SubscriptionTier(str, enum.Enum):
    """Subscription plans supplied by the billing provider."""
    TRIAL = "TRIAL"
    BASIC = "BASIC"
    PRO = "PRO"
    ENTERPRISE = "ENTERPRISE"


class ResourceClass(str, enum.Enum):
    """Resource classes limited by a tenant's subscription tier."""
    VEHICLE = "VEHICLE"
    MANAGER = "MANAGER"
    TECHNICIAN = "TECHNICIAN"

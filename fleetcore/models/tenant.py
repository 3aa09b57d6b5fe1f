"""
Tenant and tenant settings database models.

A tenant is a business account, the unit of quota enforcement.
"""

from sqlalchemy import Column, String, Boolean, Integer, DateTime, Enum, JSON
from fleetcore.core.clock import utcnow
from fleetcore.db.session import Base
from fleetcore.models.enums import SubscriptionTier, UserRole


class Tenant(Base):
    """
    Tenant (business account) model.
    
    The subscription tier is supplied by the billing provider and is the
    only input the Quota Ledger needs.
    """
    __tablename__ = "tenants"
    
    id = Column(String(64), primary_key=True)
    name = Column(String(255), nullable=False)
    tier = Column(Enum(SubscriptionTier), default=SubscriptionTier.TRIAL, nullable=False)
    
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)
    
    def __repr__(self):
        return f"<Tenant(id='{self.id}', name='{self.name}', tier='{self.tier.value}')>"


class TenantSettings(Base):
    """
    Tenant-scoped configuration record.
    
    Replaces device-global toggles (warehouse mode, tracking) with a record
    that operations load and receive explicitly.
    """
    __tablename__ = "tenant_settings"
    
    tenant_id = Column(String(64), primary_key=True)
    
    # Assignment policy
    single_vehicle_per_technician = Column(Boolean, default=False, nullable=False)
    assignable_roles = Column(JSON, nullable=False, default=lambda: [UserRole.TECHNICIAN.value])
    assignment_future_tolerance_days = Column(Integer, nullable=True)  # None = global default
    
    # Feature toggles
    warehouse_enabled = Column(Boolean, default=True, nullable=False)
    tracking_enabled = Column(Boolean, default=False, nullable=False)
    
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)
    
    def __repr__(self):
        return f"<TenantSettings(tenant_id='{self.tenant_id}')>"

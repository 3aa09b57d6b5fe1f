"""
User database model.

Users are tenant-owned; the identity provider authenticates them and the
core resolves them to (tenant, role).
"""

import uuid
from sqlalchemy import Column, Integer, String, Boolean, DateTime, Enum
from fleetcore.core.clock import utcnow
from fleetcore.db.session import Base
from fleetcore.models.enums import UserRole


class User(Base):
    """
    User model (technicians, managers, admins, owner).
    
    `id` is the public identifier shared with other devices and services.
    It is indexed but not unique: synced replicas can produce duplicates,
    which the Integrity Auditor repairs.
    """
    __tablename__ = "users"
    
    pk = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String(64), index=True, nullable=False, default=lambda: str(uuid.uuid4()))
    tenant_id = Column(String(64), index=True, nullable=False)
    
    email = Column(String(255), index=True, nullable=False)
    full_name = Column(String(255), nullable=False, default="")
    role = Column(Enum(UserRole), default=UserRole.TECHNICIAN, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)
    
    def __repr__(self):
        return f"<User(id='{self.id}', email='{self.email}', role='{self.role.value}')>"

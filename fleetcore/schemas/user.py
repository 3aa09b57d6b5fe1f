"""
User schemas.
"""

from pydantic import BaseModel, EmailStr, Field
from datetime import datetime
from typing import List

from fleetcore.models.enums import UserRole


class UserCreate(BaseModel):
    """Schema for inviting a technician, manager or admin."""
    email: EmailStr
    full_name: str = Field("", max_length=255)
    role: UserRole = UserRole.TECHNICIAN


class UserResponse(BaseModel):
    id: str
    tenant_id: str
    email: str
    full_name: str
    role: UserRole
    is_active: bool
    created_at: datetime

    class Config:
        from_attributes = True


class UserListResponse(BaseModel):
    users: List[UserResponse]
    total: int


class UserDeleteResponse(BaseModel):
    """Outcome of a cascade user delete."""
    user_id: str
    closed_assignment_ids: List[str]
    rejected_transfer_ids: List[str] = []

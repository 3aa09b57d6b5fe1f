"""
Vehicle assignment schemas.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional, List


class AssignmentCreate(BaseModel):
    """Schema for opening an assignment."""
    vehicle_id: str = Field(..., min_length=1)
    user_id: str = Field(..., min_length=1)
    start_date: Optional[datetime] = Field(None, description="Defaults to now")


class AssignmentClose(BaseModel):
    end_date: Optional[datetime] = Field(None, description="Defaults to now")


class AssignmentReassign(BaseModel):
    """Hand the assignment's vehicle to another technician."""
    new_user_id: str = Field(..., min_length=1)
    effective_date: Optional[datetime] = Field(None, description="Defaults to now")


class AssignmentResponse(BaseModel):
    id: str
    tenant_id: str
    vehicle_id: str
    user_id: str
    start_date: datetime
    end_date: Optional[datetime]
    created_by: Optional[str]
    closed_by: Optional[str]
    created_at: datetime

    class Config:
        from_attributes = True


class AssignmentOpenedResponse(BaseModel):
    """Response after opening an assignment."""
    assignment_id: str
    assignment: AssignmentResponse


class ReassignResponse(BaseModel):
    """Response after a reassign: the closed row (if any) and the new open row."""
    closed_id: Optional[str]
    opened_id: str
    closed: Optional[AssignmentResponse]
    opened: AssignmentResponse


class AssignmentHistoryResponse(BaseModel):
    assignments: List[AssignmentResponse]
    total: int

"""
Assignment API Endpoints.

Managers open, close and reassign vehicle assignments; technicians read
their own.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Path, status
from sqlalchemy.ext.asyncio import AsyncSession

from fleetcore.core.dependencies import get_current_actor
from fleetcore.core.guards import Operation, require_operation
from fleetcore.core.reliability import call_with_storage_retry
from fleetcore.db.session import get_db
from fleetcore.domain.assignments.assignment_engine import AssignmentEngine
from fleetcore.schemas.assignment import (
    AssignmentClose,
    AssignmentCreate,
    AssignmentHistoryResponse,
    AssignmentOpenedResponse,
    AssignmentReassign,
    AssignmentResponse,
    ReassignResponse,
)
from fleetcore.services.identity import Actor

router = APIRouter(tags=["Assignments"])


def reassign_response(closed, opened) -> ReassignResponse:
    return ReassignResponse(
        closed_id=closed.id if closed else None,
        opened_id=opened.id,
        closed=AssignmentResponse.model_validate(closed) if closed else None,
        opened=AssignmentResponse.model_validate(opened)
    )


@router.post("/assignments", response_model=AssignmentOpenedResponse, status_code=status.HTTP_201_CREATED)
async def open_assignment(
    data: AssignmentCreate,
    actor: Actor = Depends(require_operation(Operation.ASSIGNMENT_OPEN)),
    db: AsyncSession = Depends(get_db)
):
    """
    Assign a vehicle to a technician.

    Returns 409 if the vehicle already has an open assignment.
    """
    assignment = await call_with_storage_retry(
        AssignmentEngine.open, db, actor, data.vehicle_id, data.user_id, data.start_date
    )
    return AssignmentOpenedResponse(
        assignment_id=assignment.id,
        assignment=AssignmentResponse.model_validate(assignment)
    )


@router.get("/assignments/{assignment_id}", response_model=AssignmentResponse)
async def get_assignment(
    assignment_id: str = Path(..., description="Assignment ID"),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db)
):
    assignment = await AssignmentEngine.get(db, actor, assignment_id)
    return AssignmentResponse.model_validate(assignment)


@router.post("/assignments/{assignment_id}/close", response_model=AssignmentResponse)
async def close_assignment(
    assignment_id: str = Path(..., description="Assignment ID"),
    data: Optional[AssignmentClose] = None,
    actor: Actor = Depends(require_operation(Operation.ASSIGNMENT_CLOSE)),
    db: AsyncSession = Depends(get_db)
):
    """
    Close an open assignment (end date defaults to now).

    Returns 409 if the assignment is already closed.
    """
    end_date = data.end_date if data else None
    assignment = await call_with_storage_retry(AssignmentEngine.close, db, actor, assignment_id, end_date)
    return AssignmentResponse.model_validate(assignment)


@router.post("/assignments/{assignment_id}/reassign", response_model=ReassignResponse)
async def reassign_assignment(
    data: AssignmentReassign,
    assignment_id: str = Path(..., description="Assignment ID"),
    actor: Actor = Depends(require_operation(Operation.ASSIGNMENT_REASSIGN)),
    db: AsyncSession = Depends(get_db)
):
    """Close this assignment and open one for another technician, atomically."""
    closed, opened = await call_with_storage_retry(
        AssignmentEngine.reassign_assignment, db, actor, assignment_id, data.new_user_id, data.effective_date
    )
    return reassign_response(closed, opened)


@router.post("/vehicles/{vehicle_id}/reassign", response_model=ReassignResponse)
async def reassign_vehicle(
    data: AssignmentReassign,
    vehicle_id: str = Path(..., description="Vehicle ID"),
    actor: Actor = Depends(require_operation(Operation.ASSIGNMENT_REASSIGN)),
    db: AsyncSession = Depends(get_db)
):
    """Hand a vehicle to a technician, closing whatever assignment is open."""
    closed, opened = await call_with_storage_retry(
        AssignmentEngine.reassign, db, actor, vehicle_id, data.new_user_id, data.effective_date
    )
    return reassign_response(closed, opened)


@router.get("/vehicles/{vehicle_id}/assignment", response_model=Optional[AssignmentResponse])
async def current_assignment(
    vehicle_id: str = Path(..., description="Vehicle ID"),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db)
):
    """The vehicle's open assignment, or null."""
    assignment = await AssignmentEngine.current(db, actor, vehicle_id)
    return AssignmentResponse.model_validate(assignment) if assignment else None


@router.get("/vehicles/{vehicle_id}/assignments", response_model=AssignmentHistoryResponse)
async def vehicle_history(
    vehicle_id: str = Path(..., description="Vehicle ID"),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db)
):
    assignments = await AssignmentEngine.history(db, actor, vehicle_id=vehicle_id)
    return AssignmentHistoryResponse(
        assignments=[AssignmentResponse.model_validate(row) for row in assignments],
        total=len(assignments)
    )


@router.get("/users/{user_id}/assignments", response_model=AssignmentHistoryResponse)
async def user_history(
    user_id: str = Path(..., description="User ID"),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db)
):
    assignments = await AssignmentEngine.history(db, actor, user_id=user_id)
    return AssignmentHistoryResponse(
        assignments=[AssignmentResponse.model_validate(row) for row in assignments],
        total=len(assignments)
    )

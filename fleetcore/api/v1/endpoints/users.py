"""
User API Endpoints.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Path, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from fleetcore.core.dependencies import get_current_actor
from fleetcore.core.guards import Operation, require_operation
from fleetcore.core.reliability import call_with_storage_retry
from fleetcore.db.session import get_db
from fleetcore.domain.cascade.cascade_delete import CascadeDelete
from fleetcore.models.enums import UserRole
from fleetcore.schemas.user import UserCreate, UserDeleteResponse, UserListResponse, UserResponse
from fleetcore.services import user_registry
from fleetcore.services.identity import Actor

router = APIRouter(prefix="/users", tags=["Users"])


@router.post("", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def create_user(
    data: UserCreate,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db)
):
    """
    Invite a technician (managers and above) or a manager/admin (admins and owners).

    Returns 402 when the tier's seat limit for the role is reached.
    """
    user = await call_with_storage_retry(user_registry.create_user, db, actor, data)
    return UserResponse.model_validate(user)


@router.get("", response_model=UserListResponse)
async def list_users(
    role: Optional[UserRole] = Query(None, description="Filter by role"),
    actor: Actor = Depends(require_operation(Operation.USER_READ)),
    db: AsyncSession = Depends(get_db)
):
    users = await user_registry.list_users(db, actor, role)
    return UserListResponse(users=[UserResponse.model_validate(user) for user in users], total=len(users))


@router.get("/{user_id}", response_model=UserResponse)
async def get_user(
    user_id: str = Path(..., description="User ID"),
    actor: Actor = Depends(require_operation(Operation.USER_READ)),
    db: AsyncSession = Depends(get_db)
):
    user = await user_registry.get_user(db, actor, user_id)
    return UserResponse.model_validate(user)


@router.delete("/{user_id}", response_model=UserDeleteResponse)
async def delete_user(
    user_id: str = Path(..., description="User ID"),
    actor: Actor = Depends(require_operation(Operation.USER_DELETE)),
    db: AsyncSession = Depends(get_db)
):
    """Close the user's open assignments and delete the user."""
    summary = await call_with_storage_retry(CascadeDelete.delete_user, db, actor, user_id)
    return UserDeleteResponse(**summary)

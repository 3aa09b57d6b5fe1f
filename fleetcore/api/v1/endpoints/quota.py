"""
Quota API Endpoints.
"""

from fastapi import APIRouter, Depends, HTTPException, Path, status
from sqlalchemy.ext.asyncio import AsyncSession

from fleetcore.core.exceptions import NotFound
from fleetcore.core.guards import Operation, require_operation
from fleetcore.db.session import get_db
from fleetcore.domain.quota.quota_ledger import QuotaLedger
from fleetcore.models.enums import ResourceClass
from fleetcore.schemas.quota import QuotaStatusResponse
from fleetcore.services.identity import Actor

router = APIRouter(prefix="/quota", tags=["Quota"])


@router.get("/{tenant_id}/{resource_class}", response_model=QuotaStatusResponse)
async def quota_status(
    tenant_id: str = Path(..., description="Tenant ID"),
    resource_class: str = Path(..., description="vehicle, manager or technician"),
    actor: Actor = Depends(require_operation(Operation.QUOTA_READ)),
    db: AsyncSession = Depends(get_db)
):
    """
    Current usage against the tenant's tier limit.

    Callers can only read their own tenant's quota.
    """
    if tenant_id != actor.tenant_id:
        raise NotFound("Tenant", tenant_id)

    try:
        resolved = ResourceClass(resource_class.upper())
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unknown resource class '{resource_class}'"
        )

    return await QuotaLedger.status(db, tenant_id, resolved)

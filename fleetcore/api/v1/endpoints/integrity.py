"""
Integrity API Endpoints.

Operator-facing diagnostics. Audits are scoped to the caller's tenant.
"""

from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from fleetcore.core.guards import Operation, require_operation
from fleetcore.core.reliability import call_with_storage_retry
from fleetcore.db.session import get_db
from fleetcore.domain.integrity.auditor import IntegrityAuditor
from fleetcore.domain.stock.location import LocationRef
from fleetcore.schemas.integrity import AuditReportResponse, IntegrityAuditRequest
from fleetcore.services.identity import Actor
from fleetcore.services.lookup import require_location

router = APIRouter(prefix="/integrity", tags=["Integrity"])


@router.post("/audit", response_model=AuditReportResponse)
async def run_audit(
    data: Optional[IntegrityAuditRequest] = None,
    actor: Actor = Depends(require_operation(Operation.INTEGRITY_AUDIT)),
    db: AsyncSession = Depends(get_db)
):
    """
    Scan for duplicate ids and orphaned rows and repair them.

    Duplicates are always repaired; orphans follow `orphan_policy`.
    """
    data = data or IntegrityAuditRequest()

    fallback = None
    if data.fallback_location:
        fallback = LocationRef.parse(data.fallback_location)
        await require_location(db, fallback, actor.tenant_id)

    report = await call_with_storage_retry(
        IntegrityAuditor.run, db, actor.tenant_id, data.orphan_policy, fallback
    )
    return AuditReportResponse(**report.as_dict())


@router.get("/check", response_model=AuditReportResponse)
async def check_integrity(
    actor: Actor = Depends(require_operation(Operation.INTEGRITY_AUDIT)),
    db: AsyncSession = Depends(get_db)
):
    """Detection only: 409 with the findings if anything is wrong."""
    report = await IntegrityAuditor.check(db, actor.tenant_id)
    return AuditReportResponse(**report.as_dict())

"""
Tenant API Endpoints.

Tenant settings and the audit trail.
"""

from dataclasses import asdict
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from fleetcore.core.guards import Operation, require_operation
from fleetcore.core.reliability import call_with_storage_retry
from fleetcore.db.session import get_db
from fleetcore.schemas.tenant import (
    AuditLogListResponse,
    AuditLogResponse,
    TenantSettingsResponse,
    TenantSettingsUpdate,
)
from fleetcore.services import tenant_settings
from fleetcore.services.audit import get_audit_logs
from fleetcore.services.identity import Actor

router = APIRouter(prefix="/tenant", tags=["Tenant"])


@router.get("/settings", response_model=TenantSettingsResponse)
async def read_settings(
    actor: Actor = Depends(require_operation(Operation.TENANT_SETTINGS_READ)),
    db: AsyncSession = Depends(get_db)
):
    config = await tenant_settings.get_settings(db, actor)
    return TenantSettingsResponse(**asdict(config))


@router.patch("/settings", response_model=TenantSettingsResponse)
async def update_settings(
    data: TenantSettingsUpdate,
    actor: Actor = Depends(require_operation(Operation.TENANT_SETTINGS_WRITE)),
    db: AsyncSession = Depends(get_db)
):
    """Update assignment policy and feature toggles (admins and owners)."""
    config = await call_with_storage_retry(tenant_settings.update_settings, db, actor, data)
    return TenantSettingsResponse(**asdict(config))


@router.get("/audit-logs", response_model=AuditLogListResponse)
async def list_audit_logs(
    action: Optional[str] = Query(None, description="Filter by action"),
    target_id: Optional[str] = Query(None, description="Filter by target entity"),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    actor: Actor = Depends(require_operation(Operation.INTEGRITY_AUDIT)),
    db: AsyncSession = Depends(get_db)
):
    """The tenant's audit trail, newest first."""
    logs = await get_audit_logs(db, actor.tenant_id, action, target_id, limit, offset)
    return AuditLogListResponse(
        logs=[AuditLogResponse.model_validate(entry) for entry in logs],
        total=len(logs)
    )

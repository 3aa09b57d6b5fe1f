"""
Audit logging service for tracking fleet, stock and integrity events.

Events are added to the caller's session and commit (or roll back) together
with the change they describe.
"""

import logging
from typing import Optional, Dict, Any, List
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, desc
from fleetcore.models.audit_log import AuditLog

logger = logging.getLogger(__name__)


# Audit event constants
class AuditAction:
    """Standardized audit action constants."""
    # Assignments
    ASSIGNMENT_OPENED = "ASSIGNMENT_OPENED"
    ASSIGNMENT_CLOSED = "ASSIGNMENT_CLOSED"
    VEHICLE_REASSIGNED = "VEHICLE_REASSIGNED"

    # Stock
    STOCK_QUANTITY_SET = "STOCK_QUANTITY_SET"
    STOCK_LEVELS_ADJUSTED = "STOCK_LEVELS_ADJUSTED"
    STOCK_TRANSFERRED = "STOCK_TRANSFERRED"
    STOCK_ROW_DELETED = "STOCK_ROW_DELETED"
    TRANSFER_REQUESTED = "TRANSFER_REQUESTED"
    TRANSFER_ACCEPTED = "TRANSFER_ACCEPTED"
    TRANSFER_REJECTED = "TRANSFER_REJECTED"

    # Fleet registry
    VEHICLE_CREATED = "VEHICLE_CREATED"
    VEHICLE_UPDATED = "VEHICLE_UPDATED"
    VEHICLE_TELEMETRY = "VEHICLE_TELEMETRY"
    VEHICLE_DELETED = "VEHICLE_DELETED"
    USER_CREATED = "USER_CREATED"
    USER_DELETED = "USER_DELETED"
    WAREHOUSE_CREATED = "WAREHOUSE_CREATED"
    INVENTORY_ITEM_CREATED = "INVENTORY_ITEM_CREATED"
    TENANT_SETTINGS_UPDATED = "TENANT_SETTINGS_UPDATED"

    # Integrity
    INTEGRITY_AUDIT_COMPLETED = "INTEGRITY_AUDIT_COMPLETED"


def record_event(
    db: AsyncSession,
    action: str,
    tenant_id: Optional[str] = None,
    actor_id: Optional[str] = None,
    target_type: Optional[str] = None,
    target_id: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None
) -> AuditLog:
    """
    Add an audit event to the current transaction.

    Args:
        db: Database session (committed by the caller's unit of work)
        action: Action being performed (use AuditAction constants)
        tenant_id: Tenant the event belongs to
        actor_id: Public id of the user performing the action
        target_type: Kind of entity acted upon ("vehicle", "assignment", ...)
        target_id: Public id of that entity
        metadata: Additional context as JSON

    Returns:
        Pending AuditLog instance
    """
    audit_log = AuditLog(
        tenant_id=tenant_id,
        actor_id=actor_id,
        action=action,
        target_type=target_type,
        target_id=target_id,
        meta_data=metadata
    )

    db.add(audit_log)
    logger.debug("Audit %s on %s:%s by %s", action, target_type, target_id, actor_id)

    return audit_log


async def get_audit_logs(
    db: AsyncSession,
    tenant_id: Optional[str] = None,
    action: Optional[str] = None,
    target_id: Optional[str] = None,
    limit: int = 100,
    offset: int = 0
) -> List[AuditLog]:
    """
    Query audit logs with filtering.

    Args:
        db: Database session
        tenant_id: Filter by tenant
        action: Filter by action type
        target_id: Filter by target entity
        limit: Maximum number of results
        offset: Pagination offset

    Returns:
        List of AuditLog instances, newest first
    """
    query = select(AuditLog)

    if tenant_id:
        query = query.where(AuditLog.tenant_id == tenant_id)
    if action:
        query = query.where(AuditLog.action == action)
    if target_id:
        query = query.where(AuditLog.target_id == target_id)

    query = query.order_by(desc(AuditLog.timestamp), desc(AuditLog.id)).limit(limit).offset(offset)

    result = await db.execute(query)
    return list(result.scalars().all())

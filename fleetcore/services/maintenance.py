"""
Unattended integrity sweeps.

The Integrity Auditor runs once at startup and then periodically from the
application lifespan. Sweeps cover every tenant and use the configured
orphan policy; transient storage failures are retried with backoff.
"""

import asyncio
import logging
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from fleetcore.core.config import settings
from fleetcore.core.exceptions import AppException
from fleetcore.core.reliability import storage_retry
from fleetcore.db.session import AsyncSessionLocal
from fleetcore.domain.integrity.auditor import AuditReport, IntegrityAuditor
from fleetcore.models.stock_enums import OrphanPolicy

logger = logging.getLogger(__name__)


@storage_retry()
async def run_integrity_sweep(session_factory=None, orphan_policy: Optional[str] = None) -> AuditReport:
    """
    Run one audit across all tenants in a fresh session.

    Args:
        session_factory: Session factory (defaults to the application's)
        orphan_policy: Overrides settings.audit_orphan_policy

    Returns:
        The audit report
    """
    factory = session_factory or AsyncSessionLocal
    policy = OrphanPolicy(orphan_policy or settings.audit_orphan_policy)

    async with factory() as db:
        report = await IntegrityAuditor.run(db, tenant_id=None, orphan_policy=policy)

    if not report.clean:
        logger.warning("Integrity sweep found problems: %s", report.counts())
    return report


async def periodic_integrity_sweep(interval_seconds: float, session_factory=None) -> None:
    """
    Sweep forever, every `interval_seconds`.

    A failed sweep is logged and the next one runs on schedule; the task
    only ends when cancelled.
    """
    logger.info("Periodic integrity sweep every %ss", interval_seconds)
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            await run_integrity_sweep(session_factory)
        except (AppException, SQLAlchemyError) as exc:
            logger.error("Integrity sweep failed: %s", exc)

"""
Integrity Auditor (Domain Logic).

Idempotent scan for stored data that breaks the core's invariants:

- Duplicate public ids. Within a group of rows sharing an id, the first row
  in (created_at, pk) order keeps it; every later row gets a fresh UUID4.
  The order is stable, so a second run finds nothing to do.
- Orphaned stock rows whose warehouse / vehicle no longer exists, and open
  assignments whose vehicle or user no longer exists. These are deleted,
  moved to a fallback location, or only reported, as the caller chooses.
  Nothing is dropped without being counted.

Every finding is logged at WARNING and returned in the report.
"""

import itertools
import logging
import uuid
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Set, Tuple

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from fleetcore.core.clock import as_utc, utcnow
from fleetcore.core.config import settings
from fleetcore.core.exceptions import IntegrityViolation, InvalidLocation, StorageUnavailable
from fleetcore.core.locks import integrity_key, stock_key, vehicle_key
from fleetcore.db.transaction import StalePlan, serialized
from fleetcore.domain.stock.location import LocationRef
from fleetcore.domain.stock.stock_ledger import get_row
from fleetcore.models.inventory_item import InventoryItem
from fleetcore.models.pending_transfer import PendingTransfer
from fleetcore.models.stock_enums import LocationType, OrphanPolicy
from fleetcore.models.stock_location_item import StockLocationItem
from fleetcore.models.user import User
from fleetcore.models.vehicle import Vehicle
from fleetcore.models.vehicle_assignment import VehicleAssignment
from fleetcore.models.warehouse import Warehouse
from fleetcore.services.audit import AuditAction, record_event
from fleetcore.services.lookup import location_exists

logger = logging.getLogger(__name__)

# Entity types scanned for duplicate public ids, in scan order
DUPLICATE_SCAN = (
    ("user", User),
    ("vehicle", Vehicle),
    ("warehouse", Warehouse),
    ("inventory_item", InventoryItem),
    ("assignment", VehicleAssignment),
    ("stock", StockLocationItem),
    ("pending_transfer", PendingTransfer),
)


@dataclass
class AuditReport:
    duplicates_found: int = 0
    duplicates_repaired: int = 0
    orphans_found: int = 0
    orphans_repaired: int = 0
    findings: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def clean(self) -> bool:
        return self.duplicates_found == 0 and self.orphans_found == 0

    def counts(self) -> Dict[str, int]:
        return {
            "duplicates_found": self.duplicates_found,
            "duplicates_repaired": self.duplicates_repaired,
            "orphans_found": self.orphans_found,
            "orphans_repaired": self.orphans_repaired,
        }

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _scoped(query, model, tenant_id: Optional[str]):
    if tenant_id is not None:
        query = query.where(model.tenant_id == tenant_id)
    return query


async def _existing_ids(db: AsyncSession, model, tenant_id: Optional[str]) -> Set[Tuple[str, str]]:
    """(tenant_id, id) pairs of every row of `model` in scope."""
    result = await db.execute(_scoped(select(model.tenant_id, model.id), model, tenant_id))
    return {(row_tenant, row_id) for row_tenant, row_id in result.all()}


async def _orphan_stock_rows(db: AsyncSession, tenant_id: Optional[str]) -> List[StockLocationItem]:
    vehicles = await _existing_ids(db, Vehicle, tenant_id)
    warehouses = await _existing_ids(db, Warehouse, tenant_id)

    result = await db.execute(
        _scoped(select(StockLocationItem), StockLocationItem, tenant_id)
        .order_by(StockLocationItem.created_at, StockLocationItem.pk)
        .execution_options(populate_existing=True)
    )
    orphans = []
    for row in result.scalars().all():
        known = warehouses if row.location_type == LocationType.WAREHOUSE else vehicles
        if (row.tenant_id, row.location_id) not in known:
            orphans.append(row)
    return orphans


async def _orphan_assignments(db: AsyncSession, tenant_id: Optional[str]) -> List[VehicleAssignment]:
    vehicles = await _existing_ids(db, Vehicle, tenant_id)
    users = await _existing_ids(db, User, tenant_id)

    result = await db.execute(
        _scoped(select(VehicleAssignment), VehicleAssignment, tenant_id)
        .where(VehicleAssignment.end_date.is_(None))
        .order_by(VehicleAssignment.created_at, VehicleAssignment.pk)
        .execution_options(populate_existing=True)
    )
    return [
        row for row in result.scalars().all()
        if (row.tenant_id, row.vehicle_id) not in vehicles or (row.tenant_id, row.user_id) not in users
    ]


def _orphan_keys(
    stock_rows: List[StockLocationItem],
    assignments: List[VehicleAssignment],
    fallback: Optional[LocationRef]
) -> Set[str]:
    keys = set()
    for row in stock_rows:
        keys.add(stock_key(str(LocationRef.of_row(row)), row.inventory_item_id))
        if fallback is not None:
            keys.add(stock_key(str(fallback), row.inventory_item_id))
            if fallback.kind == LocationType.VEHICLE:
                keys.add(vehicle_key(fallback.id))
    for row in assignments:
        keys.add(vehicle_key(row.vehicle_id))
    return keys


class IntegrityAuditor:

    @staticmethod
    async def run(
        db: AsyncSession,
        tenant_id: Optional[str] = None,
        orphan_policy: OrphanPolicy = OrphanPolicy.DELETE,
        fallback: Optional[LocationRef] = None,
        repair: bool = True
    ) -> AuditReport:
        """
        Scan (and by default repair) duplicates and orphans.

        Args:
            db: Database session
            tenant_id: Restrict the scan to one tenant (None scans everything)
            orphan_policy: What to do with orphans (delete, reassign, or report to leave them in place)
            fallback: Target location for OrphanPolicy.REASSIGN
            repair: False turns the run into a pure detection pass

        Returns:
            AuditReport with counts and one finding per violation

        Raises:
            InvalidLocation: If REASSIGN is requested without a fallback
            StorageUnavailable: If the orphan plan kept going stale
        """
        orphan_policy = OrphanPolicy(orphan_policy)
        if orphan_policy == OrphanPolicy.REASSIGN and fallback is None and repair:
            raise InvalidLocation("A fallback location is required to reassign orphaned stock")

        report = AuditReport()

        if not repair:
            for entity, model in DUPLICATE_SCAN:
                await IntegrityAuditor._scan_duplicates(db, entity, model, tenant_id, report, repair=False)
            await IntegrityAuditor._report_orphans(db, tenant_id, report)
            return report

        async with serialized(db, [integrity_key(tenant_id)]):
            for entity, model in DUPLICATE_SCAN:
                await IntegrityAuditor._scan_duplicates(db, entity, model, tenant_id, report, repair=True)

        if orphan_policy == OrphanPolicy.REPORT:
            await IntegrityAuditor._report_orphans(db, tenant_id, report)
        else:
            await IntegrityAuditor._repair_orphans(db, tenant_id, orphan_policy, fallback, report)

        async with serialized(db, [integrity_key(tenant_id)]):
            record_event(
                db,
                AuditAction.INTEGRITY_AUDIT_COMPLETED,
                tenant_id=tenant_id,
                target_type="integrity",
                metadata={**report.counts(), "orphan_policy": orphan_policy.value}
            )

        for finding in report.findings:
            logger.warning("Integrity finding: %s", finding)
        logger.info("Integrity audit (tenant=%s, policy=%s): %s", tenant_id or "*", orphan_policy.value, report.counts())
        return report

    @staticmethod
    async def check(db: AsyncSession, tenant_id: Optional[str] = None) -> AuditReport:
        """
        Detection only.

        Raises:
            IntegrityViolation: If anything is found
        """
        report = await IntegrityAuditor.run(db, tenant_id, OrphanPolicy.REPORT, repair=False)
        if not report.clean:
            raise IntegrityViolation(report.findings)
        return report

    @staticmethod
    async def _scan_duplicates(
        db: AsyncSession,
        entity: str,
        model,
        tenant_id: Optional[str],
        report: AuditReport,
        repair: bool
    ) -> None:
        result = await db.execute(
            _scoped(select(model.id), model, tenant_id)
            .group_by(model.id)
            .having(func.count(model.pk) > 1)
        )
        duplicated = [row_id for (row_id,) in result.all()]
        if not duplicated:
            return

        result = await db.execute(
            _scoped(select(model), model, tenant_id)
            .where(model.id.in_(duplicated))
            .order_by(model.id, model.created_at, model.pk)
            .execution_options(populate_existing=True)
        )
        for public_id, group in itertools.groupby(result.scalars().all(), key=lambda row: row.id):
            keeper, *extras = list(group)
            for row in extras:
                report.duplicates_found += 1
                finding = {
                    "kind": "duplicate_id",
                    "entity": entity,
                    "id": public_id,
                    "kept_pk": keeper.pk,
                    "row_pk": row.pk,
                    "tenant_id": row.tenant_id,
                }
                if repair:
                    row.id = str(uuid.uuid4())
                    finding["new_id"] = row.id
                    report.duplicates_repaired += 1
                report.findings.append(finding)

        if repair:
            await db.flush()

    @staticmethod
    async def _report_orphans(db: AsyncSession, tenant_id: Optional[str], report: AuditReport) -> None:
        for row in await _orphan_stock_rows(db, tenant_id):
            report.orphans_found += 1
            report.findings.append(IntegrityAuditor._stock_finding(row, "reported"))
        for row in await _orphan_assignments(db, tenant_id):
            report.orphans_found += 1
            report.findings.append(IntegrityAuditor._assignment_finding(row, "reported"))

    @staticmethod
    async def _repair_orphans(
        db: AsyncSession,
        tenant_id: Optional[str],
        policy: OrphanPolicy,
        fallback: Optional[LocationRef],
        report: AuditReport
    ) -> None:
        for attempt in range(1, settings.lock_plan_attempts + 1):
            planned = _orphan_keys(
                await _orphan_stock_rows(db, tenant_id),
                await _orphan_assignments(db, tenant_id),
                fallback if policy == OrphanPolicy.REASSIGN else None
            )

            findings: List[Dict[str, Any]] = []
            found = repaired = 0
            try:
                async with serialized(db, [integrity_key(tenant_id), *planned]):
                    stock_rows = await _orphan_stock_rows(db, tenant_id)
                    assignments = await _orphan_assignments(db, tenant_id)
                    if _orphan_keys(stock_rows, assignments, fallback if policy == OrphanPolicy.REASSIGN else None) - planned:
                        raise StalePlan()

                    for row in stock_rows:
                        found += 1
                        finding = IntegrityAuditor._stock_finding(row, "reported")
                        finding["action"] = await IntegrityAuditor._repair_stock_row(db, row, policy, fallback)
                        if finding["action"] != "reported":
                            repaired += 1
                        findings.append(finding)

                    now = utcnow()
                    for row in assignments:
                        found += 1
                        row.end_date = max(now, as_utc(row.start_date))
                        repaired += 1
                        findings.append(IntegrityAuditor._assignment_finding(row, "closed"))

                    await db.flush()
            except StalePlan:
                logger.info("Orphan set changed while planning (attempt %d), re-planning", attempt)
                continue

            report.orphans_found += found
            report.orphans_repaired += repaired
            report.findings.extend(findings)
            return

        raise StorageUnavailable("Could not obtain a stable lock plan for orphan repair")

    @staticmethod
    async def _repair_stock_row(
        db: AsyncSession,
        row: StockLocationItem,
        policy: OrphanPolicy,
        fallback: Optional[LocationRef]
    ) -> str:
        if policy == OrphanPolicy.DELETE:
            await db.delete(row)
            return "deleted"

        # REASSIGN: the fallback must resolve in the row's own tenant
        if not await location_exists(db, fallback, row.tenant_id):
            return "reported"

        target = await get_row(db, fallback, row.inventory_item_id)
        if target is not None:
            target.quantity += row.quantity
            await db.delete(row)
            return f"merged_into:{fallback}"

        for column, value in fallback.column_values().items():
            setattr(row, column, value)
        # A later orphan of the same item must merge into this row
        await db.flush()
        return f"moved_to:{fallback}"

    @staticmethod
    def _stock_finding(row: StockLocationItem, action: str) -> Dict[str, Any]:
        return {
            "kind": "orphan_stock",
            "entity": "stock",
            "id": row.id,
            "row_pk": row.pk,
            "tenant_id": row.tenant_id,
            "location": f"{row.location_type.value}:{row.location_id}",
            "inventory_item_id": row.inventory_item_id,
            "quantity": row.quantity,
            "action": action,
        }

    @staticmethod
    def _assignment_finding(row: VehicleAssignment, action: str) -> Dict[str, Any]:
        return {
            "kind": "orphan_assignment",
            "entity": "assignment",
            "id": row.id,
            "row_pk": row.pk,
            "tenant_id": row.tenant_id,
            "vehicle_id": row.vehicle_id,
            "user_id": row.user_id,
            "action": action,
        }

"""
Integrity audit schemas.
"""

from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional

from fleetcore.models.stock_enums import OrphanPolicy


class IntegrityAuditRequest(BaseModel):
    orphan_policy: OrphanPolicy = OrphanPolicy.DELETE
    fallback_location: Optional[str] = Field(None, description="Required for orphan_policy=reassign")


class AuditReportResponse(BaseModel):
    duplicates_found: int
    duplicates_repaired: int
    orphans_found: int
    orphans_repaired: int
    findings: List[Dict[str, Any]]

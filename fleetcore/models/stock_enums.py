"""
Stock location enumerations.
"""

import enum


class LocationType(str, enum.Enum):
    """The two mutually exclusive places inventory can reside."""
    WAREHOUSE = "warehouse"
    VEHICLE = "vehicle"


class OrphanPolicy(str, enum.Enum):
    """How the Integrity Auditor treats rows whose references no longer resolve."""
    REPORT = "report"  # flag and count only
    DELETE = "delete"
    REASSIGN = "reassign"  # move to a fallback location


class PendingTransferStatus(str, enum.Enum):
    """Lifecycle of a warehouse-to-vehicle transfer awaiting the technician."""
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"

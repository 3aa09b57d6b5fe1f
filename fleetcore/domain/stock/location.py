"""
Stock location reference.

A location is a warehouse XOR a vehicle. The text form
"warehouse:<id>" / "vehicle:<id>" is used in URLs, lock keys and the
transfer log.
"""

from dataclasses import dataclass

from fleetcore.core.exceptions import InvalidLocation
from fleetcore.models.stock_enums import LocationType


@dataclass(frozen=True, order=True)
class LocationRef:
    kind: LocationType
    id: str

    @classmethod
    def warehouse(cls, warehouse_id: str) -> "LocationRef":
        return cls(LocationType.WAREHOUSE, warehouse_id)

    @classmethod
    def vehicle(cls, vehicle_id: str) -> "LocationRef":
        return cls(LocationType.VEHICLE, vehicle_id)

    @classmethod
    def parse(cls, text: str) -> "LocationRef":
        """
        Parse "warehouse:<id>" or "vehicle:<id>".

        Raises:
            InvalidLocation: If the text is not a valid location reference
        """
        kind, sep, location_id = (text or "").partition(":")
        if not sep or not location_id:
            raise InvalidLocation("Location must look like 'warehouse:<id>' or 'vehicle:<id>'", text)
        try:
            return cls(LocationType(kind.lower()), location_id)
        except ValueError:
            raise InvalidLocation(f"Unknown location type '{kind}'", text)

    @classmethod
    def of_row(cls, row) -> "LocationRef":
        """Location of a StockLocationItem row."""
        if row.warehouse_id is not None:
            return cls.warehouse(row.warehouse_id)
        return cls.vehicle(row.vehicle_id)

    def column_values(self) -> dict:
        """Keyword arguments for the exclusive warehouse_id / vehicle_id columns."""
        if self.kind == LocationType.WAREHOUSE:
            return {"warehouse_id": self.id, "vehicle_id": None}
        return {"warehouse_id": None, "vehicle_id": self.id}

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.id}"

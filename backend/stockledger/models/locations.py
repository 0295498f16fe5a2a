from __future__ import annotations

import enum
from dataclasses import dataclass

from ..extensions import db
from ..errors import ValidationError
from stockledger.time_utils import to_utc_z


class LocationKind(str, enum.Enum):
    WAREHOUSE = "WAREHOUSE"
    OUTLET = "OUTLET"


@dataclass(frozen=True)
class Location:
    """
    A stock-holding place: exactly one of warehouse or outlet.

    Stored on rows as the (location_kind, location_id) column pair.
    """
    kind: LocationKind
    id: int

    @classmethod
    def parse(cls, kind, location_id) -> "Location":
        if kind is None or location_id is None:
            raise ValidationError("location kind and id are required")
        try:
            parsed_kind = kind if isinstance(kind, LocationKind) else LocationKind(str(kind).strip().upper())
        except ValueError:
            raise ValidationError(
                f"Invalid location kind: {kind}. Must be one of: WAREHOUSE, OUTLET"
            )
        if isinstance(location_id, bool) or not isinstance(location_id, int):
            if isinstance(location_id, str) and location_id.strip().isdigit():
                location_id = int(location_id.strip())
            else:
                raise ValidationError("location id must be an integer")
        return cls(kind=parsed_kind, id=location_id)

    @classmethod
    def from_dict(cls, payload) -> "Location":
        if not isinstance(payload, dict):
            raise ValidationError("location must be an object with kind and id")
        return cls.parse(payload.get("kind"), payload.get("id"))

    def to_dict(self) -> dict:
        return {"kind": self.kind.value, "id": self.id}

    def __str__(self) -> str:
        return f"{self.kind.value.lower()}:{self.id}"


class LocatedMixin:
    """Columns and helpers for rows scoped to a Location."""
    location_kind = db.Column(db.String(16), nullable=False, index=True)
    location_id = db.Column(db.Integer, nullable=False, index=True)

    @property
    def location(self) -> Location:
        return Location(LocationKind(self.location_kind), self.location_id)

    @location.setter
    def location(self, value: Location) -> None:
        self.location_kind = value.kind.value
        self.location_id = value.id

    @classmethod
    def at_location(cls, location: Location):
        """Filter clause matching rows at the given location."""
        return db.and_(
            cls.location_kind == location.kind.value,
            cls.location_id == location.id,
        )


class Warehouse(db.Model):
    """Back-of-house stock location. Managed outside the ledger."""
    __tablename__ = "warehouses"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(32), nullable=False, unique=True)
    name = db.Column(db.String(255), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "kind": LocationKind.WAREHOUSE.value,
            "code": self.code,
            "name": self.name,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class Outlet(db.Model):
    """Point-of-sale location. Managed outside the ledger."""
    __tablename__ = "outlets"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(32), nullable=False, unique=True)
    name = db.Column(db.String(255), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "kind": LocationKind.OUTLET.value,
            "code": self.code,
            "name": self.name,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


LOCATION_MODELS = {
    LocationKind.WAREHOUSE: Warehouse,
    LocationKind.OUTLET: Outlet,
}

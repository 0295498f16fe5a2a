from __future__ import annotations

from ..extensions import db
from .locations import Location, LocationKind
from stockledger.time_utils import to_utc_z, utcnow


DEMAND_STATUS_PENDING = "pending"
DEMAND_STATUS_APPROVED = "approved"
DEMAND_STATUS_CONVERTED = "converted"
DEMAND_STATUS_CANCELLED = "cancelled"

DEMAND_STATUSES = (
    DEMAND_STATUS_PENDING,
    DEMAND_STATUS_APPROVED,
    DEMAND_STATUS_CONVERTED,
    DEMAND_STATUS_CANCELLED,
)


class Demand(db.Model):
    """
    System-generated replenishment suggestion awaiting approval.

    Not a stock movement: converting a demand is what receives stock.
    location is optional (None = network-wide suggestion).
    inputs keeps the forecast figures the quantity was derived from.
    """
    __tablename__ = "demands"
    __table_args__ = (
        db.UniqueConstraint("demand_number", name="uq_demands_demand_number"),
        db.CheckConstraint("quantity >= 1", name="ck_demands_quantity_positive"),
        db.Index("ix_demands_location_status", "location_kind", "location_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    demand_number = db.Column(db.String(32), nullable=False)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    location_kind = db.Column(db.String(16), nullable=True)
    location_id = db.Column(db.Integer, nullable=True)

    quantity = db.Column(db.Integer, nullable=False)
    status = db.Column(db.String(16), nullable=False, default=DEMAND_STATUS_PENDING, index=True)

    algorithm = db.Column(db.String(32), nullable=False)
    inputs = db.Column(db.JSON, nullable=False, default=dict)

    created_by_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    product = db.relationship("Product")

    @property
    def location(self) -> Location | None:
        if self.location_kind is None:
            return None
        return Location(LocationKind(self.location_kind), self.location_id)

    def to_dict(self) -> dict:
        location = self.location
        return {
            "id": self.id,
            "demand_number": self.demand_number,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "location": location.to_dict() if location else None,
            "quantity": self.quantity,
            "status": self.status,
            "algorithm": self.algorithm,
            "inputs": self.inputs,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }

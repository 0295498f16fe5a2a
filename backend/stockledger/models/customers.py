from __future__ import annotations

from ..extensions import db
from stockledger.time_utils import to_utc_z


class Customer(db.Model):
    """
    Customer master data. Profile CRUD lives outside the ledger.

    Denormalized aggregates (total_orders, total_spent_cents) are bumped by
    the sale processor with single-statement atomic increments, so there is
    no version column here.
    """
    __tablename__ = "customers"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    contact = db.Column(db.String(255), nullable=True)
    is_member = db.Column(db.Boolean, nullable=False, default=False)

    total_orders = db.Column(db.Integer, nullable=False, default=0)
    total_spent_cents = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "contact": self.contact,
            "is_member": self.is_member,
            "total_orders": self.total_orders,
            "total_spent_cents": self.total_spent_cents,
            "created_at": to_utc_z(self.created_at),
        }

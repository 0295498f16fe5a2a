from __future__ import annotations

from ..extensions import db
from .locations import LocatedMixin
from stockledger.time_utils import to_utc_z, utcnow


class Product(db.Model):
    """
    Product master data. Catalog CRUD lives outside the ledger; the ledger
    only resolves products by id and reports their names in errors.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("sku", name="uq_products_sku"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sku = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class StockLot(LocatedMixin, db.Model):
    """
    A quantity of one product received together at one location.

    INVARIANTS:
    - quantity >= 0 at all times (CHECK constraint + allocator plan)
    - lots at quantity 0 are kept for the audit trail, never deleted
    - FIFO order is received_at ascending, id as tie-breaker

    version_id gives optimistic locking: two writers decrementing the same
    lot cannot both succeed from the same read.
    """
    __tablename__ = "stock_lots"
    __table_args__ = (
        db.CheckConstraint("quantity >= 0", name="ck_stock_lots_quantity_non_negative"),
        db.Index("ix_stock_lots_fifo", "product_id", "location_kind", "location_id", "received_at"),
        db.Index("ix_stock_lots_batch", "product_id", "location_kind", "location_id", "batch_number"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    batch_number = db.Column(db.String(64), nullable=True)
    quantity = db.Column(db.Integer, nullable=False, default=0)

    unit_cost_cents = db.Column(db.Integer, nullable=False, default=0)
    unit_price_cents = db.Column(db.Integer, nullable=False, default=0)
    expires_on = db.Column(db.Date, nullable=True)

    received_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )
    version_id = db.Column(db.Integer, nullable=False, default=1)

    product = db.relationship("Product")
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return (
            f"<StockLot id={self.id} product_id={self.product_id} "
            f"location={self.location} batch={self.batch_number!r} quantity={self.quantity}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "location": self.location.to_dict(),
            "batch_number": self.batch_number,
            "quantity": self.quantity,
            "unit_cost_cents": self.unit_cost_cents,
            "unit_price_cents": self.unit_price_cents,
            "expires_on": self.expires_on.isoformat() if self.expires_on else None,
            "received_at": to_utc_z(self.received_at),
            "version_id": self.version_id,
        }


class StockMovement(LocatedMixin, db.Model):
    """
    Append-only record of every lot quantity change.

    Written in the same DB transaction as the lot mutation it describes.
    reference ties movements to their document (sale number, return number,
    transfer reference).
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_stock_movements_product_occurred", "product_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    movement_type = db.Column(db.String(32), nullable=False, index=True)

    lot_id = db.Column(db.Integer, db.ForeignKey("stock_lots.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)

    quantity_delta = db.Column(db.Integer, nullable=False)
    reference = db.Column(db.String(64), nullable=True, index=True)
    note = db.Column(db.String(255), nullable=True)

    actor_user_id = db.Column(db.Integer, nullable=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    lot = db.relationship("StockLot")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "movement_type": self.movement_type,
            "lot_id": self.lot_id,
            "product_id": self.product_id,
            "location": self.location.to_dict(),
            "quantity_delta": self.quantity_delta,
            "reference": self.reference,
            "note": self.note,
            "actor_user_id": self.actor_user_id,
            "occurred_at": to_utc_z(self.occurred_at),
        }

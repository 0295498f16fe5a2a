from __future__ import annotations

from ..extensions import db
from .locations import LocatedMixin
from stockledger.time_utils import to_utc_z, utcnow


PAYMENT_METHODS = ("CASH", "BKASH", "ROCKET", "NAGAD", "BANK", "CARD")


class Sale(LocatedMixin, db.Model):
    """
    One completed point-of-sale transaction.

    Created atomically together with its lines, lot allocations, payments
    and lot deductions. Afterwards it only gains SaleReturn entries.

    INVARIANT: total_cents = max(sum(line_total_cents) - discount_cents, 0)
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.UniqueConstraint("sale_number", name="uq_sales_sale_number"),
        db.Index("ix_sales_location_created", "location_kind", "location_id", "created_at"),
        db.Index("ix_sales_customer_created", "customer_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable id: "S" + YYMMDD + 4-digit daily sequence
    sale_number = db.Column(db.String(32), nullable=False)

    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    created_by_user_id = db.Column(db.Integer, nullable=True)

    # All amounts in cents
    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)
    amount_paid_cents = db.Column(db.Integer, nullable=False, default=0)
    amount_due_cents = db.Column(db.Integer, nullable=False, default=0)
    change_due_cents = db.Column(db.Integer, nullable=False, default=0)
    payment_status = db.Column(db.String(16), nullable=False, default="UNPAID")  # UNPAID, PARTIAL, PAID, OVERPAID

    notes = db.Column(db.Text, nullable=True)

    customer = db.relationship("Customer", backref=db.backref("sales", lazy=True))
    lines = db.relationship(
        "SaleLine",
        back_populates="sale",
        order_by="SaleLine.position",
        cascade="all, delete-orphan",
    )
    payments = db.relationship(
        "SalePayment",
        back_populates="sale",
        order_by="SalePayment.id",
        cascade="all, delete-orphan",
    )
    returns = db.relationship(
        "SaleReturn",
        back_populates="sale",
        order_by="SaleReturn.id",
        cascade="all, delete-orphan",
    )

    def to_dict(self, include_lines: bool = True) -> dict:
        data = {
            "id": self.id,
            "sale_number": self.sale_number,
            "location": self.location.to_dict(),
            "customer_id": self.customer_id,
            "created_at": to_utc_z(self.created_at),
            "created_by_user_id": self.created_by_user_id,
            "subtotal_cents": self.subtotal_cents,
            "discount_cents": self.discount_cents,
            "total_cents": self.total_cents,
            "amount_paid_cents": self.amount_paid_cents,
            "amount_due_cents": self.amount_due_cents,
            "change_due_cents": self.change_due_cents,
            "payment_status": self.payment_status,
            "notes": self.notes,
        }
        if include_lines:
            data["lines"] = [line.to_dict() for line in self.lines]
            data["payments"] = [payment.to_dict() for payment in self.payments]
            data["returns"] = [ret.to_dict() for ret in self.returns]
        return data


class SaleLine(db.Model):
    """One product line within a sale. line_total = quantity * unit_price - discount."""
    __tablename__ = "sale_lines"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_sale_lines_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    line_total_cents = db.Column(db.Integer, nullable=False)

    sale = db.relationship("Sale", back_populates="lines")
    product = db.relationship("Product")
    allocations = db.relationship(
        "SaleLineAllocation",
        back_populates="sale_line",
        order_by="SaleLineAllocation.id",
        cascade="all, delete-orphan",
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "position": self.position,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "discount_cents": self.discount_cents,
            "line_total_cents": self.line_total_cents,
            "lots": [allocation.to_dict() for allocation in self.allocations],
        }


class SaleLineAllocation(db.Model):
    """Lot consumed by a sale line, in FIFO order."""
    __tablename__ = "sale_line_allocations"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_line_id = db.Column(db.Integer, db.ForeignKey("sale_lines.id"), nullable=False, index=True)
    lot_id = db.Column(db.Integer, db.ForeignKey("stock_lots.id"), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)

    sale_line = db.relationship("SaleLine", back_populates="allocations")
    lot = db.relationship("StockLot")

    def to_dict(self) -> dict:
        return {
            "lot_id": self.lot_id,
            "quantity": self.quantity,
            "batch_number": self.lot.batch_number if self.lot else None,
        }


class SalePayment(db.Model):
    """
    One tender applied to a sale (split payments allowed).

    METHODS: CASH, BKASH, ROCKET, NAGAD, BANK, CARD
    """
    __tablename__ = "sale_payments"
    __table_args__ = (
        db.CheckConstraint("amount_cents >= 0", name="ck_sale_payments_amount_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    method = db.Column(db.String(16), nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)

    sale = db.relationship("Sale", back_populates="payments")

    def to_dict(self) -> dict:
        return {"method": self.method, "amount_cents": self.amount_cents}


class SaleReturn(db.Model):
    """
    Reversal of part of a sale. Appended to Sale.returns, never edited.

    Each SaleReturnLine is bounded by what its sale line consumed from the
    lot, minus everything already returned against that (line, lot) pair.
    """
    __tablename__ = "sale_returns"
    __table_args__ = (
        db.UniqueConstraint("return_number", name="uq_sale_returns_return_number"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    return_number = db.Column(db.String(32), nullable=False)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)

    notes = db.Column(db.Text, nullable=True)
    refund_cents = db.Column(db.Integer, nullable=False, default=0)

    processed_by_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    sale = db.relationship("Sale", back_populates="returns")
    lines = db.relationship(
        "SaleReturnLine",
        back_populates="sale_return",
        order_by="SaleReturnLine.id",
        cascade="all, delete-orphan",
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "return_number": self.return_number,
            "sale_number": self.sale.sale_number if self.sale else None,
            "notes": self.notes,
            "refund_cents": self.refund_cents,
            "processed_by_user_id": self.processed_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "lines": [line.to_dict() for line in self.lines],
        }


class SaleReturnLine(db.Model):
    __tablename__ = "sale_return_lines"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_sale_return_lines_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    return_id = db.Column(db.Integer, db.ForeignKey("sale_returns.id"), nullable=False, index=True)
    sale_line_id = db.Column(db.Integer, db.ForeignKey("sale_lines.id"), nullable=False, index=True)
    lot_id = db.Column(db.Integer, db.ForeignKey("stock_lots.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.String(255), nullable=True)
    refund_cents = db.Column(db.Integer, nullable=False, default=0)

    sale_return = db.relationship("SaleReturn", back_populates="lines")
    sale_line = db.relationship("SaleLine")

    def to_dict(self) -> dict:
        return {
            "sale_line_id": self.sale_line_id,
            "lot_id": self.lot_id,
            "quantity": self.quantity,
            "reason": self.reason,
            "refund_cents": self.refund_cents,
        }

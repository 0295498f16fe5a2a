# Overview: Service-layer operations for the stock lot store; encapsulates business logic and database work.

# backend/stockledger/services/stock_service.py

from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import func

from ..errors import NotFoundError, ValidationError
from ..extensions import db
from ..models import Location, Product, StockLot, StockMovement
from ..models.locations import LOCATION_MODELS
from ..validation import (
    optional_date,
    optional_datetime,
    optional_str,
    require_amount_cents,
    require_positive_int,
)
from stockledger.time_utils import utcnow
from .concurrency import begin_write, run_with_retry
from .ledger_service import MOVEMENT_RECEIVE, MOVEMENT_TYPES, append_movement
"""
Stock Lot Store Invariants & Time Semantics (authoritative)

Canonical time handling:
- All internal datetimes are UTC-naive (tzinfo=None).
- API responses serialize datetimes as ISO-8601 'Z' strings.

Lot model:
- A lot is (product, location, batch) received at one point in time.
- quantity >= 0 always; a lot at 0 is inert but never deleted.
- FIFO order: received_at ascending, id ascending as tie-breaker.
- On-hand for a product at a location is SUM(quantity) over its lots.

Audit:
- Each lot mutation appends a StockMovement in the same DB transaction.
"""


def resolve_location(location: Location):
    """Return the Warehouse/Outlet row behind a Location or raise NotFoundError."""
    model = LOCATION_MODELS[location.kind]
    row = db.session.get(model, location.id)
    if row is None:
        raise NotFoundError(location.kind.value.title(), location.id)
    return row


def get_product(product_id: int, *, require_active: bool = False) -> Product:
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFoundError("Product", product_id)
    if require_active and not product.is_active:
        raise ValidationError(f"Product {product_id} is inactive")
    return product


def get_lot(lot_id: int) -> StockLot:
    lot = db.session.get(StockLot, lot_id)
    if lot is None:
        raise NotFoundError("Stock lot", lot_id)
    return lot


def _receive_stock_inner(
    *,
    product: Product,
    location: Location,
    quantity: int,
    unit_cost_cents: int,
    unit_price_cents: int,
    batch_number: str | None = None,
    expires_on: date | None = None,
    received_at: datetime | None = None,
    reference: str | None = None,
    note: str | None = None,
    user_id: int | None = None,
) -> StockLot:
    """Core intake logic without locking, retry, or commit.

    Called by both the public receive_stock() and demand conversion.
    """
    lot = StockLot(
        product_id=product.id,
        location=location,
        batch_number=batch_number,
        quantity=quantity,
        unit_cost_cents=unit_cost_cents,
        unit_price_cents=unit_price_cents,
        expires_on=expires_on,
        received_at=received_at or utcnow(),
    )
    db.session.add(lot)
    db.session.flush()

    append_movement(
        lot=lot,
        movement_type=MOVEMENT_RECEIVE,
        quantity_delta=quantity,
        reference=reference,
        actor_user_id=user_id,
        occurred_at=lot.received_at,
        note=note,
    )
    return lot


def receive_stock(
    *,
    product_id,
    location: Location,
    quantity,
    unit_cost_cents,
    unit_price_cents,
    batch_number=None,
    expires_on=None,
    received_at=None,
    note=None,
    user_id: int | None = None,
) -> StockLot:
    """
    Create a new lot from an intake (purchase receipt, opening balance).

    Lots are never merged on intake: each receipt keeps its own arrival
    time so FIFO order stays exact.
    """
    quantity = require_positive_int(quantity, "quantity")
    unit_cost_cents = require_amount_cents(unit_cost_cents, "unit_cost_cents")
    unit_price_cents = require_amount_cents(unit_price_cents, "unit_price_cents")
    batch_number = optional_str(batch_number, "batch_number", max_length=64)
    expires_on = optional_date(expires_on, "expires_on")
    received_dt = optional_datetime(received_at, "received_at")
    note = optional_str(note, "note")

    if received_dt is not None and received_dt > utcnow():
        raise ValidationError("received_at cannot be in the future")

    def _op():
        begin_write()
        product = get_product(product_id, require_active=True)
        resolve_location(location)

        lot = _receive_stock_inner(
            product=product,
            location=location,
            quantity=quantity,
            unit_cost_cents=unit_cost_cents,
            unit_price_cents=unit_price_cents,
            batch_number=batch_number,
            expires_on=expires_on,
            received_at=received_dt,
            note=note,
            user_id=user_id,
        )
        db.session.commit()
        return lot

    return run_with_retry(_op)


def list_lots(
    *,
    product_id: int | None = None,
    location: Location | None = None,
    include_empty: bool = False,
) -> list[StockLot]:
    """Lots in FIFO order (oldest first)."""
    q = db.session.query(StockLot)
    if product_id is not None:
        q = q.filter(StockLot.product_id == product_id)
    if location is not None:
        q = q.filter(StockLot.at_location(location))
    if not include_empty:
        q = q.filter(StockLot.quantity > 0)
    return q.order_by(StockLot.received_at.asc(), StockLot.id.asc()).all()


def get_on_hand(product_id: int, location: Location | None = None) -> int:
    q = db.session.query(func.coalesce(func.sum(StockLot.quantity), 0)).filter(
        StockLot.product_id == product_id,
    )
    if location is not None:
        q = q.filter(StockLot.at_location(location))
    return int(q.scalar() or 0)


def stock_by_product(location: Location | None = None) -> dict[int, int]:
    """Current on-hand per product (read-only snapshot used by forecasting)."""
    q = db.session.query(
        StockLot.product_id,
        func.coalesce(func.sum(StockLot.quantity), 0),
    ).filter(StockLot.quantity > 0)
    if location is not None:
        q = q.filter(StockLot.at_location(location))
    rows = q.group_by(StockLot.product_id).all()
    return {product_id: int(qty) for product_id, qty in rows}


def list_movements(
    *,
    product_id: int | None = None,
    location: Location | None = None,
    movement_type: str | None = None,
    page: int = 1,
    limit: int = 50,
) -> dict:
    """Movement history, newest first, paginated."""
    if movement_type is not None and movement_type not in MOVEMENT_TYPES:
        raise ValidationError(
            f"Invalid movement type: {movement_type}",
            details={"allowed": list(MOVEMENT_TYPES)},
        )
    page = max(int(page), 1)
    limit = min(max(int(limit), 1), 200)

    q = db.session.query(StockMovement)
    if product_id is not None:
        q = q.filter(StockMovement.product_id == product_id)
    if location is not None:
        q = q.filter(StockMovement.at_location(location))
    if movement_type is not None:
        q = q.filter(StockMovement.movement_type == movement_type)

    total = q.count()
    items = (
        q.order_by(StockMovement.occurred_at.desc(), StockMovement.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return {
        "items": items,
        "total": total,
        "page": page,
        "limit": limit,
        "total_pages": (total + limit - 1) // limit,
    }

# Overview: Service-layer operations for FIFO lot allocation; plans and applies lot deductions.

from __future__ import annotations

from dataclasses import dataclass

from ..errors import ConflictError, InsufficientStockError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Location, Product, StockLot
from .concurrency import lock_for_update
from .ledger_service import append_movement


@dataclass(frozen=True)
class Allocation:
    """Take `quantity` units from `lot`."""
    lot: StockLot
    quantity: int


def candidate_lots(product_id: int, location: Location, lot_ids=None) -> list[StockLot]:
    """
    Lots eligible for allocation, oldest first.

    When lot_ids is given, only those lots are considered; they must all
    exist, belong to the product and sit at the location.
    """
    q = db.session.query(StockLot).filter(
        StockLot.product_id == product_id,
        StockLot.at_location(location),
        StockLot.quantity > 0,
    )
    if lot_ids:
        requested = set(lot_ids)
        found = {
            lot.id: lot
            for lot in db.session.query(StockLot).filter(StockLot.id.in_(requested)).all()
        }
        missing = sorted(requested - set(found))
        if missing:
            raise NotFoundError("Stock lot", missing[0], details={"lot_ids": missing})
        for lot in found.values():
            if lot.product_id != product_id:
                raise ValidationError(
                    f"Stock lot {lot.id} does not hold product {product_id}",
                    details={"lot_id": lot.id, "product_id": product_id},
                )
            if lot.location != location:
                raise ValidationError(
                    f"Stock lot {lot.id} is not at {location}",
                    details={"lot_id": lot.id, "location": location.to_dict()},
                )
        q = q.filter(StockLot.id.in_(requested))

    q = q.order_by(StockLot.received_at.asc(), StockLot.id.asc())
    return lock_for_update(q).all()


def plan_allocation(
    product_id: int,
    location: Location,
    required_quantity: int,
    *,
    lot_ids=None,
    reserved: dict[int, int] | None = None,
) -> list[Allocation]:
    """
    Walk the candidate lots in FIFO order and take from each until the
    required quantity is met. Read-only: nothing is written.

    `reserved` maps lot id -> units already planned by earlier lines of the
    same operation; those units are not available again.

    Raises InsufficientStockError when the lots cannot cover the request.
    """
    if required_quantity <= 0:
        raise ValidationError("quantity must be > 0")
    reserved = reserved or {}

    plan: list[Allocation] = []
    remaining = required_quantity
    available = 0
    for lot in candidate_lots(product_id, location, lot_ids):
        free = lot.quantity - reserved.get(lot.id, 0)
        if free <= 0:
            continue
        available += free
        if remaining > 0:
            take = min(free, remaining)
            plan.append(Allocation(lot=lot, quantity=take))
            remaining -= take

    if remaining > 0:
        product = db.session.get(Product, product_id)
        raise InsufficientStockError(
            product_id=product_id,
            product_name=product.name if product else str(product_id),
            available=available,
            requested=required_quantity,
        )
    return plan


def reserve(plan: list[Allocation], reserved: dict[int, int]) -> dict[int, int]:
    """Record a plan's units against the per-operation reservation map."""
    for allocation in plan:
        reserved[allocation.lot.id] = reserved.get(allocation.lot.id, 0) + allocation.quantity
    return reserved


def apply_allocation(
    plan: list[Allocation],
    *,
    movement_type: str,
    reference: str | None = None,
    actor_user_id: int | None = None,
    note: str | None = None,
) -> None:
    """
    Deduct a plan from its lots and record one movement per lot.

    Runs inside the caller's transaction. A lot that no longer holds the
    planned units means another writer got there first; ConflictError lets
    run_with_retry replay the whole operation.
    """
    for allocation in plan:
        lot = allocation.lot
        if lot.quantity < allocation.quantity:
            raise ConflictError(
                f"Stock lot {lot.id} changed during allocation",
                details={"lot_id": lot.id, "available": lot.quantity, "planned": allocation.quantity},
            )
        lot.quantity -= allocation.quantity
        append_movement(
            lot=lot,
            movement_type=movement_type,
            quantity_delta=-allocation.quantity,
            reference=reference,
            actor_user_id=actor_user_id,
            note=note,
        )
    db.session.flush()

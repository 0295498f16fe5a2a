# Overview: Service-layer operations for stock transfers between locations.

from __future__ import annotations

import secrets
from dataclasses import asdict, dataclass

from flask import current_app

from ..errors import ValidationError
from ..extensions import db
from ..models import Location, StockLot
from ..validation import coerce_int, optional_str, require_positive_int
from stockledger.time_utils import utcnow
from .allocation_service import apply_allocation, plan_allocation
from .concurrency import begin_write, lock_for_update, run_with_retry
from .ledger_service import MOVEMENT_TRANSFER_IN, MOVEMENT_TRANSFER_OUT, append_movement
from .stock_service import get_product, resolve_location


@dataclass(frozen=True)
class TransferResult:
    source_lot_id: int
    destination_lot_id: int
    batch_number: str | None
    quantity_transferred: int

    def to_dict(self) -> dict:
        return asdict(self)


def _transfer_reference(now) -> str:
    return f"TRF{now:%y%m%d%H%M%S}{secrets.token_hex(2).upper()}"


def _find_destination_lot(source: StockLot, destination: Location) -> StockLot | None:
    """Oldest lot at the destination with the same product and batch."""
    q = db.session.query(StockLot).filter(
        StockLot.product_id == source.product_id,
        StockLot.at_location(destination),
    )
    if source.batch_number is None:
        q = q.filter(StockLot.batch_number.is_(None))
    else:
        q = q.filter(StockLot.batch_number == source.batch_number)
    q = q.order_by(StockLot.received_at.asc(), StockLot.id.asc())
    return lock_for_update(q).first()


def transfer_stock(
    product_id,
    from_location: Location,
    to_location: Location,
    quantity,
    *,
    reason: str | None = "Stock Transfer",
    user_id: int | None = None,
) -> list[TransferResult]:
    """
    Move `quantity` units of a product between locations, oldest lots first.

    Each source lot taken from lands in the destination lot of the same
    batch when one exists; otherwise a new lot is opened carrying the
    source lot's cost, price, expiry and batch. Lots opened this way are
    stamped with the transfer time, so they queue behind older stock at
    the destination.
    """
    if product_id is None:
        raise ValidationError("product_id is required")
    product_id = coerce_int(product_id, "product_id")
    if from_location is None or to_location is None:
        raise ValidationError("from and to locations are required")
    if from_location == to_location:
        raise ValidationError(
            "Source and destination locations must differ",
            details={"location": from_location.to_dict()},
        )
    quantity = require_positive_int(quantity, "quantity")
    reason = optional_str(reason, "reason")

    def _op():
        begin_write()
        product = get_product(product_id)
        resolve_location(from_location)
        resolve_location(to_location)

        plan = plan_allocation(product.id, from_location, quantity)

        now = utcnow()
        reference = _transfer_reference(now)
        apply_allocation(
            plan,
            movement_type=MOVEMENT_TRANSFER_OUT,
            reference=reference,
            actor_user_id=user_id,
            note=reason,
        )

        results: list[TransferResult] = []
        for allocation in plan:
            source = allocation.lot
            destination = _find_destination_lot(source, to_location)
            if destination is None:
                destination = StockLot(
                    product_id=source.product_id,
                    location=to_location,
                    batch_number=source.batch_number,
                    quantity=allocation.quantity,
                    unit_cost_cents=source.unit_cost_cents,
                    unit_price_cents=source.unit_price_cents,
                    expires_on=source.expires_on,
                    received_at=now,
                )
                db.session.add(destination)
            else:
                destination.quantity += allocation.quantity
            db.session.flush()

            append_movement(
                lot=destination,
                movement_type=MOVEMENT_TRANSFER_IN,
                quantity_delta=allocation.quantity,
                reference=reference,
                actor_user_id=user_id,
                occurred_at=now,
                note=reason,
            )
            results.append(
                TransferResult(
                    source_lot_id=source.id,
                    destination_lot_id=destination.id,
                    batch_number=source.batch_number,
                    quantity_transferred=allocation.quantity,
                )
            )

        db.session.commit()
        current_app.logger.info(
            "Transfer %s: %d unit(s) of product %s from %s to %s",
            reference, quantity, product.id, from_location, to_location,
        )
        return results

    return run_with_retry(_op)

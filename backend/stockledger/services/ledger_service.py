# Overview: Service-layer operations for the stock movement ledger.

from __future__ import annotations

from datetime import datetime
from typing import Optional

from ..extensions import db
from ..models import StockLot, StockMovement
"""
Stock Movement Ledger Invariants (authoritative)

- Append-only audit log of every lot quantity change.
- No domain/business logic in the ledger itself.
- Movements are written inside the same DB transaction as the lot mutation they record.
- Sum of quantity_delta over a lot's movements equals the lot's quantity.
"""


MOVEMENT_RECEIVE = "RECEIVE"
MOVEMENT_SALE = "SALE"
MOVEMENT_TRANSFER_OUT = "TRANSFER_OUT"
MOVEMENT_TRANSFER_IN = "TRANSFER_IN"
MOVEMENT_RETURN = "RETURN"

MOVEMENT_TYPES = (
    MOVEMENT_RECEIVE,
    MOVEMENT_SALE,
    MOVEMENT_TRANSFER_OUT,
    MOVEMENT_TRANSFER_IN,
    MOVEMENT_RETURN,
)


def append_movement(
    *,
    lot: StockLot,
    movement_type: str,
    quantity_delta: int,
    reference: str | None = None,
    actor_user_id: int | None = None,
    occurred_at: Optional[datetime] = None,
    note: Optional[str] = None,
) -> StockMovement:
    """
    Append-only stock movement.

    - No domain logic here; callers have already changed lot.quantity.
    - No deletes/updates of existing movements.
    """
    if movement_type not in MOVEMENT_TYPES:
        raise ValueError(f"Unknown movement type {movement_type}")

    movement = StockMovement(
        movement_type=movement_type,
        lot=lot,
        product_id=lot.product_id,
        location_kind=lot.location_kind,
        location_id=lot.location_id,
        quantity_delta=quantity_delta,
        reference=reference,
        actor_user_id=actor_user_id,
        note=note,
    )
    if occurred_at is not None:
        movement.occurred_at = occurred_at
    db.session.add(movement)
    return movement

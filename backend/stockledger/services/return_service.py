# Overview: Service-layer operations for sale returns; restores returned units to their lots.

from __future__ import annotations

from flask import current_app
from sqlalchemy import func

from ..errors import ValidationError
from ..extensions import db
from ..models import Sale, SaleReturn, SaleReturnLine
from ..validation import coerce_int, optional_str, require_list, require_positive_int
from stockledger.time_utils import utcnow
from .concurrency import begin_write, run_with_retry
from .ledger_service import MOVEMENT_RETURN, append_movement
from .sales_service import get_sale, lots_consumed
from .sequence_service import allocate_transaction_id
from .stock_service import get_lot
"""
Return Invariants (authoritative)

- A return references lots the sale actually consumed.
- Per lot, units returned across ALL returns of a sale never exceed the
  units the sale took from that lot. Over-returns are rejected, never clamped.
- Returned units re-enter their lot unconditionally.
- Customer aggregates (total_orders, total_spent_cents) are left as they are.
"""


def _normalize_items(items) -> list[dict]:
    items = require_list(items, "items")
    normalized = []
    for index, raw in enumerate(items):
        if not isinstance(raw, dict):
            raise ValidationError(f"items[{index}] must be an object")
        if raw.get("lot_id") is None:
            raise ValidationError(f"items[{index}].lot_id is required", details={"index": index})
        normalized.append({
            "lot_id": coerce_int(raw.get("lot_id"), f"items[{index}].lot_id"),
            "quantity": require_positive_int(raw.get("quantity"), f"items[{index}].quantity"),
            "reason": optional_str(raw.get("reason"), f"items[{index}].reason"),
        })
    return normalized


def returned_by_line_and_lot(sale: Sale) -> dict[tuple[int, int], int]:
    """(sale line id, lot id) -> units already returned against the sale."""
    rows = (
        db.session.query(
            SaleReturnLine.sale_line_id,
            SaleReturnLine.lot_id,
            func.coalesce(func.sum(SaleReturnLine.quantity), 0),
        )
        .join(SaleReturn, SaleReturn.id == SaleReturnLine.return_id)
        .filter(SaleReturn.sale_id == sale.id)
        .group_by(SaleReturnLine.sale_line_id, SaleReturnLine.lot_id)
        .all()
    )
    return {(line_id, lot_id): int(qty) for line_id, lot_id, qty in rows}


def process_return(sale_number: str, items, *, notes=None, user_id: int | None = None) -> SaleReturn:
    """
    Return units of a prior sale to the lots they were sold from.

    items: [{lot_id, quantity, reason?}]. Each lot's units are spread over
    the sale lines that consumed the lot, in line order; every piece is
    refunded at its line's unit price.
    """
    normalized = _normalize_items(items)
    notes = optional_str(notes, "notes", max_length=2000)

    requested: dict[int, int] = {}
    for item in normalized:
        requested[item["lot_id"]] = requested.get(item["lot_id"], 0) + item["quantity"]

    def _op():
        begin_write()
        sale = get_sale(sale_number)

        sold = lots_consumed(sale)
        returned = returned_by_line_and_lot(sale)
        lots = {}
        for lot_id, qty in requested.items():
            lots[lot_id] = get_lot(lot_id)
            if lot_id not in sold:
                raise ValidationError(
                    f"Stock lot {lot_id} was not sold in {sale.sale_number}",
                    details={"lot_id": lot_id, "sale_number": sale.sale_number},
                )
            already = sum(q for (_, returned_lot), q in returned.items() if returned_lot == lot_id)
            if qty > sold[lot_id] - already:
                raise ValidationError(
                    f"Return quantity exceeds quantity sold for lot {lot_id}",
                    details={
                        "lot_id": lot_id,
                        "sold": sold[lot_id],
                        "already_returned": already,
                        "requested": qty,
                    },
                )

        now = utcnow()
        sale_return = SaleReturn(
            return_number=allocate_transaction_id("return", now),
            sale=sale,
            notes=notes,
            processed_by_user_id=user_id,
            created_at=now,
        )

        refund_total = 0
        for item in normalized:
            remaining = item["quantity"]
            for line in sale.lines:
                for allocation in line.allocations:
                    if remaining == 0:
                        break
                    if allocation.lot_id != item["lot_id"]:
                        continue
                    key = (line.id, allocation.lot_id)
                    free = allocation.quantity - returned.get(key, 0)
                    if free <= 0:
                        continue
                    take = min(free, remaining)
                    returned[key] = returned.get(key, 0) + take
                    remaining -= take

                    refund = take * line.unit_price_cents
                    refund_total += refund
                    sale_return.lines.append(
                        SaleReturnLine(
                            sale_line_id=line.id,
                            lot_id=allocation.lot_id,
                            quantity=take,
                            reason=item["reason"],
                            refund_cents=refund,
                        )
                    )

            lot = lots[item["lot_id"]]
            lot.quantity += item["quantity"]
            append_movement(
                lot=lot,
                movement_type=MOVEMENT_RETURN,
                quantity_delta=item["quantity"],
                reference=sale_return.return_number,
                actor_user_id=user_id,
                occurred_at=now,
                note=item["reason"],
            )

        sale_return.refund_cents = refund_total
        db.session.add(sale_return)
        db.session.commit()
        current_app.logger.info(
            "Return %s against sale %s: refund %d cents",
            sale_return.return_number, sale_number, refund_total,
        )
        return sale_return

    return run_with_retry(_op)

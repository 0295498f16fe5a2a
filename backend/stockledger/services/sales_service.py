"""
Sale Transaction Processor

A sale is created in one shot: validate every line, plan every line's FIFO
allocation, then persist the sale and apply all deductions inside a single
transaction. A failure at any point leaves stock, customers and the sale
sequence untouched.
"""

from __future__ import annotations

from datetime import datetime

from flask import current_app
from sqlalchemy import update

from ..errors import NotFoundError, ValidationError
from ..extensions import db
from ..models import (
    Customer,
    Location,
    Sale,
    SaleLine,
    SaleLineAllocation,
    SalePayment,
)
from ..models.sales import PAYMENT_METHODS
from ..validation import (
    coerce_int,
    optional_datetime,
    optional_str,
    require_amount_cents,
    require_list,
    require_positive_int,
)
from stockledger.time_utils import utcnow
from .allocation_service import apply_allocation, plan_allocation, reserve
from .concurrency import begin_write, run_with_retry
from .ledger_service import MOVEMENT_SALE
from .sequence_service import allocate_transaction_id
from .stock_service import get_lot, get_product, resolve_location


def _normalize_item(raw, index: int) -> dict:
    if not isinstance(raw, dict):
        raise ValidationError(f"items[{index}] must be an object")

    lot_ids = raw.get("lot_ids")
    if lot_ids is None and raw.get("lot_id") is not None:
        lot_ids = [raw.get("lot_id")]
    if lot_ids is not None:
        if not isinstance(lot_ids, list) or not lot_ids:
            raise ValidationError(f"items[{index}].lot_ids must be a non-empty list")
        lot_ids = [coerce_int(lot_id, f"items[{index}].lot_ids") for lot_id in lot_ids]

    product_id = raw.get("product_id")
    if product_id is not None:
        product_id = coerce_int(product_id, f"items[{index}].product_id")

    if product_id is None and lot_ids is None:
        raise ValidationError(
            f"items[{index}] requires product_id or lot_id",
            details={"index": index},
        )

    quantity = require_positive_int(raw.get("quantity"), f"items[{index}].quantity")
    unit_price = raw.get("unit_price_cents")
    if unit_price is not None:
        unit_price = require_amount_cents(unit_price, f"items[{index}].unit_price_cents")
    discount = require_amount_cents(raw.get("discount_cents"), f"items[{index}].discount_cents", default=0)

    return {
        "product_id": product_id,
        "lot_ids": lot_ids,
        "quantity": quantity,
        "unit_price_cents": unit_price,
        "discount_cents": discount,
    }


def _normalize_payments(payments, payment_method) -> list[dict] | None:
    """
    Explicit payments win; a bare payment_method means "pays the total"
    (returned as None and resolved once the total is known).
    """
    if payments:
        if not isinstance(payments, list):
            raise ValidationError("payments must be a list")
        normalized = []
        for index, payment in enumerate(payments):
            if not isinstance(payment, dict):
                raise ValidationError(f"payments[{index}] must be an object")
            method = _validate_method(payment.get("method"))
            amount = require_amount_cents(payment.get("amount_cents"), f"payments[{index}].amount_cents")
            normalized.append({"method": method, "amount_cents": amount})
        return normalized
    if payment_method is not None:
        _validate_method(payment_method)
        return None
    return []


def _validate_method(method) -> str:
    if not method:
        raise ValidationError("payment method is required")
    method = str(method).strip().upper()
    if method not in PAYMENT_METHODS:
        raise ValidationError(
            f"Invalid payment method: {method}",
            details={"allowed": list(PAYMENT_METHODS)},
        )
    return method


def _resolve_item_product(item: dict, location: Location, index: int) -> int:
    """
    Product of a line. Caller-selected lots must exist, hold a single
    product and sit at the sale location.
    """
    if not item["lot_ids"]:
        return get_product(item["product_id"]).id

    lots = [get_lot(lot_id) for lot_id in item["lot_ids"]]
    product_ids = {lot.product_id for lot in lots}
    if len(product_ids) > 1:
        raise ValidationError(
            f"items[{index}] lots hold different products",
            details={"index": index, "lot_ids": item["lot_ids"]},
        )
    product_id = product_ids.pop()
    if item["product_id"] is not None and item["product_id"] != product_id:
        raise ValidationError(
            f"items[{index}] lots do not hold product {item['product_id']}",
            details={"index": index, "product_id": item["product_id"]},
        )
    for lot in lots:
        if lot.location != location:
            raise ValidationError(
                f"Stock lot {lot.id} is not at {location}",
                details={"index": index, "lot_id": lot.id},
            )
    get_product(product_id)
    return product_id


def _payment_status(total: int, paid: int) -> str:
    if paid > total:
        return "OVERPAID"
    if paid == total:
        return "PAID"
    if paid == 0:
        return "UNPAID"
    return "PARTIAL"


def create_sale(
    location: Location,
    items,
    *,
    customer_id=None,
    payment_method=None,
    payments=None,
    discount_cents=0,
    notes=None,
    user_id: int | None = None,
    now: datetime | None = None,
) -> Sale:
    """
    Create a completed sale.

    items: [{product_id | lot_id | lot_ids, quantity, unit_price_cents?,
    discount_cents?}]. When unit_price_cents is omitted the price of the
    first lot allocated to the line is used.
    """
    if location is None:
        raise ValidationError("location is required")
    items = require_list(items, "items")
    normalized = [_normalize_item(raw, index) for index, raw in enumerate(items)]
    sale_discount = require_amount_cents(discount_cents, "discount_cents", default=0)
    normalized_payments = _normalize_payments(payments, payment_method)
    notes = optional_str(notes, "notes", max_length=2000)
    if customer_id is not None:
        customer_id = coerce_int(customer_id, "customer_id")

    def _op():
        begin_write()
        resolve_location(location)

        if customer_id is not None and db.session.get(Customer, customer_id) is None:
            raise NotFoundError("Customer", customer_id)

        # Plan every line before anything is written.
        reserved: dict[int, int] = {}
        planned = []
        for index, item in enumerate(normalized):
            product_id = _resolve_item_product(item, location, index)
            plan = plan_allocation(
                product_id,
                location,
                item["quantity"],
                lot_ids=item["lot_ids"],
                reserved=reserved,
            )
            reserve(plan, reserved)

            unit_price = item["unit_price_cents"]
            if unit_price is None:
                unit_price = plan[0].lot.unit_price_cents
            gross = item["quantity"] * unit_price
            if item["discount_cents"] > gross:
                raise ValidationError(
                    f"items[{index}].discount_cents cannot exceed the line amount",
                    details={"index": index, "line_amount_cents": gross},
                )
            planned.append((item, product_id, unit_price, gross - item["discount_cents"], plan))

        subtotal = sum(line_total for _, _, _, line_total, _ in planned)
        total = max(subtotal - sale_discount, 0)

        if normalized_payments is None:
            sale_payments = [{"method": _validate_method(payment_method), "amount_cents": total}]
        else:
            sale_payments = normalized_payments
        paid = sum(p["amount_cents"] for p in sale_payments)

        created_at = now or utcnow()
        sale_number = allocate_transaction_id("sale", created_at)

        sale = Sale(
            sale_number=sale_number,
            location=location,
            customer_id=customer_id,
            created_at=created_at,
            created_by_user_id=user_id,
            subtotal_cents=subtotal,
            discount_cents=sale_discount,
            total_cents=total,
            amount_paid_cents=paid,
            amount_due_cents=max(total - paid, 0),
            change_due_cents=max(paid - total, 0),
            payment_status=_payment_status(total, paid),
            notes=notes,
        )
        db.session.add(sale)

        for position, (item, product_id, unit_price, line_total, plan) in enumerate(planned, start=1):
            line = SaleLine(
                position=position,
                product_id=product_id,
                quantity=item["quantity"],
                unit_price_cents=unit_price,
                discount_cents=item["discount_cents"],
                line_total_cents=line_total,
            )
            line.allocations = [
                SaleLineAllocation(lot=allocation.lot, quantity=allocation.quantity)
                for allocation in plan
            ]
            sale.lines.append(line)

        for payment in sale_payments:
            sale.payments.append(SalePayment(method=payment["method"], amount_cents=payment["amount_cents"]))

        for _, _, _, _, plan in planned:
            apply_allocation(
                plan,
                movement_type=MOVEMENT_SALE,
                reference=sale_number,
                actor_user_id=user_id,
            )

        if customer_id is not None:
            db.session.execute(
                update(Customer)
                .where(Customer.id == customer_id)
                .values(
                    total_orders=Customer.total_orders + 1,
                    total_spent_cents=Customer.total_spent_cents + total,
                )
                .execution_options(synchronize_session=False)
            )

        db.session.commit()
        current_app.logger.info(
            "Sale %s created at %s: %d line(s), total %d cents",
            sale_number, location, len(planned), total,
        )
        return sale

    return run_with_retry(_op)


def get_sale(sale_number: str) -> Sale:
    sale = db.session.query(Sale).filter_by(sale_number=sale_number).first()
    if sale is None:
        raise NotFoundError("Sale", sale_number)
    return sale


def list_sales(
    *,
    location: Location | None = None,
    customer_id: int | None = None,
    start=None,
    end=None,
    page: int = 1,
    limit: int = 10,
) -> dict:
    """Sales newest first; start/end are inclusive created_at bounds."""
    start_dt = optional_datetime(start, "start")
    end_dt = optional_datetime(end, "end")
    page = max(int(page), 1)
    limit = min(max(int(limit), 1), 100)

    q = db.session.query(Sale)
    if location is not None:
        q = q.filter(Sale.at_location(location))
    if customer_id is not None:
        q = q.filter(Sale.customer_id == customer_id)
    if start_dt is not None:
        q = q.filter(Sale.created_at >= start_dt)
    if end_dt is not None:
        q = q.filter(Sale.created_at <= end_dt)

    total = q.count()
    items = (
        q.order_by(Sale.created_at.desc(), Sale.id.desc())
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


def lots_consumed(sale: Sale) -> dict[int, int]:
    """lot id -> units the sale took from it, summed over its lines."""
    consumed: dict[int, int] = {}
    for line in sale.lines:
        for allocation in line.allocations:
            consumed[allocation.lot_id] = consumed.get(allocation.lot_id, 0) + allocation.quantity
    return consumed


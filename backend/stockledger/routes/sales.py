# Overview: Flask API routes for sales and returns; parses input and returns JSON responses.

# backend/stockledger/routes/sales.py
"""Sales API routes"""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import LedgerError
from ..models import Location
from ..services import return_service, sales_service
from ..decorators import require_actor


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


def location_from_args(args):
    """Optional ?location_kind=OUTLET&location_id=3 filter."""
    kind = args.get("location_kind")
    location_id = args.get("location_id")
    if kind is None and location_id is None:
        return None
    return Location.parse(kind, location_id)


@sales_bp.post("/")
@require_actor
def create_sale_route():
    """
    Create a completed sale.

    Request body:
    {
        "location": {"kind": "OUTLET", "id": 1},
        "customer_id": int (optional),
        "items": [{"product_id" | "lot_id" | "lot_ids", "quantity", "unit_price_cents", "discount_cents"}],
        "payment_method": str (optional) | "payments": [{"method", "amount_cents"}],
        "discount_cents": int (optional),
        "notes": str (optional)
    }

    Returns:
        201: Sale created
        400: Invalid request
        404: Location, customer, product or lot missing
        409: Insufficient stock / concurrent update
    """
    try:
        data = request.get_json(silent=True) or {}

        sale = sales_service.create_sale(
            Location.from_dict(data.get("location")),
            data.get("items"),
            customer_id=data.get("customer_id"),
            payment_method=data.get("payment_method"),
            payments=data.get("payments"),
            discount_cents=data.get("discount_cents"),
            notes=data.get("notes"),
            user_id=g.actor_user_id,
        )

        return jsonify({"sale": sale.to_dict()}), 201

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/")
def list_sales_route():
    """List sales, newest first. Filters: location_kind/location_id, customer_id, start, end."""
    try:
        customer_id = request.args.get("customer_id", type=int)
        result = sales_service.list_sales(
            location=location_from_args(request.args),
            customer_id=customer_id,
            start=request.args.get("start"),
            end=request.args.get("end"),
            page=request.args.get("page", 1, type=int),
            limit=request.args.get("limit", 10, type=int),
        )
        result["items"] = [sale.to_dict(include_lines=False) for sale in result["items"]]
        return jsonify(result), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list sales")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/<sale_number>")
def get_sale_route(sale_number: str):
    try:
        sale = sales_service.get_sale(sale_number)
        return jsonify({"sale": sale.to_dict()}), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to get sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.post("/<sale_number>/returns")
@require_actor
def create_return_route(sale_number: str):
    """
    Return units of a sale to their lots.

    Request body:
    {
        "items": [{"lot_id": int, "quantity": int, "reason": str}],
        "notes": str (optional)
    }
    """
    try:
        data = request.get_json(silent=True) or {}

        sale_return = return_service.process_return(
            sale_number,
            data.get("items"),
            notes=data.get("notes"),
            user_id=g.actor_user_id,
        )

        return jsonify({"return": sale_return.to_dict()}), 201

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to process return")
        return jsonify({"error": "Internal server error"}), 500

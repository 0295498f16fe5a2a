# Overview: Flask API routes for stock lots, transfers and movement history.

"""
Stock API routes.

Lots are received here; quantities only change afterwards through sales,
transfers and returns.
"""
from flask import Blueprint, request, jsonify, g, current_app

from ..errors import LedgerError
from ..models import Location
from ..services import stock_service, transfer_service
from ..decorators import require_actor
from .sales import location_from_args


stock_bp = Blueprint("stock", __name__, url_prefix="/api/stock")


@stock_bp.post("/lots")
@require_actor
def receive_lot_route():
    """
    Receive stock as a new lot.

    Request body:
    {
        "product_id": int,
        "location": {"kind": "WAREHOUSE", "id": 1},
        "quantity": int,
        "unit_cost_cents": int,
        "unit_price_cents": int,
        "batch_number": str (optional),
        "expires_on": "YYYY-MM-DD" (optional),
        "received_at": ISO-8601 (optional)
    }
    """
    try:
        data = request.get_json(silent=True) or {}

        lot = stock_service.receive_stock(
            product_id=data.get("product_id"),
            location=Location.from_dict(data.get("location")),
            quantity=data.get("quantity"),
            unit_cost_cents=data.get("unit_cost_cents"),
            unit_price_cents=data.get("unit_price_cents"),
            batch_number=data.get("batch_number"),
            expires_on=data.get("expires_on"),
            received_at=data.get("received_at"),
            note=data.get("note"),
            user_id=g.actor_user_id,
        )

        return jsonify({"lot": lot.to_dict()}), 201

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to receive stock")
        return jsonify({"error": "Internal server error"}), 500


@stock_bp.get("/lots")
def list_lots_route():
    """Lots in FIFO order. Filters: product_id, location_kind/location_id, include_empty."""
    try:
        lots = stock_service.list_lots(
            product_id=request.args.get("product_id", type=int),
            location=location_from_args(request.args),
            include_empty=request.args.get("include_empty", "false").lower() == "true",
        )
        return jsonify({"lots": [lot.to_dict() for lot in lots]}), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list lots")
        return jsonify({"error": "Internal server error"}), 500


@stock_bp.post("/transfers")
@require_actor
def transfer_route():
    """
    Move stock between locations (FIFO at the source).

    Request body:
    {
        "product_id": int,
        "from": {"kind": "WAREHOUSE", "id": 1},
        "to": {"kind": "OUTLET", "id": 2},
        "quantity": int,
        "reason": str (optional)
    }
    """
    try:
        data = request.get_json(silent=True) or {}

        results = transfer_service.transfer_stock(
            data.get("product_id"),
            Location.from_dict(data.get("from")),
            Location.from_dict(data.get("to")),
            data.get("quantity"),
            reason=data.get("reason") or "Stock Transfer",
            user_id=g.actor_user_id,
        )

        return jsonify({"transferred": [result.to_dict() for result in results]}), 201

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to transfer stock")
        return jsonify({"error": "Internal server error"}), 500


@stock_bp.get("/movements")
def list_movements_route():
    try:
        result = stock_service.list_movements(
            product_id=request.args.get("product_id", type=int),
            location=location_from_args(request.args),
            movement_type=request.args.get("movement_type"),
            page=request.args.get("page", 1, type=int),
            limit=request.args.get("limit", 50, type=int),
        )
        result["items"] = [movement.to_dict() for movement in result["items"]]
        return jsonify(result), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list stock movements")
        return jsonify({"error": "Internal server error"}), 500

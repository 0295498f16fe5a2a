# Overview: Flask API routes for demand forecasting and the demand workflow.

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import LedgerError
from ..models import Location
from ..services import forecast_service
from ..decorators import require_actor
from .sales import location_from_args


demands_bp = Blueprint("demands", __name__, url_prefix="/api/demands")

FORECAST_PARAMS = (
    "days",
    "min_sales_threshold",
    "demand_days",
    "safety_stock_factor",
    "seasonal_adjustment",
)


@demands_bp.post("/generate")
@require_actor
def generate_demand_route():
    """
    Run a forecast and store pending demands.

    Request body:
    {
        "strategy": "simple" | "enhanced",
        "location": {"kind": "OUTLET", "id": 1} (optional),
        "days": int, "min_sales_threshold": int,
        "demand_days": int, "safety_stock_factor": float, "seasonal_adjustment": float
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        location = Location.from_dict(data["location"]) if data.get("location") else None
        params = {key: data.get(key) for key in FORECAST_PARAMS if data.get(key) is not None}

        run = forecast_service.generate_demand(
            data.get("strategy") or "simple",
            location=location,
            user_id=g.actor_user_id,
            **params,
        )

        return jsonify({
            "generated_count": run.generated_count,
            "demands": [demand.to_dict() for demand in run.demands],
            "analysis": run.analysis,
        }), 201

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to generate demand")
        return jsonify({"error": "Internal server error"}), 500


@demands_bp.get("/")
def list_demands_route():
    try:
        result = forecast_service.list_demands(
            status=request.args.get("status"),
            location=location_from_args(request.args),
            page=request.args.get("page", 1, type=int),
            limit=request.args.get("limit", 20, type=int),
        )
        result["items"] = [demand.to_dict() for demand in result["items"]]
        return jsonify(result), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list demands")
        return jsonify({"error": "Internal server error"}), 500


@demands_bp.patch("/<int:demand_id>/status")
@require_actor
def update_demand_status_route(demand_id: int):
    """Body: {"status": "approved" | "cancelled" | "pending"}"""
    try:
        data = request.get_json(silent=True) or {}
        demand = forecast_service.update_demand_status(
            demand_id,
            data.get("status"),
            user_id=g.actor_user_id,
        )
        return jsonify({"demand": demand.to_dict()}), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update demand status")
        return jsonify({"error": "Internal server error"}), 500


@demands_bp.post("/<int:demand_id>/convert")
@require_actor
def convert_demand_route(demand_id: int):
    """
    Receive a demand as stock at a warehouse.

    Request body:
    {
        "warehouse_id": int,
        "unit_cost_cents": int,
        "unit_price_cents": int,
        "quantity": int (optional, defaults to the demand quantity),
        "batch_number": str (optional),
        "expires_on": "YYYY-MM-DD" (optional)
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        demand, lot = forecast_service.convert_demand(
            demand_id,
            warehouse_id=data.get("warehouse_id"),
            unit_cost_cents=data.get("unit_cost_cents"),
            unit_price_cents=data.get("unit_price_cents"),
            quantity=data.get("quantity"),
            batch_number=data.get("batch_number"),
            expires_on=data.get("expires_on"),
            user_id=g.actor_user_id,
        )
        return jsonify({"demand": demand.to_dict(), "lot": lot.to_dict()}), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to convert demand")
        return jsonify({"error": "Internal server error"}), 500

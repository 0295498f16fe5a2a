"""
Demand Forecasting Engine

Aggregates historical sales per product over a trailing window and turns
them into replenishment suggestions through a named ForecastStrategy:

- "simple":   ceil(average daily sales x 7)
- "enhanced": average daily sales scaled by demand days, safety stock,
              seasonality, sales variability and sales frequency, net of
              current stock

A run only inserts pending Demand rows; stock and sales are read-only here.
Demands are then approved, cancelled, or converted into received stock.
"""

from __future__ import annotations

import math
import secrets
import time
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta

from flask import current_app

from ..errors import NotFoundError, ValidationError
from ..extensions import db
from ..models import Demand, Location, LocationKind, Sale, SaleLine
from ..models.demand import (
    DEMAND_STATUS_APPROVED,
    DEMAND_STATUS_CANCELLED,
    DEMAND_STATUS_CONVERTED,
    DEMAND_STATUS_PENDING,
    DEMAND_STATUSES,
)
from ..validation import (
    coerce_float,
    coerce_int,
    optional_date,
    optional_str,
    require_amount_cents,
    require_non_negative_int,
    require_positive_int,
)
from stockledger.time_utils import to_utc_z, utcnow
from .concurrency import begin_write, run_with_retry
from .stock_service import _receive_stock_inner, get_product, resolve_location, stock_by_product


@dataclass
class SalesStatistics:
    """Per-product sales over the analysis window."""
    product_id: int
    total_quantity: int = 0
    total_revenue_cents: int = 0
    daily_quantities: dict[date, int] = field(default_factory=dict)
    last_sale_at: datetime | None = None

    @property
    def sale_days(self) -> int:
        return len(self.daily_quantities)

    @property
    def max_daily_sales(self) -> int:
        return max(self.daily_quantities.values(), default=0)

    @property
    def min_daily_sales(self) -> int:
        return min(self.daily_quantities.values(), default=0)

    def add(self, sold_at: datetime, quantity: int, revenue_cents: int) -> None:
        self.total_quantity += quantity
        self.total_revenue_cents += revenue_cents
        day = sold_at.date()
        self.daily_quantities[day] = self.daily_quantities.get(day, 0) + quantity
        if self.last_sale_at is None or sold_at > self.last_sale_at:
            self.last_sale_at = sold_at


@dataclass(frozen=True)
class DemandSuggestion:
    product_id: int
    quantity: int
    inputs: dict


@dataclass
class DemandRun:
    generated_count: int
    demands: list[Demand]
    analysis: dict


def _ceil(value: float) -> int:
    # Rounding first keeps float noise (40.400000000000006) from adding a unit.
    return math.ceil(round(value, 6))


class ForecastStrategy:
    """
    Turns one product's sales statistics into a suggestion, or None when
    the product does not need replenishing.
    """
    name = ""
    algorithm = ""
    # parameter -> Config key holding its default
    parameters: dict[str, str] = {}

    def __init__(self, days: int = 30, min_sales_threshold: int = 1):
        self.days = require_positive_int(days, "days")
        self.min_sales_threshold = require_non_negative_int(min_sales_threshold, "min_sales_threshold")

    def suggest(self, stats: SalesStatistics, current_stock: int) -> DemandSuggestion | None:
        raise NotImplementedError

    def settings(self) -> dict:
        return {key: getattr(self, key) for key in self.parameters}


class SimpleForecastStrategy(ForecastStrategy):
    """One week of average daily sales."""
    name = "simple"
    algorithm = "Simple"
    parameters = {
        "days": "FORECAST_DAYS",
        "min_sales_threshold": "FORECAST_MIN_SALES_THRESHOLD",
    }
    cover_days = 7

    def suggest(self, stats, current_stock):
        if stats.total_quantity < self.min_sales_threshold:
            return None
        average = stats.total_quantity / self.days
        quantity = _ceil(average * self.cover_days)
        if quantity <= 0:
            return None
        return DemandSuggestion(
            product_id=stats.product_id,
            quantity=quantity,
            inputs={
                "analysis_period": self.days,
                "total_quantity": stats.total_quantity,
                "average_daily_sales": round(average, 4),
                "cover_days": self.cover_days,
                "current_stock": current_stock,
            },
        )


class EnhancedForecastStrategy(ForecastStrategy):
    """
    Safety-stocked demand, scaled up for spiky sellers and down for
    products that sell on few days, minus what is already on hand.
    """
    name = "enhanced"
    algorithm = "Enhanced"
    parameters = {
        "days": "FORECAST_DAYS",
        "min_sales_threshold": "FORECAST_MIN_SALES_THRESHOLD",
        "demand_days": "FORECAST_DEMAND_DAYS",
        "safety_stock_factor": "FORECAST_SAFETY_STOCK_FACTOR",
        "seasonal_adjustment": "FORECAST_SEASONAL_ADJUSTMENT",
    }
    max_variability_factor = 2.0
    max_frequency_factor = 1.5

    def __init__(
        self,
        days: int = 30,
        min_sales_threshold: int = 1,
        demand_days: int = 7,
        safety_stock_factor: float = 1.2,
        seasonal_adjustment: float = 1.0,
    ):
        super().__init__(days=days, min_sales_threshold=min_sales_threshold)
        self.demand_days = require_positive_int(demand_days, "demand_days")
        self.safety_stock_factor = coerce_float(safety_stock_factor, "safety_stock_factor")
        self.seasonal_adjustment = coerce_float(seasonal_adjustment, "seasonal_adjustment")

    def suggest(self, stats, current_stock):
        if stats.total_quantity < self.min_sales_threshold:
            return None

        average = stats.total_quantity / self.days
        frequency = stats.sale_days / self.days

        base_demand = average * self.demand_days * self.safety_stock_factor * self.seasonal_adjustment
        variability_factor = min(stats.max_daily_sales / max(average, 1), self.max_variability_factor)
        base_demand *= variability_factor
        frequency_factor = min(frequency * 2, self.max_frequency_factor)
        base_demand *= frequency_factor

        net_demand = max(0, _ceil(base_demand - current_stock))
        if net_demand == 0:
            return None

        return DemandSuggestion(
            product_id=stats.product_id,
            quantity=net_demand,
            inputs={
                "analysis_period": self.days,
                "total_quantity": stats.total_quantity,
                "total_revenue_cents": stats.total_revenue_cents,
                "average_daily_sales": round(average, 4),
                "max_daily_sales": stats.max_daily_sales,
                "min_daily_sales": stats.min_daily_sales,
                "sales_frequency": round(frequency, 4),
                "demand_days": self.demand_days,
                "safety_stock_factor": self.safety_stock_factor,
                "seasonal_adjustment": self.seasonal_adjustment,
                "variability_factor": round(variability_factor, 4),
                "frequency_factor": round(frequency_factor, 4),
                "base_demand": round(base_demand, 4),
                "current_stock": current_stock,
                "last_sale_at": to_utc_z(stats.last_sale_at),
            },
        )


STRATEGIES = {
    SimpleForecastStrategy.name: SimpleForecastStrategy,
    EnhancedForecastStrategy.name: EnhancedForecastStrategy,
}


def get_strategy(name: str, **params) -> ForecastStrategy:
    """
    Build a strategy by name. Parameters left out (or None) fall back to
    the app config defaults.
    """
    key = (name or "").strip().lower()
    strategy_cls = STRATEGIES.get(key)
    if strategy_cls is None:
        raise ValidationError(
            f"Unknown forecast strategy: {name}",
            details={"allowed": sorted(STRATEGIES)},
        )

    unknown = sorted(k for k, v in params.items() if v is not None and k not in strategy_cls.parameters)
    if unknown:
        raise ValidationError(
            f"Unsupported parameter(s) for {key} strategy: {', '.join(unknown)}",
            details={"allowed": sorted(strategy_cls.parameters)},
        )

    kwargs = {}
    for param, config_key in strategy_cls.parameters.items():
        value = params.get(param)
        if value is None:
            value = current_app.config.get(config_key)
        if value is not None:
            kwargs[param] = value
    return strategy_cls(**kwargs)


def collect_sales_statistics(
    days: int,
    location: Location | None = None,
    now: datetime | None = None,
) -> dict[int, SalesStatistics]:
    """
    Per-product sales over the trailing `days` days.

    Sales only happen at outlets, so a warehouse location does not narrow
    the sales considered (it still scopes the stock snapshot).
    """
    end = now or utcnow()
    start = end - timedelta(days=days)

    q = (
        db.session.query(Sale.created_at, SaleLine.product_id, SaleLine.quantity, SaleLine.line_total_cents)
        .join(SaleLine, SaleLine.sale_id == Sale.id)
        .filter(Sale.created_at >= start, Sale.created_at <= end)
    )
    if location is not None and location.kind == LocationKind.OUTLET:
        q = q.filter(Sale.at_location(location))

    stats: dict[int, SalesStatistics] = {}
    for created_at, product_id, quantity, line_total in q.all():
        entry = stats.get(product_id)
        if entry is None:
            entry = stats[product_id] = SalesStatistics(product_id=product_id)
        entry.add(created_at, quantity, line_total)
    return stats


def _demand_number() -> str:
    return f"DEM{str(int(time.time() * 1000))[-6:]}{secrets.token_hex(3).upper()}"


def generate_demand(
    strategy: str = "simple",
    *,
    location: Location | None = None,
    user_id: int | None = None,
    now: datetime | None = None,
    **params,
) -> DemandRun:
    """
    Run a forecast and store one pending Demand per product that needs
    replenishing.
    """
    forecaster = get_strategy(strategy, **params)
    end = now or utcnow()

    def _op():
        begin_write()
        if location is not None:
            resolve_location(location)

        stats = collect_sales_statistics(forecaster.days, location, end)
        on_hand = stock_by_product(location)

        demands: list[Demand] = []
        for product_id in sorted(stats):
            suggestion = forecaster.suggest(stats[product_id], on_hand.get(product_id, 0))
            if suggestion is None:
                continue
            demand = Demand(
                demand_number=_demand_number(),
                product_id=suggestion.product_id,
                location_kind=location.kind.value if location else None,
                location_id=location.id if location else None,
                quantity=suggestion.quantity,
                status=DEMAND_STATUS_PENDING,
                algorithm=forecaster.algorithm,
                inputs=suggestion.inputs,
                created_by_user_id=user_id,
                created_at=end,
            )
            db.session.add(demand)
            demands.append(demand)

        db.session.commit()
        current_app.logger.info(
            "Demand run (%s) at %s: %d product(s) analysed, %d demand(s) generated",
            forecaster.name, location or "all locations", len(stats), len(demands),
        )
        return DemandRun(
            generated_count=len(demands),
            demands=demands,
            analysis={
                "strategy": forecaster.name,
                "algorithm": forecaster.algorithm,
                "parameters": forecaster.settings(),
                "period_start": to_utc_z(end - timedelta(days=forecaster.days)),
                "period_end": to_utc_z(end),
                "products_analyzed": len(stats),
                "location": location.to_dict() if location else None,
            },
        )

    return run_with_retry(_op)


def get_demand(demand_id) -> Demand:
    demand = db.session.get(Demand, coerce_int(demand_id, "demand_id"))
    if demand is None:
        raise NotFoundError("Demand", demand_id)
    return demand


def list_demands(
    *,
    status: str | None = None,
    location: Location | None = None,
    page: int = 1,
    limit: int = 20,
) -> dict:
    if status is not None and status not in DEMAND_STATUSES:
        raise ValidationError(
            f"Invalid status: {status}",
            details={"allowed": list(DEMAND_STATUSES)},
        )
    page = max(int(page), 1)
    limit = min(max(int(limit), 1), 100)

    q = db.session.query(Demand)
    if status is not None:
        q = q.filter(Demand.status == status)
    if location is not None:
        q = q.filter(
            Demand.location_kind == location.kind.value,
            Demand.location_id == location.id,
        )

    total = q.count()
    items = (
        q.order_by(Demand.created_at.desc(), Demand.id.desc())
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


# Demands leave these states only through the listed targets.
_STATUS_TRANSITIONS = {
    DEMAND_STATUS_PENDING: {DEMAND_STATUS_APPROVED, DEMAND_STATUS_CANCELLED},
    DEMAND_STATUS_APPROVED: {DEMAND_STATUS_PENDING, DEMAND_STATUS_CANCELLED},
    DEMAND_STATUS_CONVERTED: set(),
    DEMAND_STATUS_CANCELLED: set(),
}


def update_demand_status(demand_id, status: str, user_id: int | None = None) -> Demand:
    """
    Approve, cancel or reopen a demand. Conversion goes through
    convert_demand() so it always comes with received stock.
    """
    status = (status or "").strip().lower()
    if status not in DEMAND_STATUSES:
        raise ValidationError(
            f"Invalid status: {status}",
            details={"allowed": list(DEMAND_STATUSES)},
        )
    if status == DEMAND_STATUS_CONVERTED:
        raise ValidationError("Use the convert operation to mark a demand converted")

    def _op():
        begin_write()
        demand = get_demand(demand_id)
        if status != demand.status and status not in _STATUS_TRANSITIONS[demand.status]:
            raise ValidationError(
                f"Cannot change demand status from {demand.status} to {status}",
                details={"demand_id": demand.id, "status": demand.status},
            )
        demand.status = status
        db.session.commit()
        current_app.logger.info("Demand %s marked %s by user %s", demand.demand_number, status, user_id)
        return demand

    return run_with_retry(_op)


def convert_demand(
    demand_id,
    *,
    warehouse_id,
    unit_cost_cents,
    unit_price_cents,
    quantity=None,
    batch_number=None,
    expires_on=None,
    user_id: int | None = None,
):
    """
    Receive a pending or approved demand as a new lot at a warehouse.

    Returns (demand, lot). quantity defaults to the demand's quantity.
    """
    warehouse = Location.parse(LocationKind.WAREHOUSE, warehouse_id)
    if quantity is not None:
        quantity = require_positive_int(quantity, "quantity")
    unit_cost_cents = require_amount_cents(unit_cost_cents, "unit_cost_cents")
    unit_price_cents = require_amount_cents(unit_price_cents, "unit_price_cents")
    batch_number = optional_str(batch_number, "batch_number", max_length=64)
    expires_on = optional_date(expires_on, "expires_on")

    def _op():
        begin_write()
        demand = get_demand(demand_id)
        if demand.status not in (DEMAND_STATUS_PENDING, DEMAND_STATUS_APPROVED):
            raise ValidationError(
                f"Demand {demand.demand_number} is {demand.status} and cannot be converted",
                details={"demand_id": demand.id, "status": demand.status},
            )
        resolve_location(warehouse)
        product = get_product(demand.product_id)

        lot = _receive_stock_inner(
            product=product,
            location=warehouse,
            quantity=quantity or demand.quantity,
            unit_cost_cents=unit_cost_cents,
            unit_price_cents=unit_price_cents,
            batch_number=batch_number,
            expires_on=expires_on,
            reference=demand.demand_number,
            note="Demand conversion",
            user_id=user_id,
        )
        demand.status = DEMAND_STATUS_CONVERTED
        db.session.commit()
        current_app.logger.info(
            "Demand %s converted: lot %s with %d unit(s) at %s",
            demand.demand_number, lot.id, lot.quantity, warehouse,
        )
        return demand, lot

    return run_with_retry(_op)

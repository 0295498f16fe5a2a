from datetime import datetime, timedelta

import pytest

from stockledger.errors import NotFoundError, ValidationError
from stockledger.extensions import db
from stockledger.models import Demand, Location, LocationKind, Sale, StockLot
from stockledger.services import forecast_service, sales_service, stock_service
from stockledger.services.forecast_service import (
    EnhancedForecastStrategy,
    SalesStatistics,
    SimpleForecastStrategy,
    collect_sales_statistics,
    get_strategy,
)


RUN_TIME = datetime(2024, 5, 31, 18, 0)


def _stats(total, daily):
    stats = SalesStatistics(product_id=1)
    for offset, quantity in enumerate(daily):
        stats.add(RUN_TIME - timedelta(days=offset + 1), quantity, quantity * 100)
    assert stats.total_quantity == total
    return stats


@pytest.fixture
def selling_history(db_session, outlet, product, make_lot):
    """90 units sold over 15 distinct days (6 per day), 10 left on hand."""
    make_lot(product, outlet, 100)
    for day in range(1, 16):
        sales_service.create_sale(
            outlet,
            [{"product_id": product.id, "quantity": 6, "unit_price_cents": 500}],
            now=RUN_TIME - timedelta(days=day),
        )
    return product


class TestStrategies:

    def test_enhanced_worked_example(self):
        strategy = EnhancedForecastStrategy(
            days=30, min_sales_threshold=1, demand_days=7, safety_stock_factor=1.2, seasonal_adjustment=1.0,
        )

        suggestion = strategy.suggest(_stats(90, [6] * 15), current_stock=10)

        assert suggestion.quantity == 41
        assert suggestion.inputs["variability_factor"] == 2.0
        assert suggestion.inputs["frequency_factor"] == 1.0
        assert suggestion.inputs["average_daily_sales"] == 3.0
        assert suggestion.inputs["current_stock"] == 10

    def test_enhanced_caps_variability_and_frequency(self):
        strategy = EnhancedForecastStrategy(days=10)
        # 20 units over 10 days: avg 2, one spike of 11, sold every day
        stats = _stats(20, [11] + [1] * 9)

        suggestion = strategy.suggest(stats, current_stock=0)

        assert suggestion.inputs["variability_factor"] == 2.0
        assert suggestion.inputs["frequency_factor"] == 1.5
        # 2 * 7 * 1.2 * 2.0 * 1.5 = 50.4
        assert suggestion.quantity == 51

    def test_enhanced_skips_when_stock_covers_demand(self):
        strategy = EnhancedForecastStrategy(days=30)

        assert strategy.suggest(_stats(90, [6] * 15), current_stock=60) is None

    def test_threshold_skips_slow_movers(self):
        stats = _stats(2, [1, 1])

        assert SimpleForecastStrategy(days=30, min_sales_threshold=3).suggest(stats, 0) is None
        assert EnhancedForecastStrategy(days=30, min_sales_threshold=3).suggest(stats, 0) is None

    def test_simple_is_a_week_of_average_sales(self):
        suggestion = SimpleForecastStrategy(days=30).suggest(_stats(90, [6] * 15), current_stock=500)

        assert suggestion.quantity == 21
        assert suggestion.inputs["average_daily_sales"] == 3.0

    def test_simple_rounds_up(self):
        suggestion = SimpleForecastStrategy(days=30).suggest(_stats(1, [1]), current_stock=0)

        assert suggestion.quantity == 1

    def test_get_strategy(self, app):
        assert isinstance(get_strategy("simple"), SimpleForecastStrategy)
        enhanced = get_strategy("Enhanced", safety_stock_factor=1.5)
        assert isinstance(enhanced, EnhancedForecastStrategy)
        assert enhanced.safety_stock_factor == 1.5
        assert enhanced.days == app.config["FORECAST_DAYS"]

        with pytest.raises(ValidationError):
            get_strategy("seasonal")
        with pytest.raises(ValidationError):
            get_strategy("simple", safety_stock_factor=2.0)
        with pytest.raises(ValidationError):
            get_strategy("simple", days=0)
        with pytest.raises(ValidationError):
            get_strategy("enhanced", safety_stock_factor=float("nan"))
        with pytest.raises(ValidationError):
            get_strategy("enhanced", seasonal_adjustment=float("inf"))


class TestSalesStatistics:

    def test_collects_per_day_series(self, selling_history, outlet):
        stats = collect_sales_statistics(30, outlet, RUN_TIME)[selling_history.id]

        assert stats.total_quantity == 90
        assert stats.total_revenue_cents == 90 * 500
        assert stats.sale_days == 15
        assert (stats.max_daily_sales, stats.min_daily_sales) == (6, 6)
        assert stats.last_sale_at == RUN_TIME - timedelta(days=1)

    def test_window_excludes_older_sales(self, selling_history, outlet):
        stats = collect_sales_statistics(5, outlet, RUN_TIME)[selling_history.id]

        assert stats.total_quantity == 30

    def test_other_outlets_are_excluded(self, selling_history, second_outlet):
        assert collect_sales_statistics(30, second_outlet, RUN_TIME) == {}


class TestGenerateDemand:

    def test_enhanced_run_stores_pending_demand(self, selling_history, outlet):
        lots_before = [(lot.id, lot.quantity) for lot in db.session.query(StockLot).order_by(StockLot.id)]
        sales_before = db.session.query(Sale).count()

        run = forecast_service.generate_demand(
            "enhanced",
            location=outlet,
            user_id=5,
            now=RUN_TIME,
            days=30,
            demand_days=7,
            safety_stock_factor=1.2,
            seasonal_adjustment=1.0,
        )

        assert run.generated_count == 1
        demand = run.demands[0]
        assert demand.product_id == selling_history.id
        assert demand.quantity == 41
        assert demand.status == "pending"
        assert demand.algorithm == "Enhanced"
        assert demand.location == outlet
        assert demand.inputs["analysis_period"] == 30
        assert demand.demand_number.startswith("DEM")
        assert run.analysis["products_analyzed"] == 1
        assert run.analysis["strategy"] == "enhanced"

        assert [(lot.id, lot.quantity) for lot in db.session.query(StockLot).order_by(StockLot.id)] == lots_before
        assert db.session.query(Sale).count() == sales_before

    def test_simple_run(self, selling_history, outlet):
        run = forecast_service.generate_demand("simple", location=outlet, now=RUN_TIME, days=30)

        assert [(d.product_id, d.quantity, d.algorithm) for d in run.demands] == [(selling_history.id, 21, "Simple")]

    def test_demand_numbers_are_unique(self, selling_history, outlet):
        for _ in range(3):
            forecast_service.generate_demand("simple", location=outlet, now=RUN_TIME, days=30)

        numbers = [d.demand_number for d in db.session.query(Demand).all()]
        assert len(numbers) == 3
        assert len(set(numbers)) == 3

    def test_unknown_location(self, db_session):
        with pytest.raises(NotFoundError):
            forecast_service.generate_demand("simple", location=Location(LocationKind.OUTLET, 404))


class TestDemandWorkflow:

    @pytest.fixture
    def demand(self, selling_history, outlet):
        return forecast_service.generate_demand("simple", location=outlet, now=RUN_TIME, days=30).demands[0]

    def test_list_by_status(self, demand):
        assert forecast_service.list_demands(status="pending")["total"] == 1
        assert forecast_service.list_demands(status="approved")["total"] == 0
        with pytest.raises(ValidationError):
            forecast_service.list_demands(status="shipped")

    def test_approve_then_convert_receives_stock(self, demand, warehouse, product):
        forecast_service.update_demand_status(demand.id, "approved")

        converted, lot = forecast_service.convert_demand(
            demand.id,
            warehouse_id=warehouse.id,
            unit_cost_cents=300,
            unit_price_cents=500,
            batch_number="PO-77",
        )

        assert converted.status == "converted"
        assert lot.location == warehouse
        assert lot.quantity == 21
        assert lot.batch_number == "PO-77"
        assert stock_service.get_on_hand(product.id, warehouse) == 21

    def test_converted_demand_is_final(self, demand, warehouse):
        forecast_service.convert_demand(demand.id, warehouse_id=warehouse.id, unit_cost_cents=1, unit_price_cents=2)

        with pytest.raises(ValidationError):
            forecast_service.convert_demand(demand.id, warehouse_id=warehouse.id, unit_cost_cents=1, unit_price_cents=2)
        with pytest.raises(ValidationError):
            forecast_service.update_demand_status(demand.id, "pending")

    def test_cancelled_demand_cannot_be_converted(self, demand, warehouse):
        forecast_service.update_demand_status(demand.id, "cancelled")

        with pytest.raises(ValidationError):
            forecast_service.convert_demand(demand.id, warehouse_id=warehouse.id, unit_cost_cents=1, unit_price_cents=2)
        assert stock_service.list_lots(location=warehouse) == []

    def test_status_cannot_be_set_to_converted_directly(self, demand):
        with pytest.raises(ValidationError):
            forecast_service.update_demand_status(demand.id, "converted")

    def test_missing_demand(self, db_session):
        with pytest.raises(NotFoundError):
            forecast_service.update_demand_status(12345, "approved")

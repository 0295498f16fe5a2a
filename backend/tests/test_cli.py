from datetime import timedelta

from stockledger.models import Demand
from stockledger.services import sales_service
from stockledger.time_utils import utcnow


class TestCli:

    def test_init_db(self, app, db_session):
        result = app.test_cli_runner().invoke(args=["system", "init-db"])

        assert result.exit_code == 0
        assert "Database tables created" in result.output

    def test_stock_lots(self, app, outlet, product, make_lot):
        make_lot(product, outlet, 4, batch_number="B-42")

        result = app.test_cli_runner().invoke(args=["stock", "lots", "--kind", "OUTLET", "--location-id", str(outlet.id)])

        assert result.exit_code == 0
        assert "B-42" in result.output
        assert "Total: 1 lot(s)" in result.output

    def test_stock_lots_empty(self, app, db_session):
        result = app.test_cli_runner().invoke(args=["stock", "lots"])

        assert result.exit_code == 0
        assert "No stock lots found." in result.output

    def test_demand_generate(self, app, db_session, outlet, product, make_lot):
        make_lot(product, outlet, 50)
        sales_service.create_sale(
            outlet,
            [{"product_id": product.id, "quantity": 30, "unit_price_cents": 100}],
            now=utcnow() - timedelta(days=2),
        )

        result = app.test_cli_runner().invoke(
            args=["demand", "generate", "--strategy", "simple", "--kind", "OUTLET", "--location-id", str(outlet.id)]
        )

        assert result.exit_code == 0
        assert "PASS 1 demand(s) generated" in result.output
        demand = db_session.query(Demand).one()
        assert demand.quantity == 7

    def test_demand_generate_requires_complete_location(self, app, db_session):
        result = app.test_cli_runner().invoke(args=["demand", "generate", "--kind", "OUTLET"])

        assert result.exit_code != 0

"""
Pytest fixtures for stockledger backend tests.

Provides the test app (in-memory SQLite), a per-test table wipe, and small
factories for locations, products, lots and customers.
"""

from datetime import datetime, timedelta

import pytest

from stockledger import create_app
from stockledger.config import Config
from stockledger.extensions import db
from stockledger.models import Customer, Location, LocationKind, Outlet, Product, Warehouse
from stockledger.services import stock_service


class LedgerTestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    LEDGER_RETRY_BACKOFF = 0.0


# Lot receipt times are offsets from this day, so FIFO order is explicit.
BASE_TIME = datetime(2024, 5, 1, 9, 0, 0)


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(LedgerTestConfig)

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def warehouse(db_session):
    row = Warehouse(code="WH-1", name="Central Warehouse")
    db_session.add(row)
    db_session.commit()
    return Location(LocationKind.WAREHOUSE, row.id)


@pytest.fixture(scope='function')
def outlet(db_session):
    row = Outlet(code="OUT-1", name="Main Street Outlet")
    db_session.add(row)
    db_session.commit()
    return Location(LocationKind.OUTLET, row.id)


@pytest.fixture(scope='function')
def second_outlet(db_session):
    row = Outlet(code="OUT-2", name="Harbour Outlet")
    db_session.add(row)
    db_session.commit()
    return Location(LocationKind.OUTLET, row.id)


@pytest.fixture(scope='function')
def make_product(db_session):
    counter = {"n": 0}

    def _make(name=None):
        counter["n"] += 1
        product = Product(sku=f"SKU-{counter['n']:03d}", name=name or f"Product {counter['n']}")
        db_session.add(product)
        db_session.commit()
        return product

    return _make


@pytest.fixture(scope='function')
def product(make_product):
    return make_product("Paracetamol 500mg")


@pytest.fixture(scope='function')
def make_lot(db_session):
    """Receive a lot `day` days after BASE_TIME (smaller day = older lot)."""
    def _make(product, location, quantity, day=0, batch_number=None, unit_price_cents=1000, unit_cost_cents=600):
        return stock_service.receive_stock(
            product_id=product.id,
            location=location,
            quantity=quantity,
            unit_cost_cents=unit_cost_cents,
            unit_price_cents=unit_price_cents,
            batch_number=batch_number,
            received_at=BASE_TIME + timedelta(days=day),
        )

    return _make


@pytest.fixture(scope='function')
def customer(db_session):
    row = Customer(name="Rahim Uddin", contact="01700000000")
    db_session.add(row)
    db_session.commit()
    return row

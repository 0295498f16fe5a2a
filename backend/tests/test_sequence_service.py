import threading
from datetime import datetime

import pytest

from conftest import LedgerTestConfig
from stockledger import create_app
from stockledger.errors import ValidationError
from stockledger.extensions import db
from stockledger.models import SequenceCounter
from stockledger.services import sequence_service
from stockledger.time_utils import date_key


class TestSequenceGenerator:

    def test_date_key_is_yymmdd(self):
        assert date_key(datetime(2024, 5, 17, 23, 59)) == "240517"

    def test_values_increase_per_type_and_day(self, db_session):
        assert sequence_service.next_sequence_value("sale", "240517") == 1
        assert sequence_service.next_sequence_value("sale", "240517") == 2
        assert sequence_service.next_sequence_value("sale", "240518") == 1
        assert sequence_service.next_sequence_value("order", "240517") == 1
        assert sequence_service.current_sequence_value("sale", "240517") == 2

    def test_transaction_id_formats(self, db_session):
        now = datetime(2024, 5, 17, 10, 30)

        assert sequence_service.next_transaction_id("sale", now) == "S2405170001"
        assert sequence_service.next_transaction_id("sale", now) == "S2405170002"
        assert sequence_service.next_transaction_id("order", now) == "ORD-240517-0001"
        assert sequence_service.next_transaction_id("return", now) == "R2405170001"

    def test_unknown_type_is_rejected(self, db_session):
        with pytest.raises(ValidationError):
            sequence_service.next_transaction_id("invoice")

    def test_rolled_back_allocation_does_not_burn_a_number(self, db_session):
        now = datetime(2024, 5, 17, 10, 30)
        sequence_service.next_transaction_id("sale", now)

        sequence_service.allocate_transaction_id("sale", now)
        db.session.rollback()

        assert sequence_service.next_transaction_id("sale", now) == "S2405170002"


class TestSequenceConcurrency:
    """Concurrent writers on a shared file database never share a number."""

    def test_concurrent_allocations_are_distinct_and_gap_free(self, tmp_path):
        config = type(
            "FileConfig",
            (LedgerTestConfig,),
            {"SQLALCHEMY_DATABASE_URI": f"sqlite:///{tmp_path / 'sequences.sqlite3'}", "LEDGER_RETRY_ATTEMPTS": 10},
        )
        app = create_app(config)
        with app.app_context():
            db.create_all()

        now = datetime(2024, 5, 17, 12, 0)
        results = []
        errors = []
        lock = threading.Lock()

        def worker():
            with app.app_context():
                try:
                    for _ in range(5):
                        transaction_id = sequence_service.next_transaction_id("sale", now)
                        with lock:
                            results.append(transaction_id)
                except Exception as exc:  # surfaced by the assertion below
                    with lock:
                        errors.append(exc)
                finally:
                    db.session.remove()

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        assert len(results) == 40
        assert len(set(results)) == 40
        assert sorted(results) == [f"S240517{n:04d}" for n in range(1, 41)]

        with app.app_context():
            counter = db.session.query(SequenceCounter).filter_by(transaction_type="sale", date_key="240517").one()
            assert counter.value == 40
            db.session.remove()
            db.engine.dispose()

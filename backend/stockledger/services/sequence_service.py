# Overview: Service-layer operations for date-scoped transaction sequences.

from __future__ import annotations

from datetime import datetime

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..errors import ConflictError, ValidationError
from ..extensions import db
from ..models import SequenceCounter
from stockledger.time_utils import date_key as make_date_key, utcnow
from .concurrency import begin_write, run_with_retry


TRANSACTION_ID_FORMATS = {
    "sale": "S{date_key}{seq:04d}",
    "order": "ORD-{date_key}-{seq:04d}",
    "return": "R{date_key}{seq:04d}",
}


def _validate_type(transaction_type: str) -> str:
    if transaction_type not in TRANSACTION_ID_FORMATS:
        raise ValidationError(
            f"Unknown transaction type: {transaction_type}",
            details={"allowed": sorted(TRANSACTION_ID_FORMATS)},
        )
    return transaction_type


def _next_sequence_value_inner(transaction_type: str, key: str) -> int:
    """
    Increment-and-read inside the caller's transaction.

    The bump is a single UPDATE ... SET value = value + 1; the row stays
    write-locked until the caller commits, so the follow-up read sees our
    own value. A rollback of the caller also rolls the counter back, which
    keeps the daily sequence gap-free.
    """
    stmt = (
        update(SequenceCounter)
        .where(
            SequenceCounter.transaction_type == transaction_type,
            SequenceCounter.date_key == key,
        )
        .values(value=SequenceCounter.value + 1)
        .execution_options(synchronize_session=False)
    )

    result = db.session.execute(stmt)
    if not result.rowcount:
        # First id of the day: insert under a savepoint; a concurrent
        # writer winning the insert means the row now exists, so bump it.
        try:
            with db.session.begin_nested():
                db.session.add(SequenceCounter(transaction_type=transaction_type, date_key=key, value=1))
            return 1
        except IntegrityError:
            result = db.session.execute(stmt)
            if not result.rowcount:
                raise ConflictError(f"Could not allocate {transaction_type} sequence for {key}")

    return (
        db.session.query(SequenceCounter.value)
        .filter_by(transaction_type=transaction_type, date_key=key)
        .scalar()
    )


def format_transaction_id(transaction_type: str, key: str, value: int) -> str:
    return TRANSACTION_ID_FORMATS[_validate_type(transaction_type)].format(date_key=key, seq=value)


def allocate_transaction_id(transaction_type: str, now: datetime | None = None) -> str:
    """Next human-readable id, within the caller's open transaction."""
    _validate_type(transaction_type)
    key = make_date_key(now or utcnow())
    value = _next_sequence_value_inner(transaction_type, key)
    return format_transaction_id(transaction_type, key, value)


def next_sequence_value(transaction_type: str, date_key: str | None = None) -> int:
    """Atomically allocate and commit the next value for (type, date key)."""
    _validate_type(transaction_type)
    key = date_key or make_date_key()

    def _op() -> int:
        begin_write()
        value = _next_sequence_value_inner(transaction_type, key)
        db.session.commit()
        return value

    return run_with_retry(_op)


def next_transaction_id(transaction_type: str, now: datetime | None = None) -> str:
    """
    Atomically allocate the next id for a transaction type, e.g. S2405170007.

    Standalone version of allocate_transaction_id: commits its own
    transaction. Sales and returns allocate inside their own transaction
    instead, so a failed sale does not burn a number.
    """
    _validate_type(transaction_type)

    def _op() -> str:
        begin_write()
        transaction_id = allocate_transaction_id(transaction_type, now)
        db.session.commit()
        return transaction_id

    return run_with_retry(_op)


def current_sequence_value(transaction_type: str, date_key: str | None = None) -> int:
    """Last issued value for (type, date key); 0 if none issued yet."""
    _validate_type(transaction_type)
    value = (
        db.session.query(SequenceCounter.value)
        .filter_by(transaction_type=transaction_type, date_key=date_key or make_date_key())
        .scalar()
    )
    return int(value or 0)

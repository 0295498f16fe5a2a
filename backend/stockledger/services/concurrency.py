# Overview: Service-layer operations for concurrency; transaction boundaries and bounded retries.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy import text
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import ConflictError, InternalError, LedgerError
from ..extensions import db


RETRYABLE_ERRORS = (OperationalError, StaleDataError, ConflictError)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def begin_write() -> None:
    """
    Open the write transaction for a ledger operation.

    SQLite has no row locks, so take the database write lock up front
    (BEGIN IMMEDIATE): the read-plan-write sequence then runs serialized.
    Must be the first statement of the operation.
    """
    if db.engine.dialect.name == "sqlite":
        db.session.execute(text("BEGIN IMMEDIATE"))


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float | None = None):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks), StaleDataError
    (optimistic locking conflicts) and ConflictError (lot no longer holds
    the planned quantity). Exhausted retries surface as ConflictError.

    Any LedgerError rolls the session back and propagates unchanged, so a
    failed operation never leaves partial writes behind. Other SQLAlchemy
    failures are logged and surface as InternalError. Anything else rolls
    back and propagates.
    """
    if attempts is None:
        attempts = current_app.config.get("LEDGER_RETRY_ATTEMPTS", 3)
    if backoff_base is None:
        backoff_base = current_app.config.get("LEDGER_RETRY_BACKOFF", 0.1)
    attempts = max(int(attempts), 1)

    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except RETRYABLE_ERRORS as exc:
            db.session.rollback()
            last_exc = exc
            current_app.logger.warning(
                "Ledger write conflict (attempt %d/%d): %s", attempt + 1, attempts, exc
            )
            if attempt < attempts - 1:
                time.sleep(backoff_base * (2 ** attempt))
        except LedgerError:
            db.session.rollback()
            raise
        except SQLAlchemyError as exc:
            db.session.rollback()
            current_app.logger.exception("Ledger persistence failure")
            raise InternalError("Persistence failure") from exc
        except Exception:
            db.session.rollback()
            raise

    raise ConflictError(
        "Concurrent update conflict, please retry",
        details={"attempts": attempts},
    ) from last_exc

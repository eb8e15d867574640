# Overview: Service-layer operations for concurrency; scoped write transactions with retry.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import ConflictError, PosError, TransactionError
from ..extensions import db


RETRYABLE_ERRORS = (OperationalError, StaleDataError)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; begin_write() takes the
    database write lock there instead.
    """
    return query.with_for_update()


def begin_write() -> None:
    """
    Start the write transaction for a unit of work.

    On SQLite, BEGIN IMMEDIATE grabs the reserved lock before the first read,
    so two writers cannot both read the same stock level and decrement it.
    """
    if db.engine.dialect.name == "sqlite":
        db.session.execute(text("BEGIN IMMEDIATE"))


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1, retry_on: tuple = ()):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks), StaleDataError
    (optimistic locking conflicts) and any extra exception types in retry_on.
    """
    retryable = RETRYABLE_ERRORS + tuple(retry_on)
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except retryable as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc


def run_unit_of_work(func, *, retry_on: tuple = ()):
    """
    Run func inside one write transaction: commit on success, roll back on any error.

    Persistence failures surface as ConflictError (integrity violations) or
    TransactionError (everything else); domain errors pass through unchanged.
    """
    def _op():
        begin_write()
        try:
            result = func()
            db.session.commit()
            return result
        except BaseException:
            db.session.rollback()
            raise

    try:
        return run_with_retry(
            _op,
            attempts=current_app.config.get("DB_RETRY_ATTEMPTS", 3),
            backoff_base=current_app.config.get("DB_RETRY_BACKOFF", 0.1),
            retry_on=retry_on,
        )
    except PosError:
        raise
    except IntegrityError as exc:
        raise ConflictError("Conflicting record already exists", details={"reason": str(exc.orig)}) from exc
    except (SQLAlchemyError, StaleDataError) as exc:
        current_app.logger.warning("Unit of work aborted: %s", exc)
        raise TransactionError("Transaction failed and was rolled back") from exc

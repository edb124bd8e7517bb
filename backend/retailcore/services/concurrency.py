# Overview: Locking and bounded-retry helpers for write operations.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..exceptions import ConcurrencyConflictError


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    populate_existing() makes sure a row already in the identity map is
    re-read under the lock instead of served from a stale snapshot.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; begin_write() covers it.
    """
    return query.with_for_update().populate_existing()


def begin_write() -> None:
    """
    Start the current unit of work as a write transaction.

    SQLite has no row locks, so the database write lock is taken up front
    (BEGIN IMMEDIATE). Concurrent writers then queue on the busy timeout
    instead of reading a quantity that is about to change.
    No-op on other dialects and when a transaction is already open.
    """
    if db.engine.dialect.name != "sqlite":
        return
    driver_connection = db.session.connection().connection.driver_connection
    if not driver_connection.in_transaction:
        db.session.execute(text("BEGIN IMMEDIATE"))


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float | None = None):
    """
    Execute a DB unit of work with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic version conflicts), then surfaces ConcurrencyConflictError.
    Any other exception rolls the session back and propagates unchanged, so
    a failed unit never leaves partial writes behind.
    """
    if attempts is None:
        attempts = current_app.config["LEDGER_RETRY_ATTEMPTS"]
    if backoff_base is None:
        backoff_base = current_app.config["LEDGER_RETRY_BACKOFF"]

    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                break
            current_app.logger.warning(
                "Write conflict (attempt %s/%s): %s", attempt + 1, attempts, exc.__class__.__name__
            )
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise

    raise ConcurrencyConflictError(
        f"Write could not be completed after {attempts} attempts",
        details={"attempts": attempts, "cause": last_exc.__class__.__name__ if last_exc else None},
    ) from last_exc

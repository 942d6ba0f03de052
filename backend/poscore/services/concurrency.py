# Overview: Transaction helpers shared by every unit of work: write locks, bounded retry, rollback on failure.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


# Lock waits, deadlocks and optimistic-lock conflicts
RETRYABLE_ERRORS = (OperationalError, StaleDataError)

# Also covers unique-key races (order numbers, lazily created rows)
CONSISTENCY_ERRORS = (OperationalError, StaleDataError, IntegrityError)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; begin_write() covers it there.
    """
    return query.with_for_update()


def begin_write() -> None:
    """
    Start the unit of work with a write lock on SQLite.

    SQLite has no row locks, so two terminals reading the same stock row
    would both pass their checks. BEGIN IMMEDIATE takes the database write
    lock up front and makes the second writer wait for the first commit.
    Other backends rely on lock_for_update() and version_id columns.
    """
    if db.engine.dialect.name != "sqlite":
        return
    raw = db.session.connection().connection.driver_connection
    if not raw.in_transaction:
        db.session.execute(text("BEGIN IMMEDIATE"))


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float | None = None, retry_on=RETRYABLE_ERRORS):
    """
    Execute a unit of work with retry on concurrency-related failures.

    Any exception rolls the session back before it propagates, so a failed
    attempt never leaves flushed rows behind. Only ``retry_on`` errors are
    retried, with exponential backoff, up to ``attempts`` times.
    """
    if attempts is None:
        attempts = current_app.config.get("RETRY_ATTEMPTS", 3)
    if backoff_base is None:
        backoff_base = current_app.config.get("RETRY_BACKOFF_BASE", 0.1)

    for attempt in range(attempts):
        try:
            return func()
        except retry_on as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise
            current_app.logger.warning(
                "Retrying after %s (attempt %d of %d)", type(exc).__name__, attempt + 1, attempts
            )
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise

# Overview: Unit-of-work helpers shared by every mutating service.

from __future__ import annotations

import logging
import time

from flask import current_app, has_app_context
from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


logger = logging.getLogger(__name__)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    On SQLite the writer lock is taken by begin_write_lock() instead.
    """
    return query.with_for_update()


def begin_write_lock() -> None:
    """
    Start the unit of work as a write transaction.

    SQLite has no row locks, so writers are serialized with BEGIN IMMEDIATE.
    Skipped when the DBAPI connection already has an open transaction
    (nested helper calls inside one unit of work).
    """
    if db.engine.dialect.name != "sqlite":
        return
    raw = db.session.connection().connection.driver_connection
    if raw.in_transaction:
        return
    db.session.execute(text("BEGIN IMMEDIATE"))


def _retry_setting(key: str, fallback):
    if has_app_context():
        return current_app.config.get(key, fallback)
    return fallback


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float | None = None):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, "database is locked") and
    StaleDataError (optimistic locking conflicts). Any other exception rolls
    the unit of work back and propagates unchanged.
    """
    if attempts is None:
        attempts = _retry_setting("RETRY_ATTEMPTS", 3)
    if backoff_base is None:
        backoff_base = _retry_setting("RETRY_BACKOFF_BASE", 0.1)

    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            logger.info("Retrying unit of work after %s (attempt %d/%d)", type(exc).__name__, attempt + 1, attempts)
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise
    if last_exc:
        raise last_exc

# Overview: Locking and retry helpers that define the ledger's unit of work.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..logging_config import get_logger

logger = get_logger("services.concurrency")


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    Rows already held by the session are overwritten with the locked
    values, so status checks never run against a stale copy.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update().populate_existing()


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float | None = None):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, lock timeouts) and StaleDataError
    (optimistic locking conflicts). Business errors are never retried.
    """
    config = current_app.config
    if attempts is None:
        attempts = config.get("LEDGER_LOCK_RETRY_ATTEMPTS", 3)
    if backoff_base is None:
        backoff_base = config.get("LEDGER_LOCK_RETRY_BACKOFF", 0.1)

    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise
            logger.warning(
                "retrying after lock failure",
                extra={"attempt": attempt + 1, "error": type(exc).__name__},
            )
            time.sleep(backoff_base * (2 ** attempt))


def run_atomic(func):
    """
    Run ``func`` as one unit of work: commit on success, roll back on any error.

    Nothing ``func`` wrote survives a failure, so callers never observe a
    transfer with legs in different states or a row without a reference.
    """
    def _unit():
        try:
            result = func()
            db.session.commit()
            return result
        except Exception:
            db.session.rollback()
            raise

    return run_with_retry(_unit)

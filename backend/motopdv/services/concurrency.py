# Overview: Service-layer helpers for concurrency and all-or-nothing writes.

from __future__ import annotations

import logging
import time

from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db

logger = logging.getLogger(__name__)


class PersistenceError(Exception):
    """Raised when the store rejects a write; nothing from the operation was kept."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts).
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            logger.warning("Concurrent write conflict, retrying (attempt %s/%s)", attempt + 1, attempts)
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc


def run_atomic(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Run `func` as one logical unit: it must stage every write in the session
    and commit once at the end. Any failure rolls the whole unit back.

    Domain exceptions propagate unchanged; database failures are wrapped in
    PersistenceError.
    """
    try:
        return run_with_retry(func, attempts=attempts, backoff_base=backoff_base)
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception("Atomic write failed and was rolled back")
        raise PersistenceError("Failed to persist changes") from exc
    except Exception:
        db.session.rollback()
        raise

# Overview: Row locks and retry-on-contention for order lifecycle writes.

"""
Contention helpers

Lifecycle writes are conditional UPDATEs, so a lost race shows up as a
zero row count rather than a corrupted row. What is left to handle:
- lock_for_update: SELECT ... FOR UPDATE on backends that honor it.
  SQLite ignores it; its single writer lock serializes instead.
- run_with_retry: re-run a unit of work when the database reports lock
  contention. The unit must be safe to repeat from the start.
"""

from __future__ import annotations

import logging
import time

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db

logger = logging.getLogger(__name__)

RETRYABLE_ERRORS = (OperationalError, StaleDataError)


def lock_for_update(query):
    return query.with_for_update()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1, label: str = "database operation"):
    """
    Call `func()` up to `attempts` times, rolling back and sleeping with
    exponential backoff between tries. The last error is re-raised.
    """
    for attempt in range(1, attempts + 1):
        try:
            return func()
        except RETRYABLE_ERRORS as exc:
            db.session.rollback()
            if attempt == attempts:
                logger.error("%s failed after %s attempts: %s", label, attempts, exc)
                raise
            delay = backoff_base * (2 ** (attempt - 1))
            logger.warning("%s hit contention (attempt %s/%s), retrying in %.2fs",
                           label, attempt, attempts, delay)
            time.sleep(delay)

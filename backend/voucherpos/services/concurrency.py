# Overview: Row locking and retry helpers for settlement transactions.

from __future__ import annotations

import logging
import time

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db

logger = logging.getLogger(__name__)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; settlements there are
    serialized by BEGIN IMMEDIATE instead.
    """
    return query.with_for_update()


def _default_rollback():
    db.session.rollback()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1, rollback=None):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts on version_id columns).

    ``rollback`` resets the unit of work between attempts. It is injected
    rather than hard-wired to db.session so the settlement engine can retry
    against the in-memory settlement repository, which has no SQLAlchemy
    session; it defaults to the Flask-SQLAlchemy session.
    """
    rollback = rollback or _default_rollback
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            logger.warning("Retrying after %s (attempt %d of %d)", type(exc).__name__, attempt + 1, attempts)
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc

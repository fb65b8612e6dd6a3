# Overview: Row locking and bounded retry for SQLite lock contention.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


RETRYABLE = (OperationalError, StaleDataError)


def lock_for_update(query):
    """SELECT ... FOR UPDATE where the backend supports it (SQLite compiles it away)."""
    return query.with_for_update()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Call ``func`` until it succeeds or ``attempts`` run out.

    Only lock timeouts ("database is locked") and product version conflicts
    are retried, each after a rollback and an exponential pause. LedgerError
    and everything else propagate on the first failure.

    Session close does not go through here: losing the close race must
    surface as CONFLICT.
    """
    attempt = 0
    while True:
        try:
            return func()
        except RETRYABLE:
            db.session.rollback()
            attempt += 1
            if attempt >= attempts:
                raise
            current_app.logger.warning("Lock contention, retry %d of %d", attempt, attempts - 1)
            time.sleep(backoff_base * (2 ** (attempt - 1)))

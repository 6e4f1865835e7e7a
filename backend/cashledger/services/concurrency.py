# Overview: Service-layer concurrency helpers: row locks, retry on transient DB failures, single-flight guards.

from __future__ import annotations

import threading
import time
from contextlib import contextmanager

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from cashledger.validation import ConflictError


ALL_FACILITIES = "all"

_inflight_lock = threading.Lock()
_inflight: set = set()


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
    (optimistic locking conflicts). func must redo all of its work, because
    the session is rolled back before each retry.
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
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc


@contextmanager
def single_flight(key):
    """
    Allow one holder per key inside this process.

    The ALL_FACILITIES key conflicts with every facility key and vice versa,
    so a global pass never overlaps a facility-scoped one.
    """
    with _inflight_lock:
        busy = key in _inflight or ALL_FACILITIES in _inflight or (key == ALL_FACILITIES and _inflight)
        if busy:
            raise ConflictError(f"A reconciliation pass is already running for scope {key!r}")
        _inflight.add(key)
    try:
        yield
    finally:
        with _inflight_lock:
            _inflight.discard(key)

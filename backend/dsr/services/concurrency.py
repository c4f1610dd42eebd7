# Overview: Retry, row locking and per-date serialization for ledger writes.

from __future__ import annotations

import threading
import time
from contextlib import contextmanager

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db

# Transient conflicts between two writers of the same business date.
# IntegrityError covers two runs inserting the same (date, product) row.
RETRYABLE_ERRORS = (OperationalError, StaleDataError, IntegrityError)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1, retry_on=RETRYABLE_ERRORS):
    """
    Execute a DB operation with retry on concurrency-related failures.

    func must be safe to call again from scratch: the session is rolled back
    before every retry.
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except retry_on as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc


class KeyedLock:
    """
    In-process mutex per key (one reconciliation per business date and
    ledger at a time). A key's lock is dropped once nobody holds or waits
    for it, so the table only ever holds keys in use.
    """

    def __init__(self):
        self._guard = threading.Lock()
        # key -> [lock, holders + waiters]
        self._locks = {}

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    @contextmanager
    def hold(self, key):
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = self._locks[key] = [threading.Lock(), 0]
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]


date_locks = KeyedLock()

# Overview: Per-key serialization, row locking and retry for workflow and ledger writes.

from __future__ import annotations

import threading
import time
from contextlib import contextmanager

from flask import current_app
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import Contention
from ..extensions import db


# Global acquisition order: every order key before any transfer key before
# any inventory key. Nested acquisitions follow the same order, so two
# callers can never wait on each other in a cycle.
_KEY_RANK = {"order": 0, "transfer": 1, "inventory": 2}


def order_key(order_id: int) -> tuple:
    return ("order", order_id)


def transfer_key(transfer_id: int) -> tuple:
    return ("transfer", transfer_id)


def inventory_key(variant_id: int, org_id: int) -> tuple:
    return ("inventory", variant_id, org_id)


def _sort_key(key: tuple):
    return (_KEY_RANK.get(key[0], 99),) + tuple(key[1:])


class KeyedLockRegistry:
    """
    In-process mutual exclusion per logical key.

    Locks are re-entrant so an operation already holding an order key may
    call helpers that take it again. Waits are bounded; on timeout every
    lock taken so far is released and Contention is raised.

    Entries are counted per holder or waiter and dropped when the count
    returns to zero, so the registry only holds keys currently in use.
    """

    def __init__(self):
        self._guard = threading.Lock()
        # key -> [lock, holders and waiters]
        self._locks: dict[tuple, list] = {}

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    def _checkout(self, key: tuple) -> threading.RLock:
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = self._locks[key] = [threading.RLock(), 0]
            entry[1] += 1
            return entry[0]

    def _checkin(self, key: tuple) -> None:
        with self._guard:
            entry = self._locks[key]
            entry[1] -= 1
            if entry[1] == 0:
                del self._locks[key]

    @contextmanager
    def hold(self, keys, timeout: float):
        ordered = sorted(set(keys), key=_sort_key)
        acquired: list[tuple] = []
        deadline = time.monotonic() + timeout
        try:
            for key in ordered:
                lock = self._checkout(key)
                remaining = max(0.0, deadline - time.monotonic())
                if not lock.acquire(timeout=remaining):
                    self._checkin(key)
                    raise Contention(
                        f"Timed out waiting for lock on {key[0]} {key[1:]}",
                        key=list(key),
                    )
                acquired.append((key, lock))
            yield
        finally:
            for key, lock in reversed(acquired):
                lock.release()
                self._checkin(key)


_registry = KeyedLockRegistry()


@contextmanager
def hold_keys(*keys, timeout: float | None = None):
    """Serialize the enclosed block against every other holder of the same keys."""
    if timeout is None:
        timeout = current_app.config.get("LOCK_TIMEOUT_SECONDS", 5.0)
    with _registry.hold(keys, timeout):
        yield


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; PostgreSQL honors it, which is
    what serializes writers running in different processes.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float | None = None):
    """
    Execute a unit of work with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, "database is locked"),
    StaleDataError (optimistic version conflicts) and IntegrityError (a
    concurrent writer took the same ledger sequence or idempotency key; the
    retry re-reads and either continues or returns the winner's row).
    Exhausted retries surface as Contention. Any other exception rolls the
    session back and propagates unchanged.
    """
    if attempts is None:
        attempts = current_app.config.get("RETRY_ATTEMPTS", 3)
    if backoff_base is None:
        backoff_base = current_app.config.get("RETRY_BACKOFF_BASE", 0.05)

    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError, IntegrityError) as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise Contention(
                    "Concurrent update detected; retry the operation",
                    cause=exc.__class__.__name__,
                ) from exc
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise

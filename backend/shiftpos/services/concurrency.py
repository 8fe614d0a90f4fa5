# Overview: Transaction boundary, row locking and retry helpers shared by all services.

from __future__ import annotations

import time
from contextlib import contextmanager

from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import StoreUnavailableError
from ..extensions import db, notifier

PENDING_EVENTS_KEY = "pending_events"

# Failures where the store, not the request, is at fault.
STORE_FAILURES = (OperationalError, InterfaceError, PoolTimeoutError)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    Correctness on SQLite comes from conditional UPDATEs and unique indexes.
    """
    return query.with_for_update()


def queue_event(event) -> None:
    """Queue a domain event; it is published only if the current unit of work commits."""
    db.session.info.setdefault(PENDING_EVENTS_KEY, []).append(event)


def _take_events() -> list:
    return db.session.info.pop(PENDING_EVENTS_KEY, None) or []


def _store_unavailable(exc) -> StoreUnavailableError:
    return StoreUnavailableError(
        "The data store is unavailable; the operation was not applied",
        {"cause": type(exc).__name__},
    )


@contextmanager
def store_guard():
    """
    Translate store failures raised outside a unit of work.

    Used around the read phase of an operation (lookups, pre-checks) so a
    failing store surfaces as StoreUnavailableError there too, not as a raw
    driver error.
    """
    try:
        yield
    except STORE_FAILURES as exc:
        db.session.rollback()
        raise _store_unavailable(exc) from exc


@contextmanager
def unit_of_work():
    """
    One atomic transaction around a service operation.

    - Commits on success, then hands queued events to the notifier.
    - Rolls back on any exception and discards queued events.
    - Store failures (lost connection, lock timeout, pool exhaustion) are
      re-raised as StoreUnavailableError so callers can tell "rejected"
      from "outcome unknown". Business errors and IntegrityError propagate
      unchanged.
    """
    session = db.session
    _take_events()
    try:
        yield session
        session.commit()
    except STORE_FAILURES as exc:
        session.rollback()
        _take_events()
        raise _store_unavailable(exc) from exc
    except Exception:
        session.rollback()
        _take_events()
        raise

    events = _take_events()
    if events:
        notifier.publish(events)


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on store failures (locks, timeouts) and StaleDataError
    (optimistic locking conflicts). Never used for sale creation: a sale
    whose fate is unknown is reported to the caller, not replayed.
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except (StoreUnavailableError, OperationalError, StaleDataError) as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc

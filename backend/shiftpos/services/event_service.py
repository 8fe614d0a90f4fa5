# Overview: Best-effort domain event fan-out; decoupled from the database transaction.

"""
Event Notifier

Domain events (sale created, stock low, price changed) are queued while a
unit of work runs and handed to the notifier only after it commits
successfully (see concurrency.unit_of_work). Delivery is fire-and-forget:

- Sinks are plain callables taking one event.
- In "async" mode each event is delivered on a small thread pool, so a slow
  sink never holds up the request that committed the work.
- A sink that raises is logged and skipped; the committed work is untouched.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Callable

from ..time_utils import to_utc_z

logger = logging.getLogger(__name__)

DISPATCH_ASYNC = "async"
DISPATCH_SYNC = "sync"


@dataclass(frozen=True)
class SaleCreated:
    sale_id: int
    location_id: int
    total_cents: int
    timestamp: datetime

    name = "sale.created"


@dataclass(frozen=True)
class StockLow:
    product_id: int
    location_id: int
    quantity: int
    threshold: int

    name = "stock.low"


@dataclass(frozen=True)
class PriceChanged:
    product_id: int
    old_price_cents: int
    new_price_cents: int

    name = "price.changed"


def event_to_dict(event) -> dict:
    payload = asdict(event)
    for key, value in payload.items():
        if isinstance(value, datetime):
            payload[key] = to_utc_z(value)
    payload["event"] = event.name
    return payload


class LoggingSink:
    """Default sink: one INFO line per event."""

    def __init__(self, log: logging.Logger | None = None):
        self.log = log or logging.getLogger("shiftpos.events")

    def __call__(self, event) -> None:
        self.log.info("event %s %s", event.name, event_to_dict(event))


class EventNotifier:
    """Flask-style extension that owns the registered sinks and the dispatch pool."""

    def __init__(self, app=None):
        self._sinks: list[Callable] = []
        self._mode = DISPATCH_ASYNC
        self._workers = 2
        self._executor: ThreadPoolExecutor | None = None
        self._futures: set = set()
        self._lock = threading.Lock()
        if app is not None:
            self.init_app(app)

    def init_app(self, app) -> None:
        self._mode = app.config.get("EVENT_DISPATCH_MODE", DISPATCH_ASYNC)
        self._workers = int(app.config.get("EVENT_DISPATCH_WORKERS", 2))
        if not any(isinstance(s, LoggingSink) for s in self._sinks):
            self._sinks.append(LoggingSink())
        app.extensions["event_notifier"] = self

    @property
    def mode(self) -> str:
        return self._mode

    def add_sink(self, sink: Callable) -> None:
        with self._lock:
            self._sinks.append(sink)

    def remove_sink(self, sink: Callable) -> None:
        with self._lock:
            if sink in self._sinks:
                self._sinks.remove(sink)

    def publish(self, events) -> None:
        """Deliver committed events. Never raises on sink failure."""
        for event in events:
            if self._mode == DISPATCH_SYNC:
                self._deliver(event)
                continue
            try:
                future = self._get_executor().submit(self._deliver, event)
            except RuntimeError:
                # Pool already shut down (interpreter exit); deliver inline instead.
                self._deliver(event)
                continue
            with self._lock:
                self._futures.add(future)
            future.add_done_callback(self._forget)

    def drain(self, timeout: float | None = 5.0) -> None:
        """Block until queued deliveries finish (tests, graceful shutdown)."""
        with self._lock:
            pending = list(self._futures)
        if pending:
            wait(pending, timeout=timeout)

    def shutdown(self) -> None:
        self.drain()
        with self._lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=True)

    def _get_executor(self) -> ThreadPoolExecutor:
        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self._workers,
                    thread_name_prefix="shiftpos-events",
                )
            return self._executor

    def _forget(self, future) -> None:
        with self._lock:
            self._futures.discard(future)

    def _deliver(self, event) -> None:
        with self._lock:
            sinks = list(self._sinks)
        for sink in sinks:
            try:
                sink(event)
            except Exception:
                logger.exception("Event sink %r failed for %s", sink, event.name)

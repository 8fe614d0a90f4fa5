"""
Event notifier tests.

Verifies:
- Sync and async delivery to every registered sink
- A failing sink is logged and never reaches the caller
- Events are published only for committed work
"""

import logging
import threading
from datetime import datetime

import pytest
from flask import Flask

from shiftpos.errors import InsufficientStockError
from shiftpos.services import catalog_service, sales_service
from shiftpos.services.event_service import (
    EventNotifier,
    LoggingSink,
    PriceChanged,
    SaleCreated,
    StockLow,
    event_to_dict,
)


def _notifier(mode):
    app = Flask(__name__)
    app.config["EVENT_DISPATCH_MODE"] = mode
    return EventNotifier(app)


SAMPLE = StockLow(product_id=1, location_id=2, quantity=1, threshold=5)


class TestNotifier:

    def test_sync_delivers_inline(self):
        notifier = _notifier("sync")
        received = []
        notifier.add_sink(lambda event: received.append((event, threading.current_thread().name)))

        notifier.publish([SAMPLE])

        assert received == [(SAMPLE, threading.current_thread().name)]

    def test_async_delivers_on_worker_threads(self):
        notifier = _notifier("async")
        received = []
        notifier.add_sink(lambda event: received.append((event, threading.current_thread().name)))

        notifier.publish([SAMPLE, SAMPLE])
        notifier.drain()
        notifier.shutdown()

        assert len(received) == 2
        assert all(name.startswith("shiftpos-events") for _, name in received)

    def test_failing_sink_is_logged_not_raised(self, caplog):
        notifier = _notifier("sync")
        received = []

        def broken(event):
            raise RuntimeError("sink down")

        notifier.add_sink(broken)
        notifier.add_sink(received.append)

        with caplog.at_level(logging.ERROR, logger="shiftpos.services.event_service"):
            notifier.publish([SAMPLE])

        assert received == [SAMPLE]
        assert "failed for stock.low" in caplog.text

    def test_remove_sink(self):
        notifier = _notifier("sync")
        received = []
        notifier.add_sink(received.append)
        notifier.remove_sink(received.append)
        notifier.publish([SAMPLE])
        assert received == []

    def test_logging_sink_registered_once(self):
        app = Flask(__name__)
        notifier = EventNotifier(app)
        notifier.init_app(app)
        assert sum(isinstance(s, LoggingSink) for s in notifier._sinks) == 1
        assert app.extensions["event_notifier"] is notifier


class TestEventPayloads:

    def test_event_to_dict(self):
        event = SaleCreated(sale_id=7, location_id=3, total_cents=1250, timestamp=datetime(2024, 5, 1, 12, 30))
        assert event_to_dict(event) == {
            "event": "sale.created",
            "sale_id": 7,
            "location_id": 3,
            "total_cents": 1250,
            "timestamp": "2024-05-01T12:30:00Z",
        }

    def test_logging_sink_writes_one_line(self, caplog):
        sink = LoggingSink(logging.getLogger("test.events"))
        with caplog.at_level(logging.INFO, logger="test.events"):
            sink(PriceChanged(product_id=1, old_price_cents=100, new_price_cents=150))
        assert len(caplog.records) == 1
        assert "price.changed" in caplog.records[0].getMessage()


class TestDomainEvents:

    def test_sale_created_after_commit(self, seller, location, product_a, stocked, open_shift,
                                       make_request, captured_events):
        sale = sales_service.create_sale(make_request("CASH", [(product_a.id, 1)]), seller)

        created = [e for e in captured_events if isinstance(e, SaleCreated)]
        assert len(created) == 1
        assert created[0].sale_id == sale.id
        assert created[0].total_cents == 1000
        assert created[0].location_id == location.id

    def test_failed_sale_publishes_nothing(self, seller, product_a, stocked, open_shift,
                                           make_request, captured_events):
        with pytest.raises(InsufficientStockError):
            sales_service.create_sale(make_request("CASH", [(product_a.id, 11)]), seller)
        assert captured_events == []

    def test_price_change_event(self, product_a, captured_events):
        catalog_service.update_product(product_a.id, {"price_cents": 1200})
        assert captured_events == [PriceChanged(product_id=product_a.id, old_price_cents=1000, new_price_cents=1200)]

    def test_no_event_when_price_unchanged(self, product_a, captured_events):
        catalog_service.update_product(product_a.id, {"name": "Dark Roast Beans", "price_cents": 1000})
        assert captured_events == []

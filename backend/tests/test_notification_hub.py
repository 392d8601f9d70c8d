"""Stock event hub tests: fan-out, unsubscribe, failing subscribers."""

import threading

from tradebook.services.notification_service import StockEventHub


def _collector():
    events = []
    done = threading.Event()

    def callback(event):
        events.append(event)
        done.set()

    return events, done, callback


class TestStockEventHub:
    def test_publish_reaches_every_subscriber(self):
        hub = StockEventHub(max_workers=2)
        first, first_done, first_cb = _collector()
        second, second_done, second_cb = _collector()
        hub.subscribe(first_cb)
        hub.subscribe(second_cb)

        hub.publish(7, 42)

        assert first_done.wait(2)
        assert second_done.wait(2)
        hub.shutdown()
        assert first == [{"product_id": 7, "new_stock": 42}]
        assert second == [{"product_id": 7, "new_stock": 42}]

    def test_unsubscribe_stops_delivery(self):
        hub = StockEventHub()
        events, _, callback = _collector()
        unsubscribe = hub.subscribe(callback)
        unsubscribe()

        hub.publish(1, 1)
        hub.shutdown()
        assert events == []

    def test_failing_subscriber_does_not_block_others(self):
        hub = StockEventHub(max_workers=1)

        def broken(event):
            raise RuntimeError("subscriber down")

        events, done, callback = _collector()
        hub.subscribe(broken)
        hub.subscribe(callback)

        hub.publish(3, 0)

        assert done.wait(2)
        hub.shutdown()
        assert events == [{"product_id": 3, "new_stock": 0}]

    def test_publish_without_subscribers_is_noop(self):
        hub = StockEventHub()
        hub.publish(1, 5)
        hub.shutdown()

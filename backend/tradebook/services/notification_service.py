# Overview: In-process fan-out of stock-changed events after commit.

"""
Stock Notification Hub

Fire-and-forget: publish() hands each subscriber call to a small thread
pool and returns immediately. Events are only published from after-commit
callbacks, so subscribers never observe stock that later rolls back.
Subscriber failures are logged and dropped.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Callable

logger = logging.getLogger(__name__)

StockCallback = Callable[[dict], None]


class StockEventHub:
    def __init__(self, max_workers: int = 2):
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="stock-events")
        self._subscribers: list[StockCallback] = []
        self._lock = threading.Lock()

    def subscribe(self, callback: StockCallback) -> Callable[[], None]:
        """Register a callback; returns a function that unsubscribes it."""
        with self._lock:
            self._subscribers.append(callback)

        def _unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return _unsubscribe

    def publish(self, product_id: int, new_stock: int) -> None:
        event = {"product_id": product_id, "new_stock": new_stock}
        with self._lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            self._executor.submit(self._deliver, callback, event)

    @staticmethod
    def _deliver(callback: StockCallback, event: dict) -> None:
        try:
            callback(event)
        except Exception:
            logger.exception("stock event subscriber failed for product %s", event["product_id"])

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

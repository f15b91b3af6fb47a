"""
Event Channel for RepForm.

Bounded producer/consumer queue with a latest-value cache, used to
hand calibration profiles and feedback events from worker threads to
whoever is listening. Late subscribers receive the latest value on
subscription.

When the queue is full the oldest undelivered item is dropped.
"""

import logging
import threading
from collections import deque
from typing import Any, Callable, Deque, List, Optional

logger = logging.getLogger(__name__)

Subscriber = Callable[[Any], None]


class EventChannel:
    """
    Example:
        >>> channel = EventChannel(capacity=16)
        >>> channel.subscribe(print)
        >>> channel.publish({"score": 0.9})
        >>> channel.drain()            # or channel.start() for a dispatcher thread
    """

    def __init__(self, capacity: int = 64, name: str = "events"):
        self.name = name
        self._queue: Deque[Any] = deque(maxlen=max(1, capacity))
        self._condition = threading.Condition()
        self._subscribers: List[Subscriber] = []
        self._latest: Any = None
        self._has_latest = False
        self._dropped = 0

        self._dispatcher: Optional[threading.Thread] = None
        self._running = False

    @property
    def latest(self) -> Any:
        with self._condition:
            return self._latest

    @property
    def dropped(self) -> int:
        return self._dropped

    @property
    def pending(self) -> int:
        with self._condition:
            return len(self._queue)

    def publish(self, item: Any) -> None:
        with self._condition:
            if len(self._queue) == self._queue.maxlen:
                self._dropped += 1
            self._queue.append(item)
            self._latest = item
            self._has_latest = True
            self._condition.notify()

    def subscribe(self, callback: Subscriber, replay: bool = True) -> Callable[[], None]:
        """Register ``callback``; returns a function that unsubscribes it."""
        with self._condition:
            self._subscribers.append(callback)
            latest, has_latest = self._latest, self._has_latest

        if replay and has_latest:
            self._deliver(callback, latest)

        def unsubscribe() -> None:
            with self._condition:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def drain(self) -> List[Any]:
        """Deliver every queued item to current subscribers, in order."""
        with self._condition:
            items = list(self._queue)
            self._queue.clear()
            subscribers = list(self._subscribers)

        for item in items:
            for callback in subscribers:
                self._deliver(callback, item)
        return items

    def clear(self) -> None:
        with self._condition:
            self._queue.clear()
            self._latest = None
            self._has_latest = False

    # ==================== DISPATCHER ====================

    def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._dispatcher = threading.Thread(target=self._dispatch_loop, name=f"{self.name}-dispatcher")
        self._dispatcher.daemon = True
        self._dispatcher.start()

    def stop(self) -> None:
        with self._condition:
            self._running = False
            self._condition.notify_all()
        if self._dispatcher is not None and self._dispatcher is not threading.current_thread():
            self._dispatcher.join(timeout=1.0)
        self._dispatcher = None

    def _dispatch_loop(self) -> None:
        while True:
            with self._condition:
                while self._running and not self._queue:
                    self._condition.wait(timeout=0.5)
                if not self._running:
                    return
            self.drain()

    def _deliver(self, callback: Subscriber, item: Any) -> None:
        try:
            callback(item)
        except Exception:
            logger.exception(f"Subscriber of '{self.name}' failed")

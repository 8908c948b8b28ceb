"""Observer channel for pipeline outcome events.

Subscribers (the CLI, the audit log) hold a ``Subscription`` handle and
detach through it. The channel has a fixed subscriber capacity.
"""

import logging
import threading
from collections.abc import Callable
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

E = TypeVar("E")

DEFAULT_MAX_SUBSCRIBERS = 16


class Subscription:
    """Handle returned by ``EventChannel.subscribe``."""

    def __init__(self, channel: "EventChannel", callback: Callable) -> None:
        self._channel = channel
        self._callback = callback
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def close(self) -> None:
        if self._active:
            self._channel._remove(self._callback)
            self._active = False

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()


class EventChannel(Generic[E]):
    """Synchronous publish/subscribe with a bounded subscriber list.

    Usage::

        channel = EventChannel()
        with channel.subscribe(print):
            channel.publish(event)
    """

    def __init__(self, max_subscribers: int = DEFAULT_MAX_SUBSCRIBERS) -> None:
        self._max = max_subscribers
        self._subscribers: list[Callable[[E], None]] = []
        self._lock = threading.Lock()

    def subscribe(self, callback: Callable[[E], None]) -> Subscription:
        with self._lock:
            if len(self._subscribers) >= self._max:
                raise RuntimeError(f"Event channel is full ({self._max} subscribers)")
            self._subscribers.append(callback)
        return Subscription(self, callback)

    def _remove(self, callback: Callable[[E], None]) -> None:
        with self._lock:
            try:
                self._subscribers.remove(callback)
            except ValueError:
                pass

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def publish(self, event: E) -> None:
        """Deliver ``event`` to every subscriber.

        A failing subscriber is logged and does not stop delivery to the rest.
        """
        with self._lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(event)
            except Exception:
                logger.exception("Event subscriber %r failed", callback)

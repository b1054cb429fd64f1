"""Notification bus used to publish discovery events to subscribers.

Brief:
  The engine calls ``notify(topic, payload)``; subscribers registered for the
  topic receive ``callback(topic, payload)``. Delivery happens on a
  BackgroundDispatcher unless the bus is created with ``asynchronous=False``.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Dict, List, Optional

from .dispatch import BackgroundDispatcher

logger = logging.getLogger(__name__)

ADVERTISEMENT = "advertisement"

Subscriber = Callable[[str, Dict[str, Any]], None]


class NotificationBus:
    """Brief: Topic-based publish/subscribe with fire-and-forget delivery.

    Inputs (constructor):
      - asynchronous: When True (default) subscribers run on a worker thread;
        when False they run inline inside notify().
      - dispatcher: Optional BackgroundDispatcher to share with other
        collaborators.

    Outputs:
      - NotificationBus instance.

    Example:
      >>> bus = NotificationBus(asynchronous=False)
      >>> seen = []
      >>> bus.subscribe("advertisement", lambda t, p: seen.append(p))
      >>> bus.notify("advertisement", {"node": "a@h1", "ttl": 120})
      >>> seen
      [{'node': 'a@h1', 'ttl': 120}]
    """

    def __init__(
        self,
        *,
        asynchronous: bool = True,
        dispatcher: Optional[BackgroundDispatcher] = None,
    ) -> None:
        self._subscribers: Dict[str, List[Subscriber]] = {}
        self._lock = threading.Lock()
        self._dispatcher: Optional[BackgroundDispatcher] = None
        if asynchronous:
            self._dispatcher = dispatcher or BackgroundDispatcher("beacon-notify")

    def subscribe(self, topic: str, callback: Subscriber) -> None:
        with self._lock:
            self._subscribers.setdefault(topic, []).append(callback)

    def unsubscribe(self, topic: str, callback: Subscriber) -> None:
        with self._lock:
            callbacks = self._subscribers.get(topic, [])
            if callback in callbacks:
                callbacks.remove(callback)

    def notify(self, topic: str, payload: Dict[str, Any]) -> None:
        """Brief: Publish payload to every subscriber of topic.

        Inputs:
          - topic: Event name (for example, "advertisement").
          - payload: Event body; each subscriber receives its own shallow copy.

        Outputs:
          - None; returns without waiting for asynchronous subscribers.
        """

        with self._lock:
            callbacks = list(self._subscribers.get(topic, []))
        if not callbacks:
            logger.debug("No subscribers for %s event %r", topic, payload)
            return
        for callback in callbacks:
            if self._dispatcher is not None:
                self._dispatcher.submit(callback, topic, dict(payload))
            else:
                self._deliver(callback, topic, dict(payload))

    @staticmethod
    def _deliver(callback: Subscriber, topic: str, payload: Dict[str, Any]) -> None:
        try:
            callback(topic, payload)
        except Exception:
            logger.exception("Subscriber %r failed for %s event", callback, topic)

    def flush(self) -> None:
        """Wait until all queued deliveries have run (no-op when synchronous)."""
        if self._dispatcher is not None:
            self._dispatcher.join()

    def close(self) -> None:
        if self._dispatcher is not None:
            self._dispatcher.close()


def log_advertisement(topic: str, payload: Dict[str, Any]) -> None:
    """Default subscriber: trace delivered peer events at debug level."""
    node = payload.get("node")
    ttl = int(payload.get("ttl", 0))
    if ttl == 0:
        logger.debug("Peer %s said goodbye", node)
    else:
        logger.debug("Peer %s advertised (ttl=%ds)", node, ttl)

"""
Topic-based event bus used for ``processed`` and ``detected`` results.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

PROCESSED = "processed"
DETECTED = "detected"


@dataclass
class Subscription:
    callback: Callable[[Any], None]
    once: bool = False


class EventBus:
    """Synchronous publish/subscribe.

    Callbacks run on the publishing thread. A failing subscriber is logged and
    does not prevent delivery to the others.
    """

    def __init__(self) -> None:
        self._topics: Dict[str, List[Subscription]] = {}
        self._lock = threading.RLock()

    def subscribe(self, topic: str, callback: Callable[[Any], None], once: bool = False) -> None:
        if not callable(callback):
            raise TypeError("callback must be callable")
        with self._lock:
            self._topics.setdefault(topic, []).append(Subscription(callback=callback, once=once))

    def once(self, topic: str, callback: Callable[[Any], None]) -> None:
        self.subscribe(topic, callback, once=True)

    def unsubscribe(self, topic: Optional[str] = None, callback: Optional[Callable[[Any], None]] = None) -> None:
        """Remove ``callback`` from ``topic``; no callback clears the topic, no topic clears all."""
        with self._lock:
            if topic is None:
                self._topics.clear()
                return
            if callback is None:
                self._topics.pop(topic, None)
                return
            subs = self._topics.get(topic, [])
            self._topics[topic] = [s for s in subs if s.callback != callback]

    def subscriber_count(self, topic: str) -> int:
        with self._lock:
            return len(self._topics.get(topic, []))

    def publish(self, topic: str, data: Any) -> int:
        """Deliver ``data`` to every subscriber of ``topic``; returns the delivery count."""
        with self._lock:
            subs = list(self._topics.get(topic, []))
            if any(s.once for s in subs):
                self._topics[topic] = [s for s in self._topics.get(topic, []) if not s.once]

        delivered = 0
        for sub in subs:
            try:
                sub.callback(data)
                delivered += 1
            except Exception:
                logger.exception("Subscriber for '%s' failed", topic)
        return delivered

"""In-process publish/subscribe hub for progress topics.

Topics are named ``<kind>_progress_<session_id>``. The session id is the
only capability required to subscribe, so it must be non-empty.
Publishing never blocks and never fails because nobody is listening.
"""

import logging
import queue
import threading
from collections import defaultdict
from typing import Dict, Iterator, List, Optional

from .events import ProgressEventBase

logger = logging.getLogger(__name__)


def topic_name(kind: str, session_id: str) -> str:
    if not session_id:
        raise ValueError("session_id is required to address a progress topic")
    return f"{kind}_progress_{session_id}"


class ProgressSubscription:
    """One subscriber's view of a topic.

    Enforces the terminal guard on the receiving side: after the first
    complete or error event, later events (duplicates included) are
    dropped and iteration ends.
    """

    def __init__(self, hub: "ProgressHub", topic: str, max_queue: int = 100):
        self.topic = topic
        self._hub = hub
        self._queue: "queue.Queue[ProgressEventBase]" = queue.Queue(maxsize=max_queue)
        self._terminal = False
        self._lock = threading.Lock()

    @property
    def closed(self) -> bool:
        return self._terminal

    def deliver(self, event: ProgressEventBase) -> bool:
        """Enqueue an event; returns False if it was dropped."""
        with self._lock:
            if self._terminal:
                return False
            if event.is_terminal:
                self._terminal = True
            try:
                self._queue.put_nowait(event)
            except queue.Full:
                # Keep the newest events; progress is lossy by nature
                try:
                    self._queue.get_nowait()
                except queue.Empty:
                    pass
                self._queue.put_nowait(event)
            return True

    def get(self, timeout: Optional[float] = None) -> Optional[ProgressEventBase]:
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def events(self, timeout: float = 15.0, max_idle: int = 40) -> Iterator[Optional[ProgressEventBase]]:
        """Yield events until a terminal one; yields None on each idle timeout.

        Stops after ``max_idle`` consecutive idle periods.
        """
        idle = 0
        try:
            while True:
                event = self.get(timeout=timeout)
                if event is None:
                    idle += 1
                    if idle >= max_idle:
                        return
                    yield None
                    continue
                idle = 0
                yield event
                if event.is_terminal:
                    return
        finally:
            self.close()

    def close(self):
        self._hub.unsubscribe(self)


class ProgressHub:
    """Thread-safe fan-out of progress events to subscribers."""

    def __init__(self, max_queue: int = 100):
        self._max_queue = max_queue
        self._subscribers: Dict[str, List[ProgressSubscription]] = defaultdict(list)
        self._lock = threading.Lock()

    def subscribe(self, kind: str, session_id: str) -> ProgressSubscription:
        topic = topic_name(kind, session_id)
        subscription = ProgressSubscription(self, topic, max_queue=self._max_queue)
        with self._lock:
            self._subscribers[topic].append(subscription)
        logger.debug(f"Subscribed to {topic}")
        return subscription

    def unsubscribe(self, subscription: ProgressSubscription):
        with self._lock:
            subs = self._subscribers.get(subscription.topic)
            if subs and subscription in subs:
                subs.remove(subscription)
                if not subs:
                    del self._subscribers[subscription.topic]

    def publish(self, topic: str, event: ProgressEventBase) -> int:
        """Fan an event out to current subscribers. Returns deliveries made."""
        with self._lock:
            subs = list(self._subscribers.get(topic, ()))
        delivered = sum(1 for sub in subs if sub.deliver(event))
        logger.debug(f"Published {event.type} to {topic} ({delivered} subscribers)")
        return delivered

    def subscriber_count(self, topic: str) -> int:
        with self._lock:
            return len(self._subscribers.get(topic, ()))

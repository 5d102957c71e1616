"""Session-scoped progress publishing for long-running operations."""

import logging
import threading
from typing import Optional

from .events import CompleteEvent, ErrorEvent, ProgressEvent, ProgressEventBase
from .hub import ProgressHub, topic_name

logger = logging.getLogger(__name__)


class ProgressBroadcaster:
    """Publishes step/complete/error events for one session.

    Fire-and-forget: the pipeline never waits on, or fails because of,
    delivery. Once a complete or error event has been sent, further
    events from this broadcaster are ignored.
    """

    def __init__(self, hub: ProgressHub, kind: str, session_id: str):
        self.topic = topic_name(kind, session_id)
        self.kind = kind
        self.session_id = session_id
        self._hub = hub
        self._finished = False
        self._lock = threading.Lock()

    @property
    def finished(self) -> bool:
        return self._finished

    def broadcast_step(
        self,
        step: str,
        message: str = "",
        percentage: Optional[int] = None,
        current: Optional[int] = None,
        total: Optional[int] = None,
    ):
        self._publish(ProgressEvent(
            step=step, message=message, percentage=percentage, current=current, total=total,
        ))

    def broadcast_complete(self, result_id, redirect_target: Optional[str] = None, message: str = "Complete"):
        self._publish(CompleteEvent(
            message=message,
            result_id=str(result_id) if result_id is not None else None,
            redirect_target=redirect_target,
        ))

    def broadcast_error(self, message: str):
        self._publish(ErrorEvent(message=message))

    def _publish(self, event: ProgressEventBase):
        with self._lock:
            if self._finished:
                logger.debug(f"Ignoring {event.type} on finished topic {self.topic}")
                return
            if event.is_terminal:
                self._finished = True
        try:
            self._hub.publish(self.topic, event)
        except Exception as e:
            logger.warning(f"Progress publish to {self.topic} failed: {e}")


class NullBroadcaster:
    """Stand-in used when an operation has no session to report to."""

    finished = False

    def broadcast_step(self, *args, **kwargs):
        pass

    def broadcast_complete(self, *args, **kwargs):
        pass

    def broadcast_error(self, *args, **kwargs):
        pass

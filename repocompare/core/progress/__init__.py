"""Session-scoped progress channels."""

from .broadcaster import NullBroadcaster, ProgressBroadcaster
from .events import CompleteEvent, ErrorEvent, ProgressEvent, ProgressEventBase
from .hub import ProgressHub, ProgressSubscription, topic_name

__all__ = [
    "NullBroadcaster",
    "ProgressBroadcaster",
    "CompleteEvent",
    "ErrorEvent",
    "ProgressEvent",
    "ProgressEventBase",
    "ProgressHub",
    "ProgressSubscription",
    "topic_name",
]

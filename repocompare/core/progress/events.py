"""Progress event types published on session-scoped channels.

Each event serializes to a single SSE ``data:`` line via ``to_sse()``.
Optional fields that are unset are omitted from the payload.
"""

import json
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional

TERMINAL_TYPES = ("complete", "error")


@dataclass
class ProgressEventBase:
    """Base class for all progress events."""

    type: str
    message: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}

    def to_sse(self) -> str:
        """Serialize to Server-Sent Events format."""
        return f"data: {json.dumps(self.to_dict(), default=str)}\n\n"

    @property
    def is_terminal(self) -> bool:
        return self.type in TERMINAL_TYPES


@dataclass
class ProgressEvent(ProgressEventBase):
    """A pipeline step started or advanced."""

    type: str = "progress"
    step: Optional[str] = None
    percentage: Optional[int] = None
    current: Optional[int] = None
    total: Optional[int] = None


@dataclass
class CompleteEvent(ProgressEventBase):
    """The operation finished; carries the result to navigate to."""

    type: str = "complete"
    result_id: Optional[str] = None
    redirect_target: Optional[str] = None


@dataclass
class ErrorEvent(ProgressEventBase):
    """The operation failed terminally."""

    type: str = "error"

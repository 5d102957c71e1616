"""Progress streaming over Server-Sent Events."""

import logging

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse

from ...core.db.models import OPERATION_KINDS
from ...core.errors import RecordNotFoundError
from ...core.progress import CompleteEvent, ErrorEvent
from ..deps import get_engine, get_hub

logger = logging.getLogger(__name__)

router = APIRouter(tags=["progress"])

KEEPALIVE = ": keepalive\n\n"


def _terminal_event_for(status: dict):
    """Synthesize the final event for a subscriber that attached late."""
    if status["status"] == "completed":
        redirect = status.get("redirect_target")
        if not redirect:
            prefix = "/repositories" if status["kind"] == "analysis" else "/comparisons"
            redirect = f"{prefix}/{status['result_id']}"
        return CompleteEvent(message="Complete", result_id=status["result_id"], redirect_target=redirect)
    if status["status"] == "failed":
        return ErrorEvent(message=status["error_message"] or "Something went wrong. Please try again.")
    return None


@router.get("/progress/{kind}/{session_id}")
def stream_progress(
    kind: str,
    session_id: str,
    hub=Depends(get_hub),
    engine=Depends(get_engine),
):
    if kind not in OPERATION_KINDS:
        raise HTTPException(status_code=404, detail=f"Unknown progress kind: {kind}")
    try:
        subscription = hub.subscribe(kind, session_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    # Subscribe first, then check status, so a finish in between is not missed
    try:
        status = engine.get_status(session_id)
    except RecordNotFoundError:
        subscription.close()
        raise HTTPException(status_code=404, detail="Session not found")

    final = _terminal_event_for(status)

    def event_generator():
        if final is not None:
            subscription.close()
            yield final.to_sse()
            return
        for event in subscription.events():
            if event is None:
                yield KEEPALIVE
                continue
            yield event.to_sse()

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )

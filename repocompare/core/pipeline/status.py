"""Terminal transitions for OperationStatus rows.

processing is the only non-terminal state. Both transitions are guarded
UPDATEs so concurrent finishers cannot both win, and both release the
pending cost reservation.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from ..db.models import OperationStatus

logger = logging.getLogger(__name__)


class StatusStore:
    """Read and finish OperationStatus rows within a caller's session."""

    def get(self, session: Session, session_id: str) -> Optional[OperationStatus]:
        return (
            session.query(OperationStatus)
            .filter(OperationStatus.session_id == session_id)
            .first()
        )

    def complete(self, session: Session, session_id: str, result_id, redirect_target: Optional[str] = None) -> bool:
        """processing -> completed. Returns False if already terminal.

        ``redirect_target`` is kept so late subscribers get the same link.
        """
        return self._finish(
            session, session_id, status="completed", result_id=result_id, redirect_target=redirect_target,
        )

    def fail(self, session: Session, session_id: str, message: str) -> bool:
        """processing -> failed. Returns False if already terminal."""
        return self._finish(session, session_id, status="failed", error_message=message)

    def _finish(self, session: Session, session_id: str, **values) -> bool:
        result = session.execute(
            update(OperationStatus)
            .where(
                OperationStatus.session_id == session_id,
                OperationStatus.status == "processing",
            )
            .values(pending_cost_usd=0.0, completed_at=datetime.utcnow(), worker_id=None, **values)
            .execution_options(synchronize_session=False)
        )
        won = result.rowcount == 1
        if not won:
            logger.warning(f"Status {session_id} already terminal; ignoring {values.get('status')}")
        return won

    @staticmethod
    def to_dict(status: OperationStatus) -> Dict[str, Any]:
        return {
            "session_id": status.session_id,
            "kind": status.kind,
            "status": status.status,
            "result_id": str(status.result_id) if status.result_id else None,
            "redirect_target": status.redirect_target,
            "error_message": status.error_message,
            "retry_count": status.retry_count,
            "created_at": status.created_at.isoformat() if status.created_at else None,
            "completed_at": status.completed_at.isoformat() if status.completed_at else None,
        }

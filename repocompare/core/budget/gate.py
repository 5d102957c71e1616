"""Daily budget gate and pending-cost reservations.

remaining = daily_budget - actual_cost_today - pending_cost_today

A reservation is the OperationStatus row itself: it is inserted in
``processing`` with ``pending_cost_usd`` set, and the pending amount is
zeroed when the status reaches a terminal state. Budget reads and the
insert happen in one transaction under a lock so two concurrent requests
cannot both observe room and jointly overspend.
"""

import logging
import threading
import zlib
from datetime import datetime, timedelta
from typing import Callable, Optional
from uuid import UUID

from sqlalchemy import func, text
from sqlalchemy.orm import Session

from ..db import DatabaseManager
from ..db.models import Analysis, Comparison, OperationStatus, User
from ..errors import BudgetExceededError, UserLimitReachedError

logger = logging.getLogger(__name__)

COMPARISON = "comparison"
ANALYSIS = "analysis"

# One process-wide lock per kind; PostgreSQL also takes an advisory xact lock
_RESERVATION_LOCKS = {COMPARISON: threading.Lock(), ANALYSIS: threading.Lock()}


def _as_uuid(value) -> Optional[UUID]:
    if value is None or isinstance(value, UUID):
        return value
    return UUID(str(value))


class BudgetGate:
    """Decides whether a new paid operation may start, and reserves for it."""

    def __init__(
        self,
        db_manager: DatabaseManager,
        settings,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self._db = db_manager
        self._settings = settings
        self._clock = clock

    # ── Snapshot reads ──────────────────────────────────────────────────

    def daily_budget(self, kind: str) -> float:
        if kind == ANALYSIS:
            return self._settings.daily_deep_analysis_budget_usd
        return self._settings.daily_comparison_budget_usd

    def estimated_cost(self, kind: str) -> float:
        if kind == ANALYSIS:
            return self._settings.estimated_deep_analysis_cost_usd
        return self._settings.estimated_comparison_cost_usd

    def _start_of_today(self) -> datetime:
        return self._clock().replace(hour=0, minute=0, second=0, microsecond=0)

    def actual_cost_today(self, session: Session, kind: str) -> float:
        since = self._start_of_today()
        if kind == ANALYSIS:
            q = session.query(func.coalesce(func.sum(Analysis.cost_usd), 0.0)).filter(
                Analysis.analysis_type == "deep",
                Analysis.created_at >= since,
            )
        else:
            q = session.query(func.coalesce(func.sum(Comparison.cost_usd), 0.0)).filter(
                Comparison.created_at >= since,
            )
        return float(q.scalar() or 0.0)

    def pending_cost_today(self, session: Session, kind: str) -> float:
        total = (
            session.query(func.coalesce(func.sum(OperationStatus.pending_cost_usd), 0.0))
            .filter(
                OperationStatus.kind == kind,
                OperationStatus.status == "processing",
                OperationStatus.created_at >= self._start_of_today(),
            )
            .scalar()
        )
        return float(total or 0.0)

    def remaining_budget_today(self, session: Session, kind: str = ANALYSIS) -> float:
        spent = self.actual_cost_today(session, kind) + self.pending_cost_today(session, kind)
        return max(0.0, self.daily_budget(kind) - spent)

    def can_create_today(self, session: Session, kind: str = ANALYSIS) -> bool:
        spent = self.actual_cost_today(session, kind) + self.pending_cost_today(session, kind)
        return spent < self.daily_budget(kind)

    # ── Per-user caps ───────────────────────────────────────────────────

    def is_admin(self, user: Optional[User]) -> bool:
        if user is None:
            return False
        return bool(user.is_admin) or (
            user.github_id is not None and user.github_id in self._settings.admin_github_ids
        )

    def user_limit(self, kind: str) -> int:
        if kind == ANALYSIS:
            return self._settings.deep_analysis_per_user
        return self._settings.daily_comparison_limit

    def user_usage_today(self, session: Session, user_id, kind: str) -> int:
        """Operations the user has consumed in the current window.

        Comparisons use a rolling 24h window of created comparisons plus
        in-flight requests; deep analyses count since midnight.
        """
        uid = _as_uuid(user_id)
        if kind == COMPARISON:
            since = self._clock() - timedelta(hours=24)
            created = (
                session.query(func.count(Comparison.comparison_id))
                .filter(Comparison.user_id == uid, Comparison.created_at >= since)
                .scalar()
            )
            in_flight = (
                session.query(func.count(OperationStatus.status_id))
                .filter(
                    OperationStatus.kind == COMPARISON,
                    OperationStatus.user_id == uid,
                    OperationStatus.status == "processing",
                    OperationStatus.created_at >= since,
                )
                .scalar()
            )
            return int(created or 0) + int(in_flight or 0)

        return int(
            session.query(func.count(OperationStatus.status_id))
            .filter(
                OperationStatus.kind == ANALYSIS,
                OperationStatus.user_id == uid,
                OperationStatus.status != "failed",
                OperationStatus.created_at >= self._start_of_today(),
            )
            .scalar()
            or 0
        )

    def user_can_create_today(self, session: Session, user_id, kind: str) -> bool:
        if user_id is None:
            return True
        user = session.get(User, _as_uuid(user_id))
        if self.is_admin(user):
            return True
        return self.user_usage_today(session, user_id, kind) < self.user_limit(kind)

    def remaining_for_user(self, session: Session, user_id, kind: str) -> Optional[int]:
        """Operations left today; None means unlimited."""
        user = session.get(User, _as_uuid(user_id)) if user_id else None
        if self.is_admin(user):
            return None
        return max(0, self.user_limit(kind) - self.user_usage_today(session, user_id, kind))

    # ── Reservation ─────────────────────────────────────────────────────

    def reserve(
        self,
        kind: str,
        session_id: str,
        user_id=None,
        query: Optional[str] = None,
        repository_id=None,
        force_refresh: bool = False,
        estimated_cost: Optional[float] = None,
    ) -> OperationStatus:
        """Check budget and user cap, then insert the processing status.

        Raises:
            UserLimitReachedError: user is over the per-user daily cap
            BudgetExceededError: no budget remains for today
        """
        pending = self.estimated_cost(kind) if estimated_cost is None else estimated_cost

        with _RESERVATION_LOCKS[kind]:
            with self._db.get_session() as session:
                if self._db.dialect == "postgresql":
                    session.execute(
                        text("SELECT pg_advisory_xact_lock(:key)"),
                        {"key": zlib.crc32(f"budget:{kind}".encode())},
                    )

                if not self.user_can_create_today(session, user_id, kind):
                    limit = self.user_limit(kind)
                    logger.info(f"User {user_id} reached daily {kind} limit ({limit})")
                    raise UserLimitReachedError(
                        f"Daily {kind} limit reached",
                        user_message=(
                            f"You've reached your daily limit of {limit} {kind}s. "
                            "Try again tomorrow!"
                        ),
                    )

                if not self.can_create_today(session, kind):
                    logger.info(f"Daily {kind} budget exhausted")
                    raise BudgetExceededError(
                        f"Daily {kind} budget exceeded",
                        user_message=(
                            f"Daily {kind} budget has been exceeded. Please try again tomorrow."
                        ),
                    )

                status = OperationStatus(
                    session_id=session_id,
                    kind=kind,
                    status="processing",
                    user_id=_as_uuid(user_id),
                    query=query,
                    repository_id=_as_uuid(repository_id),
                    force_refresh=force_refresh,
                    pending_cost_usd=pending,
                    created_at=self._clock(),
                )
                session.add(status)
                session.flush()

        logger.info(f"Reserved ${pending:.4f} for {kind} session {session_id}")
        return status

"""Batch background categorization of queued repositories."""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional, Sequence

from sqlalchemy.orm import Session

from ..db import DatabaseManager
from ..db.models import QueuedAnalysis

logger = logging.getLogger(__name__)

BATCH_SIZE = 20
BATCH_COST_LIMIT = 0.10
RETRY_DELAYS_SECONDS = (300, 1800, 7200)
MAX_RETRIES = 3


@dataclass
class BatchResult:
    processed: int = 0
    failed: int = 0
    skipped: int = 0
    cost: float = 0.0

    def to_dict(self) -> dict:
        return {
            "processed": self.processed,
            "failed": self.failed,
            "skipped": self.skipped,
            "cost": round(self.cost, 6),
        }


def ready_to_process(session: Session, now: datetime, limit: int):
    """Pending rows due now, highest priority first, oldest first within a priority."""
    return (
        session.query(QueuedAnalysis)
        .filter(
            QueuedAnalysis.status == "pending",
            QueuedAnalysis.scheduled_for <= now,
        )
        .order_by(QueuedAnalysis.priority.desc(), QueuedAnalysis.created_at.asc())
        .limit(limit)
        .all()
    )


class QueuedAnalysisProcessor:
    """Process up to ``batch_size`` queued analyses under a soft cost ceiling.

    The ceiling is checked before each item, so a batch may overshoot it by
    at most one analysis.
    """

    def __init__(
        self,
        db_manager: DatabaseManager,
        analyzer,
        batch_size: int = BATCH_SIZE,
        cost_limit: float = BATCH_COST_LIMIT,
        retry_delays: Sequence[float] = RETRY_DELAYS_SECONDS,
        reanalyze_after_days: int = 7,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self._db = db_manager
        self._analyzer = analyzer
        self.batch_size = batch_size
        self.cost_limit = cost_limit
        self.retry_delays = tuple(retry_delays)
        self.reanalyze_after_days = reanalyze_after_days
        self._clock = clock

    @classmethod
    def from_settings(cls, db_manager, analyzer, settings) -> "QueuedAnalysisProcessor":
        return cls(
            db_manager,
            analyzer,
            batch_size=settings.batch_size,
            cost_limit=settings.batch_cost_limit_usd,
            retry_delays=settings.batch_retry_delays_seconds,
            reanalyze_after_days=settings.reanalyze_after_days,
        )

    def process_batch(self) -> BatchResult:
        result = BatchResult()
        now = self._clock()

        with self._db.get_session() as session:
            batch = ready_to_process(session, now, self.batch_size)
            if not batch:
                logger.info("No queued analyses ready")
                return result

            for queued in batch:
                if result.cost >= self.cost_limit:
                    logger.info(f"Batch cost ceiling reached (${result.cost:.4f}); stopping")
                    break
                self._process_one(session, queued, result)

        logger.info(
            f"Batch done: {result.processed} processed, {result.failed} failed, "
            f"{result.skipped} skipped, ${result.cost:.4f}"
        )
        return result

    def _process_one(self, session: Session, queued: QueuedAnalysis, result: BatchResult):
        queued.status = "processing"
        queued.processed_at = self._clock()
        repo = queued.repository

        if repo is None or not repo.needs_analysis(self.reanalyze_after_days, now=self._clock()):
            queued.status = "completed"
            result.skipped += 1
            return

        try:
            with session.begin_nested():
                outcome = self._analyzer.analyze(session, repo)
        except Exception as e:
            logger.error(f"Queued analysis failed for {repo.full_name}: {e}", exc_info=True)
            self._handle_failure(queued, e)
            result.failed += 1
            return

        queued.status = "completed"
        result.cost += outcome.cost_usd or 0.0
        result.processed += 1

    def _handle_failure(self, queued: QueuedAnalysis, error: Exception):
        queued.status = "failed"
        queued.error_message = str(error)[:2000]
        queued.retry_count = (queued.retry_count or 0) + 1

        if queued.retry_count <= MAX_RETRIES and queued.retry_count <= len(self.retry_delays):
            delay = self.retry_delays[queued.retry_count - 1]
            queued.status = "pending"
            queued.scheduled_for = self._clock() + timedelta(seconds=delay)
            logger.info(
                f"Rescheduled {queued.queue_id} (retry {queued.retry_count}) in {delay:.0f}s"
            )

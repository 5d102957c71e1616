"""Background worker for comparison and deep-analysis jobs.

- Daemon thread with its own asyncio event loop
- Queue-based job processing with Semaphore concurrency control
- Polls operation_statuses for claimable jobs

Claim protocol:
- A job is claimable while status = 'processing', worker_id IS NULL and
  next_attempt_at is NULL or past
- Claims are conditional UPDATEs, one row at a time
- Stale claims (started_at older than stale_threshold) are released
- Transient upstream errors go back to claimable with exponential
  backoff until max_attempts; every other error fails immediately
"""

import asyncio
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional
from uuid import uuid4

from sqlalchemy import or_, update

from ..db import DatabaseManager
from ..db.models import OperationStatus
from ..errors import (
    GENERIC_FAILURE_MESSAGE,
    RepoCompareError,
    TransientUpstreamError,
    user_message_for,
)
from ..progress import ProgressBroadcaster, ProgressHub
from .status import StatusStore

logger = logging.getLogger(__name__)


@dataclass
class OperationJob:
    """A claimed comparison or analysis job."""
    session_id: str
    kind: str
    worker_id: str
    attempt: int
    query: Optional[str] = None
    user_id: Optional[str] = None
    repository_id: Optional[str] = None
    force_refresh: bool = False


class ComparisonWorker:
    """Background worker for queued comparisons and deep analyses.

    Lifecycle:
    1. start() spawns daemon thread with asyncio loop
    2. _poll_pending() claims jobs every poll_interval
    3. _process_job_sync() runs the pipeline for the job's kind and
       finishes the status (which releases the cost reservation)
    4. stop() signals shutdown
    """

    def __init__(
        self,
        db_manager: DatabaseManager,
        hub: ProgressHub,
        comparison_pipeline,
        deep_pipeline=None,
        status_store: Optional[StatusStore] = None,
        poll_interval: float = 2.0,
        max_concurrent: int = 2,
        max_attempts: int = 2,
        base_backoff_seconds: float = 5.0,
        stale_threshold: float = 600.0,
    ):
        self._db = db_manager
        self._hub = hub
        self._comparisons = comparison_pipeline
        self._deep = deep_pipeline
        self._statuses = status_store or StatusStore()
        self.poll_interval = poll_interval
        self.max_concurrent = max_concurrent
        self.max_attempts = max_attempts
        self.base_backoff_seconds = base_backoff_seconds
        self.stale_threshold = stale_threshold
        self.worker_id = f"comparison-{uuid4()}"

        self._queue: Optional[asyncio.Queue] = None
        self._running = False
        self._thread: Optional[threading.Thread] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._semaphore: Optional[asyncio.Semaphore] = None

    @property
    def running(self) -> bool:
        return self._running

    def start(self):
        """Start the background worker thread."""
        if self._running:
            logger.warning("Comparison worker already running")
            return
        self._running = True
        self._thread = threading.Thread(
            target=self._run_loop, daemon=True, name="comparison-worker"
        )
        self._thread.start()
        logger.info("Comparison worker started")

    def stop(self):
        """Stop the background worker."""
        self._running = False
        if self._loop:
            self._loop.call_soon_threadsafe(self._loop.stop)
        if self._thread:
            self._thread.join(timeout=5.0)
        logger.info("Comparison worker stopped")

    def _run_loop(self):
        """Run the async event loop in the background thread."""
        self._loop = asyncio.new_event_loop()
        asyncio.set_event_loop(self._loop)
        self._queue = asyncio.Queue()
        self._semaphore = asyncio.Semaphore(self.max_concurrent)

        try:
            self._loop.run_until_complete(self._main_loop())
        except Exception as e:
            logger.error(f"Comparison worker loop error: {e}")
        finally:
            self._loop.close()

    async def _main_loop(self):
        poll_task = asyncio.create_task(self._poll_pending())

        while self._running:
            try:
                job = await asyncio.wait_for(self._queue.get(), timeout=self.poll_interval)
                asyncio.create_task(self._process_with_semaphore(job))
            except asyncio.TimeoutError:
                continue
            except Exception as e:
                logger.error(f"Error in comparison main loop: {e}")

        poll_task.cancel()

    async def _poll_pending(self):
        while self._running:
            try:
                for job in self._claim_pending_jobs(limit=self.max_concurrent):
                    await self._queue.put(job)
            except Exception as e:
                logger.error(f"Error polling comparison jobs: {e}")
            await asyncio.sleep(self.poll_interval)

    async def _process_with_semaphore(self, job: OperationJob):
        async with self._semaphore:
            await asyncio.to_thread(self._process_job_sync, job)

    def process_pending(self, limit: int = 10) -> int:
        """Claim and run jobs synchronously in the calling thread."""
        jobs = self._claim_pending_jobs(limit=limit)
        for job in jobs:
            self._process_job_sync(job)
        return len(jobs)

    # ── Job execution ───────────────────────────────────────────────────

    def _process_job_sync(self, job: OperationJob):
        """Run one job to a terminal state or back to claimable."""
        logger.info(f"Processing {job.kind} job {job.session_id} (attempt {job.attempt})")
        broadcaster = ProgressBroadcaster(self._hub, job.kind, job.session_id)

        try:
            if job.kind == "analysis":
                if self._deep is None:
                    raise RepoCompareError("Deep analysis is not configured")
                analysis = self._deep.run(job.repository_id, broadcaster=broadcaster)
                result_id = analysis.analysis_id
                redirect = f"/repositories/{job.repository_id}"
                message = "Analysis complete!"
            else:
                result = self._comparisons.run(
                    job.query,
                    session_id=job.session_id,
                    force_refresh=job.force_refresh,
                    user_id=job.user_id,
                    broadcaster=broadcaster,
                )
                result_id = result.comparison_id
                if result.newly_created:
                    redirect = f"/comparisons/{result_id}?newly_created=true"
                else:
                    redirect = f"/comparisons/{result_id}?similarity={result.similarity:.2f}"
                message = "Comparison complete!"
        except TransientUpstreamError as e:
            logger.warning(f"Job {job.session_id} transient failure: {e}")
            self._handle_transient_failure(job, e, broadcaster)
            return
        except RepoCompareError as e:
            logger.warning(f"Job {job.session_id} failed: {type(e).__name__}: {e}")
            self._fail(job, e.user_message, broadcaster)
            return
        except Exception as e:
            logger.error(f"Job {job.session_id} failed: {e}", exc_info=True)
            self._fail(job, GENERIC_FAILURE_MESSAGE, broadcaster)
            return

        with self._db.get_session() as session:
            won = self._statuses.complete(session, job.session_id, result_id, redirect_target=redirect)
        if won:
            broadcaster.broadcast_complete(result_id, redirect_target=redirect, message=message)
            logger.info(f"Job {job.session_id} completed -> {result_id}")

    def _fail(self, job: OperationJob, message: str, broadcaster: ProgressBroadcaster):
        with self._db.get_session() as session:
            won = self._statuses.fail(session, job.session_id, message)
        if won:
            broadcaster.broadcast_error(message)

    def _handle_transient_failure(self, job: OperationJob, error: Exception, broadcaster):
        """Back to claimable with exponential backoff, or terminal failure."""
        if job.attempt >= self.max_attempts:
            logger.error(f"Job {job.session_id} exhausted {self.max_attempts} attempts")
            self._fail(job, user_message_for(error), broadcaster)
            return

        next_attempt_at = datetime.utcnow() + timedelta(
            seconds=self.base_backoff_seconds * (2 ** job.attempt)
        )
        with self._db.get_session() as session:
            session.execute(
                update(OperationStatus)
                .where(
                    OperationStatus.session_id == job.session_id,
                    OperationStatus.worker_id == self.worker_id,
                    OperationStatus.status == "processing",
                )
                .values(worker_id=None, next_attempt_at=next_attempt_at, error_message=user_message_for(error))
                .execution_options(synchronize_session=False)
            )
        broadcaster.broadcast_step("retrying", "Temporary issue reaching an upstream service, retrying...")
        logger.info(f"Job {job.session_id} rescheduled for {next_attempt_at.isoformat()}")

    # ── DB Operations ───────────────────────────────────────────────────

    def _claim_pending_jobs(self, limit: int = 2) -> List[OperationJob]:
        """Claim claimable jobs with one conditional UPDATE per row."""
        now = datetime.utcnow()

        with self._db.get_session() as session:
            self._release_stale(session, now)

            candidates = (
                session.query(OperationStatus.status_id)
                .filter(
                    OperationStatus.status == "processing",
                    OperationStatus.worker_id.is_(None),
                    or_(
                        OperationStatus.next_attempt_at.is_(None),
                        OperationStatus.next_attempt_at <= now,
                    ),
                )
                .order_by(OperationStatus.created_at)
                .limit(limit)
            )
            if self._db.dialect == "postgresql":
                candidates = candidates.with_for_update(skip_locked=True)

            claimed_ids = []
            for (status_id,) in candidates.all():
                result = session.execute(
                    update(OperationStatus)
                    .where(
                        OperationStatus.status_id == status_id,
                        OperationStatus.status == "processing",
                        OperationStatus.worker_id.is_(None),
                    )
                    .values(
                        worker_id=self.worker_id,
                        started_at=now,
                        retry_count=OperationStatus.retry_count + 1,
                        next_attempt_at=None,
                    )
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 1:
                    claimed_ids.append(status_id)

            if not claimed_ids:
                return []

            rows = (
                session.query(OperationStatus)
                .filter(OperationStatus.status_id.in_(claimed_ids))
                .order_by(OperationStatus.created_at)
                .all()
            )
            jobs = [
                OperationJob(
                    session_id=row.session_id,
                    kind=row.kind,
                    worker_id=self.worker_id,
                    attempt=row.retry_count,
                    query=row.query,
                    user_id=row.user_id,
                    repository_id=row.repository_id,
                    force_refresh=bool(row.force_refresh),
                )
                for row in rows
            ]

        logger.debug(f"Claimed {len(jobs)} jobs")
        return jobs

    def _release_stale(self, session, now: datetime):
        """Release claims whose worker stopped without finishing."""
        cutoff = now - timedelta(seconds=self.stale_threshold)
        session.execute(
            update(OperationStatus)
            .where(
                OperationStatus.status == "processing",
                OperationStatus.worker_id.isnot(None),
                OperationStatus.started_at < cutoff,
                OperationStatus.retry_count < self.max_attempts,
            )
            .values(worker_id=None)
            .execution_options(synchronize_session=False)
        )
        session.execute(
            update(OperationStatus)
            .where(
                OperationStatus.status == "processing",
                OperationStatus.worker_id.isnot(None),
                OperationStatus.started_at < cutoff,
                OperationStatus.retry_count >= self.max_attempts,
            )
            .values(
                status="failed",
                worker_id=None,
                pending_cost_usd=0.0,
                completed_at=now,
                error_message=GENERIC_FAILURE_MESSAGE,
            )
            .execution_options(synchronize_session=False)
        )

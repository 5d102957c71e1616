"""Unit tests for ComparisonWorker.

Tests cover:
- Worker lifecycle (start/stop)
- Claiming and completing comparison and analysis jobs
- Domain failures fail immediately with the user message
- Transient failures back off, then fail once attempts are exhausted
- Stale claims are released or failed
"""

from datetime import datetime, timedelta
from unittest.mock import MagicMock, patch
from uuid import uuid4

import pytest

from repocompare.core.db.models import OperationStatus
from repocompare.core.errors import (
    GENERIC_FAILURE_MESSAGE,
    NoRepositoriesFoundError,
    SourceRateLimitError,
    SourceSearchError,
    SourceTimeoutError,
)
from repocompare.core.pipeline import ComparisonWorker, PipelineResult
from repocompare.core.progress import ProgressHub
from repocompare.tests.conftest import make_comparison, make_repository


# ── Fixtures ──────────────────────────────────────────────────────────────


def _enqueue(db, session_id="s1", kind="comparison", **kwargs):
    with db.get_session() as session:
        status = OperationStatus(
            session_id=session_id,
            kind=kind,
            status="processing",
            pending_cost_usd=0.05,
            query=kwargs.pop("query", "rails background jobs" if kind == "comparison" else None),
            **kwargs,
        )
        session.add(status)
    return status


def _status(db, session_id="s1") -> OperationStatus:
    with db.get_session() as session:
        return session.query(OperationStatus).filter(OperationStatus.session_id == session_id).one()


def _drain(subscription):
    events = []
    while True:
        event = subscription.get(timeout=0)
        if event is None:
            return events
        events.append(event)


@pytest.fixture
def hub():
    return ProgressHub()


@pytest.fixture
def pipeline(db):
    """Comparison pipeline mock that persists a fresh comparison."""
    mock = MagicMock()

    def run(query, **kwargs):
        with db.get_session() as session:
            record = make_comparison(session, query)
        return PipelineResult(record=record, newly_created=True, similarity=1.0)

    mock.run.side_effect = run
    return mock


@pytest.fixture
def worker(db, hub, pipeline):
    return ComparisonWorker(db, hub, pipeline, deep_pipeline=MagicMock(), base_backoff_seconds=5.0)


# ── Tests: Lifecycle ─────────────────────────────────────────────────────


class TestWorkerLifecycle:
    """Tests for start/stop."""

    def test_start_sets_running(self, worker):
        with patch.object(worker, "_run_loop"):
            worker.start()
            assert worker.running
            worker.stop()
            assert not worker.running

    def test_double_start_is_noop(self, worker):
        with patch.object(worker, "_run_loop"):
            worker.start()
            first_thread = worker._thread
            worker.start()
            assert worker._thread is first_thread
            worker.stop()


# ── Tests: Job processing ────────────────────────────────────────────────


class TestProcessComparison:
    """Tests for comparison jobs run through process_pending."""

    def test_success_completes_and_releases_reservation(self, db, hub, worker, pipeline):
        _enqueue(db)
        subscription = hub.subscribe("comparison", "s1")

        assert worker.process_pending() == 1

        status = _status(db)
        assert status.status == "completed"
        assert status.pending_cost_usd == 0.0
        assert status.result_id is not None
        assert pipeline.run.call_args.kwargs["session_id"] == "s1"

        events = _drain(subscription)
        assert events[-1].type == "complete"
        assert events[-1].redirect_target == f"/comparisons/{status.result_id}?newly_created=true"
        assert status.redirect_target == events[-1].redirect_target

    def test_cached_result_redirect_carries_similarity(self, db, hub, pipeline):
        with db.get_session() as session:
            cached = make_comparison(session)
        pipeline.run.side_effect = None
        pipeline.run.return_value = PipelineResult(record=cached, newly_created=False, similarity=0.93)
        worker = ComparisonWorker(db, hub, pipeline)
        _enqueue(db)
        subscription = hub.subscribe("comparison", "s1")

        worker.process_pending()

        events = _drain(subscription)
        assert events[-1].redirect_target == f"/comparisons/{cached.comparison_id}?similarity=0.93"

    def test_nothing_to_claim(self, worker):
        assert worker.process_pending() == 0

    def test_domain_error_fails_immediately(self, db, hub, worker, pipeline):
        pipeline.run.side_effect = NoRepositoriesFoundError("No repositories found for query: zzz")
        _enqueue(db)
        subscription = hub.subscribe("comparison", "s1")

        worker.process_pending()

        status = _status(db)
        assert status.status == "failed"
        assert status.error_message == NoRepositoriesFoundError.default_user_message
        assert status.pending_cost_usd == 0.0
        events = _drain(subscription)
        assert [e.type for e in events] == ["error"]

    def test_unexpected_error_uses_generic_message(self, db, worker, pipeline):
        pipeline.run.side_effect = KeyError("boom")
        _enqueue(db)

        worker.process_pending()

        assert _status(db).error_message == GENERIC_FAILURE_MESSAGE

    def test_transient_error_backs_off(self, db, hub, worker, pipeline):
        pipeline.run.side_effect = SourceRateLimitError("GitHub rate limit exceeded (403)")
        _enqueue(db)
        subscription = hub.subscribe("comparison", "s1")
        before = datetime.utcnow()

        worker.process_pending()

        status = _status(db)
        assert status.status == "processing"
        assert status.worker_id is None
        assert status.retry_count == 1
        assert status.error_message == SourceRateLimitError.default_user_message
        # 5s base, doubled for the first attempt
        assert before + timedelta(seconds=9) <= status.next_attempt_at <= datetime.utcnow() + timedelta(seconds=11)
        assert [e.step for e in _drain(subscription)] == ["retrying"]

        # Not claimable until due
        assert worker.process_pending() == 0

    def test_transient_error_exhausts_attempts(self, db, hub, worker, pipeline):
        pipeline.run.side_effect = SourceTimeoutError(
            "GitHub connection failed: HTTPSConnectionPool(host='api.github.com', port=443): Max retries exceeded"
        )
        _enqueue(db)
        subscription = hub.subscribe("comparison", "s1")
        worker.process_pending()

        with db.get_session() as session:
            session.query(OperationStatus).update({"next_attempt_at": datetime.utcnow() - timedelta(seconds=1)})
        worker.process_pending()

        status = _status(db)
        assert status.status == "failed"
        assert status.retry_count == 2
        assert status.error_message == SourceTimeoutError.default_user_message
        assert pipeline.run.call_count == 2
        error = _drain(subscription)[-1]
        assert error.type == "error"
        assert error.message == SourceTimeoutError.default_user_message
        assert "HTTPSConnectionPool" not in error.message

    def test_search_failure_hides_response_body(self, db, hub, worker, pipeline):
        pipeline.run.side_effect = SourceSearchError(
            'GitHub request failed: 422 {"message":"Validation Failed"}'
        )
        _enqueue(db)
        subscription = hub.subscribe("comparison", "s1")

        worker.process_pending()

        assert _status(db).error_message == "GitHub search failed. Please try again."
        assert _drain(subscription)[-1].message == "GitHub search failed. Please try again."


class TestProcessAnalysis:
    """Tests for deep analysis jobs."""

    def test_analysis_job_redirects_to_repository(self, db, hub, worker):
        with db.get_session() as session:
            repo = make_repository(session)
        analysis_id = uuid4()
        worker._deep.run.return_value = MagicMock(analysis_id=analysis_id)
        _enqueue(db, session_id="a1", kind="analysis", repository_id=repo.repository_id)
        subscription = hub.subscribe("analysis", "a1")

        worker.process_pending()

        status = _status(db, "a1")
        assert status.status == "completed"
        assert status.result_id == analysis_id
        event = _drain(subscription)[-1]
        assert event.redirect_target == f"/repositories/{repo.repository_id}"
        assert event.message == "Analysis complete!"

    def test_analysis_without_pipeline_fails(self, db, hub, pipeline):
        worker = ComparisonWorker(db, hub, pipeline, deep_pipeline=None)
        with db.get_session() as session:
            repo = make_repository(session)
        _enqueue(db, session_id="a1", kind="analysis", repository_id=repo.repository_id)

        worker.process_pending()

        assert _status(db, "a1").status == "failed"


# ── Tests: Stale claims ──────────────────────────────────────────────────


class TestStaleClaims:
    """Tests for releasing claims left behind by a dead worker."""

    def test_stale_claim_is_released_and_rerun(self, db, worker, pipeline):
        _enqueue(db, worker_id="dead-worker", retry_count=1,
                 started_at=datetime.utcnow() - timedelta(hours=1))

        assert worker.process_pending() == 1
        assert _status(db).status == "completed"

    def test_stale_claim_past_max_attempts_fails(self, db, worker, pipeline):
        _enqueue(db, worker_id="dead-worker", retry_count=2,
                 started_at=datetime.utcnow() - timedelta(hours=1))

        assert worker.process_pending() == 0
        status = _status(db)
        assert status.status == "failed"
        assert status.pending_cost_usd == 0.0
        pipeline.run.assert_not_called()

    def test_fresh_claim_is_left_alone(self, db, worker):
        _enqueue(db, worker_id="live-worker", retry_count=1, started_at=datetime.utcnow())

        assert worker.process_pending() == 0
        assert _status(db).worker_id == "live-worker"

"""Unit tests for QueuedAnalysisProcessor."""

from datetime import datetime, timedelta
from unittest.mock import MagicMock

from repocompare.core.db.models import QueuedAnalysis
from repocompare.core.pipeline import BatchResult, QueuedAnalysisProcessor
from repocompare.tests.conftest import make_repository

NOW = datetime(2026, 3, 1, 12, 0, 0)


# ── Fixtures ──────────────────────────────────────────────────────────────


def _queue(db, count=1, priority=0, **repo_kwargs):
    names = []
    with db.get_session() as session:
        for i in range(count):
            repo = make_repository(session, full_name=f"org{priority}/repo{i}", **repo_kwargs)
            session.add(QueuedAnalysis(
                repository_id=repo.repository_id,
                priority=priority,
                scheduled_for=NOW - timedelta(minutes=1),
                created_at=NOW - timedelta(minutes=count - i),
            ))
            names.append(repo.full_name)
    return names


def _analyzer(cost=0.01, fail_on=()):
    analyzer = MagicMock()
    seen = []

    def analyze(session, repo):
        seen.append(repo.full_name)
        if repo.full_name in fail_on:
            raise RuntimeError("model unavailable")
        return MagicMock(cost_usd=cost)

    analyzer.analyze.side_effect = analyze
    analyzer.seen = seen
    return analyzer


def _processor(db, analyzer, **kwargs):
    return QueuedAnalysisProcessor(db, analyzer, clock=lambda: NOW, **kwargs)


def _rows(db):
    with db.get_session() as session:
        return session.query(QueuedAnalysis).all()


# ── Tests ────────────────────────────────────────────────────────────────


class TestQueuedAnalysisProcessor:
    """Tests for batch size, cost ceiling, and retry scheduling."""

    def test_processes_at_most_batch_size(self, db):
        _queue(db, count=25)
        analyzer = _analyzer(cost=0.001)

        result = _processor(db, analyzer).process_batch()

        assert result.processed == 20
        statuses = [row.status for row in _rows(db)]
        assert statuses.count("completed") == 20
        assert statuses.count("pending") == 5

    def test_stops_at_cost_ceiling(self, db):
        _queue(db, count=5)

        result = _processor(db, _analyzer(cost=0.04)).process_batch()

        # Checked before each item: 0.00, 0.04, 0.08 pass; 0.12 stops
        assert result.processed == 3
        assert round(result.cost, 2) == 0.12

    def test_highest_priority_first(self, db):
        low = _queue(db, count=1, priority=0)
        high = _queue(db, count=1, priority=10)
        analyzer = _analyzer()

        _processor(db, analyzer).process_batch()

        assert analyzer.seen == high + low

    def test_not_yet_scheduled_is_ignored(self, db):
        _queue(db)
        with db.get_session() as session:
            session.query(QueuedAnalysis).update({"scheduled_for": NOW + timedelta(hours=1)})

        result = _processor(db, _analyzer()).process_batch()

        assert result.to_dict() == BatchResult().to_dict()

    def test_failure_is_rescheduled(self, db):
        names = _queue(db)

        result = _processor(db, _analyzer(fail_on=names)).process_batch()

        assert result.failed == 1
        row = _rows(db)[0]
        assert row.status == "pending"
        assert row.retry_count == 1
        assert row.scheduled_for == NOW + timedelta(seconds=300)
        assert "model unavailable" in row.error_message

    def test_failed_after_three_retries(self, db):
        names = _queue(db)
        with db.get_session() as session:
            session.query(QueuedAnalysis).update({"retry_count": 3})

        _processor(db, _analyzer(fail_on=names)).process_batch()

        row = _rows(db)[0]
        assert row.status == "failed"
        assert row.retry_count == 4

    def test_fresh_repository_is_skipped(self, db):
        _queue(db, last_analyzed_at=NOW - timedelta(days=1))
        analyzer = _analyzer()

        result = _processor(db, analyzer).process_batch()

        assert result.skipped == 1
        assert analyzer.seen == []
        assert _rows(db)[0].status == "completed"

    def test_from_settings(self, db, settings):
        processor = QueuedAnalysisProcessor.from_settings(db, MagicMock(), settings)
        assert processor.batch_size == 20
        assert processor.cost_limit == 0.10
        assert processor.retry_delays == (300, 1800, 7200)

    def test_result_to_dict(self):
        result = BatchResult(processed=2, failed=1, skipped=0, cost=0.0123456789)
        assert result.to_dict() == {"processed": 2, "failed": 1, "skipped": 0, "cost": 0.012346}

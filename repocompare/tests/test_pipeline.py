"""Unit tests for ComparisonPipeline, StatusStore and DeepAnalysisPipeline.

Tests cover:
- Cache hit short-circuits interpretation
- force_refresh bypasses the cache
- Validation and empty-result failures
- Step broadcast order for a fresh comparison
- Guarded terminal transitions
"""

from unittest.mock import MagicMock, call
from uuid import uuid4

import pytest

from repocompare.core.db.models import Analysis, OperationStatus
from repocompare.core.errors import InvalidQueryError, NoRepositoriesFoundError, SourceNotFoundError
from repocompare.core.interpreter import ParsedQuery
from repocompare.core.pipeline import ComparisonPipeline, DeepAnalysisPipeline, StatusStore
from repocompare.core.sources import AggregationResult
from repocompare.tests.conftest import make_comparison, make_repository


# ── Fixtures ──────────────────────────────────────────────────────────────


VALID = ParsedQuery(
    tech_stack="Ruby",
    problem_domain="Background Jobs",
    search_queries=["rails jobs", "sidekiq"],
    valid=True,
)


def _pipeline(db, parsed=VALID, top=None):
    interpreter = MagicMock()
    interpreter.parse.return_value = parsed

    aggregator = MagicMock()
    prepared = top if top is not None else [{"repository": MagicMock(), "analysis": None, "quality_signals": {}}]
    aggregator.fetch_and_prepare.return_value = AggregationResult(top=prepared, total_found=len(prepared))

    ranker = MagicMock()
    ranker.compare.side_effect = lambda session, query, parsed, prepared, user_id=None: make_comparison(
        session, query, user_id=user_id,
    )

    sleep = MagicMock()
    pipeline = ComparisonPipeline(db, interpreter, aggregator, ranker, sleep=sleep)
    return pipeline, interpreter, aggregator, ranker, sleep


# ── Tests: Comparison Pipeline ───────────────────────────────────────────


class TestComparisonPipeline:
    """Tests for ComparisonPipeline.run."""

    def test_cache_hit_skips_interpretation(self, db):
        pipeline, interpreter, _, ranker, _ = _pipeline(db)
        with db.get_session() as session:
            stored = make_comparison(session, "rails background jobs")

        result = pipeline.run("Rails Background Jobs")

        assert not result.newly_created
        assert result.comparison_id == stored.comparison_id
        assert result.similarity >= 0.99
        interpreter.parse.assert_not_called()
        ranker.compare.assert_not_called()

    def test_force_refresh_bypasses_cache(self, db):
        pipeline, interpreter, _, _, _ = _pipeline(db)
        with db.get_session() as session:
            stored = make_comparison(session, "rails background jobs")

        result = pipeline.run("rails background jobs", force_refresh=True)

        assert result.newly_created
        assert result.comparison_id != stored.comparison_id
        interpreter.parse.assert_called_once()

    def test_fresh_comparison_broadcasts_steps_in_order(self, db):
        pipeline, _, aggregator, _, sleep = _pipeline(db)
        broadcaster = MagicMock()

        result = pipeline.run("rails jobs", session_id="s1", broadcaster=broadcaster)

        assert result.newly_created
        assert result.similarity == 1.0
        sleep.assert_called_once_with(0.5)
        steps = [c.args[0] for c in broadcaster.broadcast_step.call_args_list]
        assert steps == [
            "parsing_query",
            "parsing_query",
            "searching_github",
            "comparing_repositories",
            "saving_comparison",
        ]
        assert broadcaster.broadcast_step.call_args_list[2] == call(
            "searching_github", "Searching GitHub with 2 queries...",
        )
        assert aggregator.fetch_and_prepare.call_args.kwargs["limit"] == 15

    def test_no_grace_delay_without_session(self, db):
        pipeline, _, _, _, sleep = _pipeline(db)
        pipeline.run("rails jobs")
        sleep.assert_not_called()

    def test_invalid_query_raises(self, db):
        parsed = ParsedQuery(valid=False, validation_message="Not a software request")
        pipeline, _, aggregator, _, _ = _pipeline(db, parsed=parsed)

        with pytest.raises(InvalidQueryError) as exc_info:
            pipeline.run("what's for lunch")

        assert "Not a software request" in exc_info.value.user_message
        aggregator.fetch_and_prepare.assert_not_called()

    def test_no_repositories_raises(self, db):
        pipeline, _, _, ranker, _ = _pipeline(db, top=[])

        with pytest.raises(NoRepositoriesFoundError):
            pipeline.run("obscure thing")
        ranker.compare.assert_not_called()

    def test_failed_run_persists_nothing(self, db):
        pipeline, _, _, ranker, _ = _pipeline(db)
        ranker.compare.side_effect = RuntimeError("ranker down")

        with pytest.raises(RuntimeError):
            pipeline.run("rails jobs")

        assert pipeline.find_similar_cached("rails jobs") == (None, 0.0)


# ── Tests: Status Store ──────────────────────────────────────────────────


class TestStatusStore:
    """Tests for guarded terminal transitions."""

    def _reserve(self, db, session_id="s1"):
        with db.get_session() as session:
            session.add(OperationStatus(
                session_id=session_id, kind="comparison", status="processing",
                pending_cost_usd=0.05, worker_id="w1",
            ))

    def test_complete_releases_reservation(self, db):
        self._reserve(db)
        result_id = uuid4()
        store = StatusStore()

        with db.get_session() as session:
            redirect = f"/comparisons/{result_id}?newly_created=true"
            assert store.complete(session, "s1", result_id, redirect_target=redirect)

        with db.get_session() as session:
            status = store.get(session, "s1")
            assert status.status == "completed"
            assert status.pending_cost_usd == 0.0
            assert status.worker_id is None
            assert status.result_id == result_id
            assert status.completed_at is not None
            assert status.redirect_target == redirect

    def test_terminal_state_is_final(self, db):
        self._reserve(db)
        store = StatusStore()

        with db.get_session() as session:
            assert store.fail(session, "s1", "boom")
        with db.get_session() as session:
            assert not store.complete(session, "s1", uuid4())
            assert not store.fail(session, "s1", "again")

        with db.get_session() as session:
            status = store.get(session, "s1")
            assert status.status == "failed"
            assert status.error_message == "boom"

    def test_to_dict(self, db):
        self._reserve(db)
        with db.get_session() as session:
            data = StatusStore.to_dict(StatusStore().get(session, "s1"))

        assert data["status"] == "processing"
        assert data["result_id"] is None
        assert data["kind"] == "comparison"


# ── Tests: Deep Analysis Pipeline ────────────────────────────────────────


class TestDeepAnalysisPipeline:
    """Tests for DeepAnalysisPipeline.run."""

    def test_runs_analyzer_for_repository(self, db):
        with db.get_session() as session:
            repo = make_repository(session)
        analyzer = MagicMock()
        analyzer.analyze.return_value = Analysis(analysis_id=uuid4(), analysis_type="deep")
        broadcaster = MagicMock()

        analysis = DeepAnalysisPipeline(db, analyzer).run(str(repo.repository_id), broadcaster=broadcaster)

        assert analysis.analysis_type == "deep"
        loaded = analyzer.analyze.call_args.args[1]
        assert loaded.repository_id == repo.repository_id
        assert analyzer.analyze.call_args.kwargs["broadcaster"] is broadcaster

    def test_missing_repository(self, db):
        with pytest.raises(SourceNotFoundError):
            DeepAnalysisPipeline(db, MagicMock()).run(uuid4())

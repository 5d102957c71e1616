"""Unit tests for BudgetGate reservations and the CostLedger.

Tests cover:
- remaining = budget - actual - pending, never negative
- can_create_today false once actual + pending reaches the budget
- Reservation insert, and its release on terminal transitions
- Per-user daily caps and admin exemption
- Ledger accumulation and daily rollup
"""

import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import date, datetime, timedelta

import pytest

from repocompare.core.budget import ANALYSIS, COMPARISON, BudgetGate, CostLedger
from repocompare.core.db import DatabaseManager
from repocompare.core.db.models import Analysis, OperationStatus
from repocompare.core.errors import BudgetExceededError, UserLimitReachedError
from repocompare.core.pipeline import StatusStore
from repocompare.setting import Settings
from repocompare.tests.conftest import make_comparison, make_repository, make_user


# ── Fixtures ──────────────────────────────────────────────────────────────


def _gate(db, **overrides):
    values = {
        "daily_comparison_budget_usd": 0.10,
        "daily_deep_analysis_budget_usd": 0.10,
        "estimated_comparison_cost_usd": 0.05,
        "estimated_deep_analysis_cost_usd": 0.05,
        "daily_comparison_limit": 2,
        "deep_analysis_per_user": 1,
    }
    values.update(overrides)
    return BudgetGate(db, Settings(**values))


# ── Tests: Budget Snapshot ───────────────────────────────────────────────


class TestBudgetSnapshot:
    """Tests for remaining/can_create calculations."""

    def test_fresh_day_has_full_budget(self, db):
        gate = _gate(db)
        with db.get_session() as session:
            assert gate.remaining_budget_today(session, COMPARISON) == pytest.approx(0.10)
            assert gate.can_create_today(session, COMPARISON)

    def test_actual_plus_pending_exhausts_budget(self, db):
        gate = _gate(db)
        with db.get_session() as session:
            make_comparison(session, "rails jobs", cost_usd=0.06)
        gate.reserve(COMPARISON, "s-1")

        with db.get_session() as session:
            assert gate.actual_cost_today(session, COMPARISON) == pytest.approx(0.06)
            assert gate.pending_cost_today(session, COMPARISON) == pytest.approx(0.05)
            assert not gate.can_create_today(session, COMPARISON)
            assert gate.remaining_budget_today(session, COMPARISON) == 0.0

    def test_yesterday_spend_is_ignored(self, db):
        gate = _gate(db)
        with db.get_session() as session:
            make_comparison(
                session, "rails jobs", cost_usd=1.00,
                created_at=datetime.utcnow() - timedelta(days=1, hours=1),
            )
            assert gate.can_create_today(session, COMPARISON)

    def test_only_deep_analyses_count_for_analysis_budget(self, db):
        gate = _gate(db)
        with db.get_session() as session:
            repo = make_repository(session)
            session.add(Analysis(repository=repo, analysis_type="basic", model_used="gpt-4o-mini", cost_usd=0.5))
            session.add(Analysis(repository=repo, analysis_type="deep", model_used="gpt-4o", cost_usd=0.04))
            session.flush()
            assert gate.actual_cost_today(session, ANALYSIS) == pytest.approx(0.04)


# ── Tests: Reservation ───────────────────────────────────────────────────


class TestReservation:
    """Tests for reserve() and reservation release."""

    def test_reserve_inserts_processing_status(self, db):
        gate = _gate(db)
        status = gate.reserve(COMPARISON, "s-1", query="rails jobs")

        assert status.status == "processing"
        assert status.pending_cost_usd == pytest.approx(0.05)
        with db.get_session() as session:
            assert session.query(OperationStatus).count() == 1

    def test_reserve_rejects_when_budget_exhausted(self, db):
        gate = _gate(db)
        gate.reserve(COMPARISON, "s-1")
        gate.reserve(COMPARISON, "s-2")

        with pytest.raises(BudgetExceededError) as exc_info:
            gate.reserve(COMPARISON, "s-3")

        assert "budget" in exc_info.value.user_message.lower()
        with db.get_session() as session:
            assert session.query(OperationStatus).count() == 2

    def test_terminal_transition_releases_reservation(self, db):
        gate = _gate(db)
        gate.reserve(COMPARISON, "s-1")
        gate.reserve(COMPARISON, "s-2")

        with db.get_session() as session:
            assert StatusStore().fail(session, "s-1", "boom")

        with db.get_session() as session:
            assert gate.pending_cost_today(session, COMPARISON) == pytest.approx(0.05)
            assert gate.can_create_today(session, COMPARISON)

    def test_kinds_have_separate_budgets(self, db):
        gate = _gate(db)
        gate.reserve(COMPARISON, "s-1")
        gate.reserve(COMPARISON, "s-2")

        status = gate.reserve(ANALYSIS, "a-1")
        assert status.kind == ANALYSIS

    def test_concurrent_reservations_do_not_overspend(self, tmp_path):
        file_db = DatabaseManager(f"sqlite:///{tmp_path / 'budget.db'}")
        file_db.create_tables()
        gate = _gate(file_db, daily_comparison_budget_usd=0.05)
        callers = 8
        barrier = threading.Barrier(callers)

        def attempt(i):
            barrier.wait()
            try:
                gate.reserve(COMPARISON, f"race-{i}")
                return True
            except BudgetExceededError:
                return False

        try:
            with ThreadPoolExecutor(max_workers=callers) as pool:
                outcomes = list(pool.map(attempt, range(callers)))

            assert outcomes.count(True) == 1
            with file_db.get_session() as session:
                assert gate.pending_cost_today(session, COMPARISON) == pytest.approx(0.05)
                assert session.query(OperationStatus).count() == 1
        finally:
            file_db.dispose()


# ── Tests: Per-User Caps ─────────────────────────────────────────────────


class TestUserCaps:
    """Tests for per-user daily limits and admin exemption."""

    def test_user_limit_reached(self, db):
        gate = _gate(db, daily_comparison_budget_usd=10.0)
        with db.get_session() as session:
            user = make_user(session)

        gate.reserve(COMPARISON, "s-1", user_id=user.user_id)
        gate.reserve(COMPARISON, "s-2", user_id=user.user_id)
        with pytest.raises(UserLimitReachedError) as exc_info:
            gate.reserve(COMPARISON, "s-3", user_id=user.user_id)

        assert "daily limit of 2" in exc_info.value.user_message

    def test_comparisons_use_rolling_window(self, db):
        gate = _gate(db)
        with db.get_session() as session:
            user = make_user(session)
            make_comparison(session, "old", user_id=user.user_id,
                            created_at=datetime.utcnow() - timedelta(hours=25))
            make_comparison(session, "recent", user_id=user.user_id)

        with db.get_session() as session:
            assert gate.user_can_create_today(session, user.user_id, COMPARISON)
            make_comparison(session, "another", user_id=user.user_id)
            assert not gate.user_can_create_today(session, user.user_id, COMPARISON)
            assert gate.remaining_for_user(session, user.user_id, COMPARISON) == 0

    def test_admin_is_exempt(self, db):
        gate = _gate(db, daily_comparison_budget_usd=10.0)
        with db.get_session() as session:
            admin = make_user(session, username="admin", is_admin=True)

        for i in range(4):
            gate.reserve(COMPARISON, f"s-{i}", user_id=admin.user_id)

        with db.get_session() as session:
            assert gate.remaining_for_user(session, admin.user_id, COMPARISON) is None

    def test_admin_by_github_id(self, db):
        gate = _gate(db, admin_github_ids=[42])
        with db.get_session() as session:
            user = make_user(session, github_id=42)
            assert gate.is_admin(user)
            assert not gate.is_admin(None)

    def test_failed_deep_analyses_do_not_count(self, db):
        gate = _gate(db, daily_deep_analysis_budget_usd=10.0)
        with db.get_session() as session:
            user = make_user(session)

        gate.reserve(ANALYSIS, "a-1", user_id=user.user_id)
        with db.get_session() as session:
            StatusStore().fail(session, "a-1", "boom")

        gate.reserve(ANALYSIS, "a-2", user_id=user.user_id)
        with pytest.raises(UserLimitReachedError):
            gate.reserve(ANALYSIS, "a-3", user_id=user.user_id)

    def test_anonymous_has_no_cap(self, db):
        gate = _gate(db, daily_comparison_budget_usd=10.0)
        for i in range(5):
            gate.reserve(COMPARISON, f"s-{i}")


# ── Tests: Cost Ledger ───────────────────────────────────────────────────


class TestCostLedger:
    """Tests for per-(date, model) accumulation."""

    def test_three_calls_one_row(self, db):
        ledger = CostLedger()
        with db.get_session() as session:
            for _ in range(3):
                ledger.record_usage(session, "gpt-4o", 1000, 200)

        with db.get_session() as session:
            entry = ledger.entry_for(session, datetime.utcnow().date(), "gpt-4o")
            assert entry.total_requests == 3
            assert entry.total_input_tokens == 3000
            assert entry.average_tokens_per_request == pytest.approx(1200)

    def test_rollup_spans_models(self, db):
        ledger = CostLedger()
        day = date(2024, 5, 1)
        with db.get_session() as session:
            ledger.record_usage(session, "gpt-4o", 1000, 0, day=day)
            ledger.record_usage(session, "gpt-4o-mini", 1000, 0, day=day)

        with db.get_session() as session:
            rollup = ledger.rollup_for_date(session, day)
            assert rollup["total_requests"] == 2
            assert [m["model"] for m in rollup["models"]] == ["gpt-4o", "gpt-4o-mini"]
            assert ledger.total_cost_for(session, day) == pytest.approx(0.0025 + 0.00015)

"""Comparison Engine: public API consumed by the HTTP routes.

Request-side work only: validation, budget reservation, and reads.
Paid work happens in the background ComparisonWorker.
"""

import logging
from datetime import datetime, timedelta
from math import ceil
from typing import Any, Dict, Optional
from uuid import UUID, uuid4

from sqlalchemy.orm import selectinload

from ..budget import ANALYSIS, COMPARISON, BudgetGate
from ..db import DatabaseManager
from ..db.models import Analysis, Comparison, ComparisonCategory, Repository, User
from ..errors import InvalidQueryError, QueryTooLongError, RecordNotFoundError
from ..presenters import ComparisonView, analysis_to_dict, comparison_summary, repository_summary
from ..search import FUZZY, RelevanceScorer
from .status import StatusStore

logger = logging.getLogger(__name__)

MAX_QUERY_LENGTH = 500
DEFAULT_PER_PAGE = 20
MAX_PER_PAGE = 100
DATE_FILTERS = {"week": 7, "month": 30}


def _parse_uuid(value, what: str) -> UUID:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except (TypeError, ValueError):
        raise RecordNotFoundError(f"{what} {value} not found", user_message=f"{what} not found")


class ComparisonEngine:
    """Orchestrate comparison and deep-analysis requests.

    Public API:
        start_comparison(query, user_id, force_refresh) -> {session_id, status}
        start_deep_analysis(repository_id, user_id) -> {session_id, status}
        get_status(session_id) -> status dict
        list_comparisons(search, date, sort, page, per_page) -> page dict
        show_comparison(comparison_id, ...) -> view dict (increments view_count)
        get_repository(repository_id, user_id) -> repository dict
        budget_summary(user_id) -> budget dict
    """

    def __init__(
        self,
        db_manager: DatabaseManager,
        budget_gate: BudgetGate,
        worker=None,
        scorer: Optional[RelevanceScorer] = None,
        ledger=None,
        status_store: Optional[StatusStore] = None,
    ):
        self._db = db_manager
        self._gate = budget_gate
        self._worker = worker
        self._scorer = scorer or RelevanceScorer()
        self._ledger = ledger
        self._statuses = status_store or StatusStore()

    def _ensure_worker(self):
        """Start the background worker on first use."""
        if self._worker is None:
            logger.warning("No worker configured; jobs will wait for an external worker")
            return
        if not self._worker.running:
            self._worker.start()

    def _resolve_user(self, session, user_id) -> Optional[User]:
        if user_id is None:
            return None
        user = session.get(User, _parse_uuid(user_id, "User"))
        if user is None:
            raise RecordNotFoundError(f"User {user_id} not found", user_message="User not found")
        return user

    # ── Requests ────────────────────────────────────────────────────────

    def start_comparison(
        self,
        query: str,
        user_id=None,
        force_refresh: bool = False,
    ) -> Dict[str, Any]:
        """Validate, reserve budget, and enqueue a comparison.

        Raises:
            InvalidQueryError: blank query
            QueryTooLongError: more than 500 characters
            UserLimitReachedError / BudgetExceededError: rejected before enqueue
        """
        query = (query or "").strip()
        if not query:
            raise InvalidQueryError("Please enter a search query")
        if len(query) > MAX_QUERY_LENGTH:
            raise QueryTooLongError(f"Query is {len(query)} characters")

        with self._db.get_session() as session:
            user = self._resolve_user(session, user_id)
            # Only admins may bypass the cache
            force_refresh = bool(force_refresh) and self._gate.is_admin(user)

        session_id = str(uuid4())
        self._gate.reserve(
            COMPARISON,
            session_id,
            user_id=user.user_id if user else None,
            query=query,
            force_refresh=force_refresh,
        )
        self._ensure_worker()

        logger.info(f"Comparison {session_id} queued (force_refresh={force_refresh})")
        return {"session_id": session_id, "status": "processing"}

    def start_deep_analysis(self, repository_id, user_id=None) -> Dict[str, Any]:
        rid = _parse_uuid(repository_id, "Repository")
        with self._db.get_session() as session:
            user = self._resolve_user(session, user_id)
            if session.get(Repository, rid) is None:
                raise RecordNotFoundError(
                    f"Repository {repository_id} not found", user_message="Repository not found",
                )

        session_id = str(uuid4())
        self._gate.reserve(
            ANALYSIS,
            session_id,
            user_id=user.user_id if user else None,
            repository_id=rid,
        )
        self._ensure_worker()

        logger.info(f"Deep analysis {session_id} queued for repository {rid}")
        return {"session_id": session_id, "status": "processing", "repository_id": str(rid)}

    def get_status(self, session_id: str) -> Dict[str, Any]:
        with self._db.get_session() as session:
            status = self._statuses.get(session, session_id)
            if status is None:
                raise RecordNotFoundError(
                    f"Session {session_id} not found", user_message="Session not found",
                )
            return StatusStore.to_dict(status)

    # ── Reads ───────────────────────────────────────────────────────────

    def list_comparisons(
        self,
        search: Optional[str] = None,
        date: Optional[str] = None,
        sort: str = "recent",
        page: int = 1,
        per_page: int = DEFAULT_PER_PAGE,
        mode: str = FUZZY,
    ) -> Dict[str, Any]:
        """Filter by date window, search by relevance, then paginate.

        A search orders by relevance; otherwise ``sort`` picks recent or popular.
        """
        page = max(1, int(page or 1))
        per_page = max(1, min(int(per_page or DEFAULT_PER_PAGE), MAX_PER_PAGE))

        with self._db.get_session() as session:
            q = session.query(Comparison)
            if date in DATE_FILTERS:
                q = q.filter(Comparison.created_at >= datetime.utcnow() - timedelta(days=DATE_FILTERS[date]))

            if search and search.strip():
                scored = self._scorer.search(session, search, mode=mode, query=q)
                total = len(scored)
                window = scored[(page - 1) * per_page: page * per_page]
                items = []
                for comparison, score in window:
                    item = comparison_summary(comparison)
                    item["relevance_score"] = round(score, 3)
                    items.append(item)
            else:
                if sort == "popular":
                    q = q.order_by(Comparison.view_count.desc(), Comparison.created_at.desc())
                else:
                    q = q.order_by(Comparison.created_at.desc())
                total = q.count()
                rows = (
                    q.options(selectinload(Comparison.category_links).selectinload(ComparisonCategory.category))
                    .offset((page - 1) * per_page)
                    .limit(per_page)
                    .all()
                )
                items = [comparison_summary(c) for c in rows]

        total_pages = ceil(total / per_page) if total else 0
        return {
            "data": items,
            "meta": {
                "pagination": {
                    "page": page,
                    "per_page": per_page,
                    "total_pages": total_pages,
                    "total_count": total,
                    "next_page": page + 1 if page < total_pages else None,
                    "prev_page": page - 1 if page > 1 else None,
                }
            },
        }

    def show_comparison(
        self,
        comparison_id,
        user_id=None,
        newly_created: bool = False,
        similarity: Optional[float] = None,
    ) -> Dict[str, Any]:
        """Return the comparison view and count the view."""
        cid = _parse_uuid(comparison_id, "Comparison")
        with self._db.get_session() as session:
            updated = (
                session.query(Comparison)
                .filter(Comparison.comparison_id == cid)
                .update({Comparison.view_count: Comparison.view_count + 1}, synchronize_session=False)
            )
            if not updated:
                raise RecordNotFoundError(
                    f"Comparison {comparison_id} not found", user_message="Comparison not found",
                )
            comparison = session.get(Comparison, cid)
            session.refresh(comparison)
            user = self._resolve_user(session, user_id) if user_id else None
            view = ComparisonView(
                comparison=comparison,
                is_admin=self._gate.is_admin(user),
                newly_created=newly_created,
                similarity=similarity,
            )
            return view.to_dict()

    def get_repository(self, repository_id, user_id=None) -> Dict[str, Any]:
        rid = _parse_uuid(repository_id, "Repository")
        with self._db.get_session() as session:
            repo = session.get(Repository, rid)
            if repo is None:
                raise RecordNotFoundError(
                    f"Repository {repository_id} not found", user_message="Repository not found",
                )
            analyses = (
                session.query(Analysis)
                .filter(Analysis.repository_id == rid)
                .order_by(Analysis.created_at.desc())
                .all()
            )
            user = self._resolve_user(session, user_id)
            can_create = self._gate.can_create_today(session, ANALYSIS)
            if user is not None:
                can_create = can_create and self._gate.user_can_create_today(session, user.user_id, ANALYSIS)
            data = repository_summary(repo)
            data.update({
                "topics": repo.topics or [],
                "categories": [
                    {
                        "name": link.category.name,
                        "category_type": link.category.category_type,
                        "confidence": link.confidence_score,
                        "assigned_by": link.assigned_by,
                    }
                    for link in repo.category_links
                    if link.category is not None
                ],
                "analyses": [analysis_to_dict(a) for a in analyses],
                "can_create_analysis": can_create,
                "remaining_budget_usd": round(self._gate.remaining_budget_today(session, ANALYSIS), 4),
            })
            return data

    def budget_summary(self, user_id=None) -> Dict[str, Any]:
        with self._db.get_session() as session:
            user = self._resolve_user(session, user_id)
            kinds = {}
            for kind in (COMPARISON, ANALYSIS):
                actual = self._gate.actual_cost_today(session, kind)
                pending = self._gate.pending_cost_today(session, kind)
                entry = {
                    "daily_budget_usd": self._gate.daily_budget(kind),
                    "spent_today_usd": round(actual, 6),
                    "pending_usd": round(pending, 6),
                    "remaining_usd": round(self._gate.remaining_budget_today(session, kind), 6),
                    "can_create": self._gate.can_create_today(session, kind),
                }
                if user is not None:
                    entry["user_remaining"] = self._gate.remaining_for_user(session, user.user_id, kind)
                kinds[kind] = entry

            summary = {"kinds": kinds}
            if self._ledger is not None:
                summary["ledger_today"] = self._ledger.rollup_for_date(session)
            return summary

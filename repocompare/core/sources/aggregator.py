"""Multi-query repository aggregation.

Runs every search query, deduplicates hits by stable GitHub id, ranks by
popularity, upserts each repository, and enriches the top slice with a
basic analysis. Enrichment is sequential and per-item failures are
logged and skipped.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy.orm import Session

from ..db.models import Repository
from ..errors import SourceSearchError, TransientUpstreamError
from .store import RepositoryStore

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 10
MAX_LIMIT = 15


def clamp_limit(limit: Optional[int], max_limit: int = MAX_LIMIT) -> int:
    if limit is None:
        limit = DEFAULT_LIMIT
    return max(1, min(int(limit), max_limit))


def quality_signals(repo: Repository, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Popularity and freshness signals used for ranking and prompting."""
    now = now or datetime.utcnow()
    created = repo.github_created_at or repo.created_at or now
    age_days = max((now.date() - created.date()).days, 1)
    stars = repo.stargazers_count or 0
    return {
        "stars": stars,
        "forks": repo.forks_count or 0,
        "open_issues": repo.open_issues_count or 0,
        "last_updated": repo.github_updated_at,
        "age_days": age_days,
        "stars_per_day": round(stars / age_days, 2),
        "archived": bool(repo.archived),
        "disabled": bool(repo.disabled),
        "language": repo.language,
        "has_analysis": repo.current_analysis("basic") is not None,
    }


@dataclass
class AggregationResult:
    top: List[Dict[str, Any]] = field(default_factory=list)
    other: List[Dict[str, Any]] = field(default_factory=list)
    total_found: int = 0
    queries_executed: int = 0

    @property
    def all_items(self) -> List[Dict[str, Any]]:
        return self.top + self.other


class SourceAggregator:
    """Fetch, deduplicate, persist, and enrich repositories for a query plan."""

    def __init__(
        self,
        search_client,
        analyzer=None,
        repository_store: Optional[RepositoryStore] = None,
        max_limit: int = MAX_LIMIT,
        reanalyze_after_days: int = 7,
    ):
        self._search = search_client
        self._analyzer = analyzer
        self._store = repository_store or RepositoryStore()
        self.max_limit = max_limit
        self.reanalyze_after_days = reanalyze_after_days

    def fetch_and_prepare(
        self,
        session: Session,
        queries: Sequence[str],
        limit: Optional[int] = DEFAULT_LIMIT,
        broadcaster=None,
    ) -> AggregationResult:
        limit = clamp_limit(limit, self.max_limit)
        items, executed = self._collect(queries, limit)

        items.sort(key=lambda item: item.get("stargazers_count") or 0, reverse=True)

        repositories = []
        for item in items:
            try:
                repo, _ = self._store.upsert_from_api(session, item)
            except ValueError as e:
                logger.warning(f"Skipping search item {item.get('full_name')}: {e}")
                continue
            repositories.append(repo)
        session.flush()

        top_repos = repositories[:limit]
        other_repos = repositories[limit:]
        self._enrich(session, top_repos, broadcaster)

        result = AggregationResult(
            top=[self._prepare(repo) for repo in top_repos],
            other=[self._prepare(repo) for repo in other_repos],
            total_found=len(repositories),
            queries_executed=executed,
        )
        logger.info(
            f"Aggregated {result.total_found} repositories from {executed} queries "
            f"(top={len(result.top)}, other={len(result.other)})"
        )
        return result

    # ── Internals ───────────────────────────────────────────────────────

    def _collect(self, queries: Sequence[str], limit: int):
        """Run each query and keep the first occurrence of every github id."""
        seen = set()
        unique: List[Dict[str, Any]] = []
        executed = 0
        for query in queries:
            if not query or not query.strip():
                continue
            try:
                hits = self._search.search(query, per_page=limit)
            except TransientUpstreamError:
                raise
            except SourceSearchError as e:
                logger.error(f"Search query failed '{query}': {e}")
                continue
            executed += 1
            for item in hits:
                key = item.get("id")
                if key is None or key in seen:
                    continue
                seen.add(key)
                unique.append(item)
        return unique, executed

    def _enrich(self, session: Session, repositories: List[Repository], broadcaster=None):
        if self._analyzer is None:
            return
        pending = [r for r in repositories if r.needs_analysis(self.reanalyze_after_days)]
        for i, repo in enumerate(pending, 1):
            if broadcaster is not None:
                broadcaster.broadcast_step(
                    "analyzing_repositories",
                    f"Analyzing {repo.full_name}...",
                    current=i,
                    total=len(pending),
                )
            try:
                with session.begin_nested():
                    self._analyzer.analyze(session, repo)
            except Exception as e:
                logger.error(f"Analysis failed for {repo.full_name}: {e}", exc_info=True)

    def _prepare(self, repo: Repository) -> Dict[str, Any]:
        return {
            "repository": repo,
            "analysis": repo.current_analysis("basic"),
            "quality_signals": quality_signals(repo),
        }

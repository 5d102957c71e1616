"""Scheduled sync of trending repositories into the analysis backlog."""

import logging
from typing import Any, Dict

from ..db import DatabaseManager
from ..db.models import QueuedAnalysis
from .store import RepositoryStore

logger = logging.getLogger(__name__)

# (upper star bound inclusive, priority)
_PRIORITY_BANDS = ((100, 0), (500, 2), (1000, 4), (5000, 6), (10000, 8))


def priority_for_stars(stars: int) -> int:
    """Map star count onto the 0-10 queue priority scale."""
    for upper, priority in _PRIORITY_BANDS:
        if stars <= upper:
            return priority
    return 10


class TrendingSync:
    """Upsert trending repositories and enqueue them for categorization."""

    def __init__(
        self,
        db_manager: DatabaseManager,
        search_client,
        repository_store: RepositoryStore = None,
        days_ago: int = 7,
        min_stars: int = 50,
        per_page: int = 10,
    ):
        self._db = db_manager
        self._search = search_client
        self._store = repository_store or RepositoryStore()
        self.days_ago = days_ago
        self.min_stars = min_stars
        self.per_page = per_page

    @classmethod
    def from_settings(cls, db_manager, search_client, settings) -> "TrendingSync":
        return cls(
            db_manager,
            search_client,
            days_ago=settings.trending_days_ago,
            min_stars=settings.trending_min_stars,
            per_page=settings.trending_per_page,
        )

    def sync(self) -> Dict[str, Any]:
        logger.info("Trending sync starting...")
        items = self._search.search_trending(
            days_ago=self.days_ago, min_stars=self.min_stars, per_page=self.per_page,
        )

        stats = {"synced": 0, "created": 0, "updated": 0, "enqueued": 0, "skipped": 0}
        with self._db.get_session() as session:
            for item in items:
                try:
                    with session.begin_nested():
                        repo, created = self._store.upsert_from_api(session, item)
                except Exception as e:
                    logger.error(f"Error syncing repo {item.get('full_name')}: {e}")
                    continue

                stats["synced"] += 1
                stats["created" if created else "updated"] += 1

                already_queued = (
                    session.query(QueuedAnalysis)
                    .filter(
                        QueuedAnalysis.repository_id == repo.repository_id,
                        QueuedAnalysis.status.in_(("pending", "processing")),
                    )
                    .first()
                )
                if already_queued is not None:
                    stats["skipped"] += 1
                    continue

                session.add(QueuedAnalysis(
                    repository_id=repo.repository_id,
                    analysis_type="basic",
                    priority=priority_for_stars(repo.stargazers_count or 0),
                ))
                stats["enqueued"] += 1

        logger.info(
            f"Synced {stats['synced']} repos ({stats['created']} new, {stats['updated']} updated); "
            f"enqueued {stats['enqueued']} ({stats['skipped']} already queued)"
        )
        return stats

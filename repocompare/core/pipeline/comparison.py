"""ComparisonPipeline: query -> cached or freshly ranked Comparison.

Stages run sequentially within one job:
1. Short grace delay so a progress subscriber can attach
2. Cache check (skipped on force_refresh)
3. Query interpretation
4. Multi-query source aggregation + enrichment
5. Ranking and persistence
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from ..db import DatabaseManager
from ..db.models import Comparison
from ..errors import InvalidQueryError, NoRepositoriesFoundError
from ..progress import NullBroadcaster
from .cache import ComparisonCache

logger = logging.getLogger(__name__)

FETCH_LIMIT = 15


@dataclass
class PipelineResult:
    """Outcome of one pipeline run."""

    record: Comparison
    newly_created: bool
    similarity: float

    @property
    def comparison_id(self):
        return self.record.comparison_id


class ComparisonPipeline:
    """Orchestrates interpreter, aggregator, and ranker for one query.

    Args:
        db_manager: DatabaseManager for the run's session
        interpreter: QueryInterpreter
        aggregator: SourceAggregator
        ranker: ComparisonRanker
        cache: ComparisonCache (defaults: 7 day TTL, 0.8 similarity)
        fetch_limit: Top-N repositories passed to the ranker
        grace_seconds: Delay before the cache check
    """

    def __init__(
        self,
        db_manager: DatabaseManager,
        interpreter,
        aggregator,
        ranker,
        cache: Optional[ComparisonCache] = None,
        fetch_limit: int = FETCH_LIMIT,
        grace_seconds: float = 0.5,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._db = db_manager
        self._interpreter = interpreter
        self._aggregator = aggregator
        self._ranker = ranker
        self._cache = cache or ComparisonCache()
        self.fetch_limit = fetch_limit
        self.grace_seconds = grace_seconds
        self._sleep = sleep

    def run(
        self,
        query: str,
        session_id: Optional[str] = None,
        force_refresh: bool = False,
        user_id=None,
        broadcaster=None,
    ) -> PipelineResult:
        broadcaster = broadcaster or NullBroadcaster()

        if session_id:
            broadcaster.broadcast_step("parsing_query", "Checking for existing results...")
            if self.grace_seconds > 0:
                self._sleep(self.grace_seconds)

        with self._db.get_session() as session:
            if not force_refresh:
                cached, score = self._cache.find_similar_cached(session, query)
                if cached is not None:
                    return PipelineResult(record=cached, newly_created=False, similarity=score)

            broadcaster.broadcast_step("parsing_query", "Parsing your query...")
            parsed = self._interpreter.parse(query)
            if not parsed.valid:
                raise InvalidQueryError(parsed.validation_message or "Invalid query")

            query_count = len(parsed.search_queries) or 1
            noun = "query" if query_count == 1 else "queries"
            broadcaster.broadcast_step(
                "searching_github", f"Searching GitHub with {query_count} {noun}...",
            )
            aggregation = self._aggregator.fetch_and_prepare(
                session, parsed.search_queries, limit=self.fetch_limit, broadcaster=broadcaster,
            )
            if not aggregation.top:
                raise NoRepositoriesFoundError(f"No repositories found for query: {query}")

            broadcaster.broadcast_step(
                "comparing_repositories",
                f"Comparing {len(aggregation.top)} repositories with AI...",
            )
            comparison = self._ranker.compare(
                session, query, parsed, aggregation.top, user_id=user_id,
            )

            broadcaster.broadcast_step("saving_comparison", "Finalizing comparison...")

        logger.info(f"Pipeline created comparison {comparison.comparison_id} for session {session_id}")
        return PipelineResult(record=comparison, newly_created=True, similarity=1.0)

    def find_similar_cached(self, query: str):
        """Standalone cache probe, outside a pipeline run."""
        with self._db.get_session() as session:
            return self._cache.find_similar_cached(session, query)

"""Fuzzy lookup of a recent Comparison for an equivalent query."""

import logging
from datetime import datetime, timedelta
from typing import Optional, Tuple

from sqlalchemy.orm import Session

from ..db.models import Comparison
from ..search.normalizer import normalize
from ..search.trigram import similarity

logger = logging.getLogger(__name__)

DEFAULT_TTL_DAYS = 7
DEFAULT_SIMILARITY_THRESHOLD = 0.8


class ComparisonCache:
    """Trigram match of a normalized query against fresh Comparisons.

    Candidates are narrowed to the TTL window in SQL; scoring is done here.
    """

    def __init__(
        self,
        ttl_days: int = DEFAULT_TTL_DAYS,
        similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
    ):
        self.ttl_days = ttl_days
        self.similarity_threshold = similarity_threshold

    @classmethod
    def from_settings(cls, settings) -> "ComparisonCache":
        return cls(
            ttl_days=settings.cache_ttl_days,
            similarity_threshold=settings.cache_similarity_threshold,
        )

    def find_similar_cached(
        self,
        session: Session,
        query: str,
        now: Optional[datetime] = None,
    ) -> Tuple[Optional[Comparison], float]:
        """Return (best match, similarity) or (None, 0.0)."""
        normalized = normalize(query)
        if not normalized:
            return None, 0.0

        now = now or datetime.utcnow()
        cutoff = now - timedelta(days=self.ttl_days)
        candidates = (
            session.query(Comparison)
            .filter(Comparison.created_at > cutoff)
            .all()
        )

        best: Optional[Comparison] = None
        best_score = 0.0
        for candidate in candidates:
            score = similarity(normalized, candidate.normalized_query or "")
            if score <= self.similarity_threshold:
                continue
            if (
                best is None
                or score > best_score
                or (score == best_score and candidate.created_at > best.created_at)
            ):
                best, best_score = candidate, score

        if best is None:
            return None, 0.0
        logger.info(f"Cache hit for '{normalized}' -> {best.comparison_id} ({best_score:.2f})")
        return best, best_score

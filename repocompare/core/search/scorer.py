"""Weighted relevance scoring for comparison search.

Each search term is expanded through the synonym table. Every variant is
scored across the comparison's text fields and linked categories, and the
record keeps the best variant's score (max, never sum), so broader synonym
coverage cannot double-count.

Modes:
- fuzzy: field score = weight * word_similarity(term, field)
- exact: field score = weight if term is a case-insensitive substring
"""

import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple

from sqlalchemy.orm import Query, Session, selectinload

from ..db.models import Comparison, ComparisonCategory
from .synonyms import expand
from .trigram import word_similarity

logger = logging.getLogger(__name__)

FUZZY = "fuzzy"
EXACT = "exact"


@dataclass(frozen=True)
class ScoringWeights:
    query: float = 100.0
    technologies: float = 50.0
    problem_domains: float = 30.0
    architecture_patterns: float = 20.0
    categories: float = 10.0

    @classmethod
    def from_settings(cls, settings) -> "ScoringWeights":
        return cls(
            query=settings.weight_query,
            technologies=settings.weight_technologies,
            problem_domains=settings.weight_problem_domains,
            architecture_patterns=settings.weight_architecture_patterns,
            categories=settings.weight_categories,
        )


def _field_text(value) -> str:
    if value is None:
        return ""
    if isinstance(value, (list, tuple)):
        return ", ".join(str(v) for v in value)
    return str(value)


class RelevanceScorer:
    """Score and filter Comparison rows against a search term."""

    def __init__(
        self,
        weights: Optional[ScoringWeights] = None,
        match_threshold: float = 0.45,
        confidence_floor: float = 0.3,
        default_confidence: float = 0.5,
    ):
        self.weights = weights or ScoringWeights()
        self.match_threshold = match_threshold
        self.confidence_floor = confidence_floor
        self.default_confidence = default_confidence

    @classmethod
    def from_settings(cls, settings) -> "RelevanceScorer":
        return cls(
            weights=ScoringWeights.from_settings(settings),
            match_threshold=settings.word_similarity_threshold,
            confidence_floor=settings.category_confidence_floor,
            default_confidence=settings.default_category_confidence,
        )

    # ── Public API ──────────────────────────────────────────────────────

    def search(
        self,
        session: Session,
        term: str,
        mode: str = FUZZY,
        query: Optional[Query] = None,
    ) -> List[Tuple[Comparison, float]]:
        """Return matching comparisons ordered by (score DESC, created_at DESC).

        Args:
            session: Active SQLAlchemy session
            term: Raw search term (expanded through the synonym table)
            mode: "fuzzy" or "exact"
            query: Optional pre-filtered Comparison query (date range, etc.)
        """
        if mode not in (FUZZY, EXACT):
            raise ValueError(f"Unknown search mode: {mode}")

        base = query if query is not None else session.query(Comparison)
        records = base.options(
            selectinload(Comparison.category_links).selectinload(ComparisonCategory.category)
        ).all()

        scored = []
        for record in records:
            result = self.score_record(record, term, mode)
            if result is not None:
                scored.append((record, result))

        scored.sort(key=lambda pair: (pair[1], pair[0].created_at), reverse=True)
        logger.debug(f"Search '{term}' ({mode}): {len(scored)}/{len(records)} matched")
        return scored

    def score_record(self, record: Comparison, term: str, mode: str = FUZZY) -> Optional[float]:
        """Best score across the term's synonyms, or None if nothing matches."""
        best = None
        for variant in expand(term):
            if not variant:
                continue
            matched, score = self._score_variant(record, variant, mode)
            if matched and (best is None or score > best):
                best = score
        return best

    # ── Internals ───────────────────────────────────────────────────────

    def _fields(self, record: Comparison) -> Sequence[Tuple[str, float]]:
        w = self.weights
        return (
            (_field_text(record.user_query), w.query),
            (_field_text(record.technologies), w.technologies),
            (_field_text(record.problem_domains), w.problem_domains),
            (_field_text(record.architecture_patterns), w.architecture_patterns),
        )

    def _category_links(self, record: Comparison) -> Iterable[Tuple[str, float]]:
        for link in record.category_links or []:
            if link.category is None:
                continue
            confidence = link.confidence_score
            if confidence is None:
                confidence = self.default_confidence
            yield link.category.name, confidence

    def _score_variant(self, record: Comparison, variant: str, mode: str) -> Tuple[bool, float]:
        if mode == EXACT:
            return self._exact(record, variant)
        return self._fuzzy(record, variant)

    def _fuzzy(self, record: Comparison, variant: str) -> Tuple[bool, float]:
        matched = False
        score = 0.0
        for text, weight in self._fields(record):
            sim = word_similarity(variant, text)
            score += sim * weight
            if sim > self.match_threshold:
                matched = True

        best_category = 0.0
        for name, confidence in self._category_links(record):
            sim = word_similarity(variant, name)
            if sim <= self.match_threshold:
                continue
            best_category = max(best_category, sim * self.weights.categories * confidence)
            if confidence >= self.confidence_floor:
                matched = True
        return matched, score + best_category

    def _exact(self, record: Comparison, variant: str) -> Tuple[bool, float]:
        needle = variant.lower()
        matched = False
        score = 0.0
        for text, weight in self._fields(record):
            if needle in text.lower():
                score += weight
                matched = True

        best_category = 0.0
        for name, confidence in self._category_links(record):
            if needle not in name.lower():
                continue
            best_category = max(best_category, self.weights.categories * confidence)
            if confidence >= self.confidence_floor:
                matched = True
        return matched, score + best_category

"""Three-layer category resolution: alias -> lexical -> semantic.

Layer 1: static alias tables collapse spelling variants ("ror" -> "Rails")
         and an exact (slug, type) hit returns immediately.
Layer 2: trigram similarity against same-type category names.
Layer 3: embedding cosine similarity against same-type categories that
         have an embedding.
Otherwise a new category is created and embedded. Embedding failures
never block creation; the row simply has no embedding until backfilled.
"""

import logging
from typing import List, Optional, Sequence, Tuple

import numpy as np
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..db.models import CATEGORY_TYPES, Category
from ..errors import CategoryResolutionError
from ..search.trigram import similarity
from .aliases import default_description, normalize_name, slugify, symbol_words

logger = logging.getLogger(__name__)

DEFAULT_TRIGRAM_THRESHOLD = 0.55
DEFAULT_EMBEDDING_THRESHOLD = 0.75


def cosine_similarity(a: Optional[Sequence[float]], b: Optional[Sequence[float]]) -> float:
    """dot(a, b) / (|a| * |b|); 0.0 when either vector is missing or zero."""
    if a is None or b is None:
        return 0.0
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    if va.size == 0 or vb.size == 0 or va.shape != vb.shape:
        return 0.0
    na = np.linalg.norm(va)
    nb = np.linalg.norm(vb)
    if na == 0 or nb == 0:
        return 0.0
    return float(np.dot(va, vb) / (na * nb))


class CategoryResolver:
    """Find an equivalent existing Category or create a new one."""

    def __init__(
        self,
        embedding_service=None,
        trigram_threshold: float = DEFAULT_TRIGRAM_THRESHOLD,
        embedding_threshold: float = DEFAULT_EMBEDDING_THRESHOLD,
    ):
        self._embedder = embedding_service
        self.trigram_threshold = trigram_threshold
        self.embedding_threshold = embedding_threshold

    @classmethod
    def from_settings(cls, settings, embedding_service=None) -> "CategoryResolver":
        return cls(
            embedding_service=embedding_service,
            trigram_threshold=settings.category_trigram_threshold,
            embedding_threshold=settings.category_embedding_threshold,
        )

    # ── Public API ──────────────────────────────────────────────────────

    def find_or_create(self, session: Session, name: str, category_type: str) -> Category:
        if not name or not name.strip():
            raise CategoryResolutionError("Category name must not be blank")
        if category_type not in CATEGORY_TYPES:
            raise CategoryResolutionError(f"Unknown category type: {category_type}")

        display_name = normalize_name(name, category_type)
        slug = slugify(display_name)

        exact = self._find_by_slug(session, slug, category_type)
        if exact is not None:
            return exact

        lexical = self.find_lexical(session, display_name, category_type)
        if lexical is not None:
            return lexical

        embedding = self._embed(display_name)
        semantic = self.find_semantic(session, embedding, category_type)
        if semantic is not None:
            logger.info(f"Embedding match: '{display_name}' -> '{semantic.name}'")
            return semantic

        return self._create(session, display_name, slug, category_type, embedding)

    def find_lexical(self, session: Session, name: str, category_type: str) -> Optional[Category]:
        """Best same-type category whose name similarity exceeds the threshold."""
        target = symbol_words(name)
        best: Optional[Category] = None
        best_score = self.trigram_threshold
        for candidate in self._of_type(session, category_type):
            score = similarity(target, symbol_words(candidate.name))
            if score > best_score:
                best, best_score = candidate, score
        if best is not None:
            logger.debug(f"Trigram match: '{name}' -> '{best.name}' ({best_score:.2f})")
        return best

    def find_semantic(
        self, session: Session, embedding: Optional[List[float]], category_type: str
    ) -> Optional[Category]:
        """Best same-type category by cosine similarity at or above the threshold."""
        if embedding is None:
            return None
        best: Optional[Category] = None
        best_score = 0.0
        for candidate in self._of_type(session, category_type):
            if not candidate.embedding:
                continue
            score = cosine_similarity(embedding, candidate.embedding)
            if score > best_score and score >= self.embedding_threshold:
                best, best_score = candidate, score
        return best

    def backfill_embeddings(self, session: Session, limit: int = 100) -> int:
        """Embed categories created while the embedding service was down."""
        missing = (
            session.query(Category)
            .filter(Category.embedding.is_(None))
            .limit(limit)
            .all()
        )
        updated = 0
        for category in missing:
            embedding = self._embed(category.name)
            if embedding is not None:
                category.embedding = embedding
                updated += 1
        logger.info(f"Backfilled embeddings for {updated}/{len(missing)} categories")
        return updated

    # ── Internals ───────────────────────────────────────────────────────

    def _of_type(self, session: Session, category_type: str) -> List[Category]:
        return session.query(Category).filter(Category.category_type == category_type).all()

    def _find_by_slug(self, session: Session, slug: str, category_type: str) -> Optional[Category]:
        return (
            session.query(Category)
            .filter(Category.slug == slug, Category.category_type == category_type)
            .first()
        )

    def _embed(self, text: str) -> Optional[List[float]]:
        if self._embedder is None or not text:
            return None
        try:
            return list(self._embedder.embed(text))
        except Exception as e:
            logger.error(f"Failed to generate embedding for '{text}': {e}")
            return None

    def _create(
        self,
        session: Session,
        name: str,
        slug: str,
        category_type: str,
        embedding: Optional[List[float]],
    ) -> Category:
        category = Category(
            name=name,
            slug=slug,
            category_type=category_type,
            description=default_description(name, category_type),
            embedding=embedding,
        )
        try:
            with session.begin_nested():
                session.add(category)
        except IntegrityError:
            # Concurrent creator won the (slug, type) race
            existing = self._find_by_slug(session, slug, category_type)
            if existing is None:
                raise
            return existing
        logger.info(f"Created {category_type} category '{name}' (embedded={embedding is not None})")
        return category


def resolve_many(
    resolver: CategoryResolver,
    session: Session,
    items: Sequence[Tuple[str, str]],
) -> List[Category]:
    """Resolve (name, type) pairs, skipping ones that fail."""
    resolved = []
    for name, category_type in items:
        try:
            resolved.append(resolver.find_or_create(session, name, category_type))
        except CategoryResolutionError as e:
            logger.warning(f"Skipping category '{name}' ({category_type}): {e}")
    return resolved

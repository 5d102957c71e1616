"""Model-backed ranking of prepared repositories into a persisted Comparison."""

import logging
import re
from collections import Counter
from math import ceil
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from .db.models import Category, Comparison, ComparisonCategory, ComparisonRepository
from .errors import CategoryResolutionError, ComparisonError
from .gateway import calculate_cost, ensure_whitelisted
from .prompts import REPOSITORY_COMPARER_SYSTEM, build_repository_comparer_prompt
from .safety import validate_output
from .search.normalizer import normalize

logger = logging.getLogger(__name__)

TOP_REPO_CONFIDENCE = (1.0, 0.95, 0.90)
COMMON_CATEGORY_THRESHOLDS = (
    ("technology", 0.3),
    ("problem_domain", 0.5),
    ("architecture_pattern", 0.5),
)

_WORD = re.compile(r"[a-z0-9]+")
_STOPWORDS = frozenset({"and", "for", "the", "with", "of", "a", "an", "in", "on", "to"})


def _words(text: str) -> set:
    return {w for w in _WORD.findall((text or "").lower()) if w not in _STOPWORDS}


def _split_list(value) -> List[str]:
    if not value:
        return []
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    return [str(v).strip() for v in value if v and str(v).strip()]


class ComparisonRanker:
    """Rank repositories with the comparison model and persist the result.

    Args:
        completion_service: TextCompletionService
        category_resolver: CategoryResolver used for the query's problem domain
        model: Whitelisted chat model (default gpt-4o)
    """

    def __init__(self, completion_service, category_resolver, model: str = "gpt-4o", temperature: float = 0.3):
        ensure_whitelisted(model)
        self._completion = completion_service
        self._resolver = category_resolver
        self.model = model
        self.temperature = temperature

    def compare(
        self,
        session: Session,
        query: str,
        parsed,
        prepared: List[Dict[str, Any]],
        user_id=None,
    ) -> Comparison:
        parsed_dict = parsed.to_dict() if hasattr(parsed, "to_dict") else dict(parsed)

        result = self._completion.complete(
            REPOSITORY_COMPARER_SYSTEM,
            build_repository_comparer_prompt(query, parsed_dict, prepared),
            model=self.model,
            temperature=self.temperature,
            purpose="repository_comparison",
        )
        validate_output(result.raw)
        if result.parse_failed:
            raise ComparisonError(
                f"Comparison output was not valid JSON: {result.content.get('parse_error')}"
            )

        comparison = self._persist(session, query, parsed_dict, result, prepared, user_id)
        self._link_categories(session, comparison, parsed_dict, prepared)
        session.flush()

        logger.info(
            f"Comparison {comparison.comparison_id}: {comparison.repos_compared_count} repos, "
            f"recommended={comparison.recommended_repo_full_name}, ${comparison.cost_usd:.4f}"
        )
        return comparison

    # ── Persistence ─────────────────────────────────────────────────────

    def _persist(self, session, query, parsed, result, prepared, user_id) -> Comparison:
        content = result.content
        ranking = content.get("ranking") or []

        comparison = Comparison(
            user_query=query,
            normalized_query=normalize(query),
            technologies=_split_list(content.get("technologies")) or _split_list(parsed.get("tech_stack")),
            problem_domains=_split_list(content.get("problem_domains")) or _split_list(parsed.get("problem_domain")),
            architecture_patterns=_split_list(content.get("architecture_patterns")),
            constraints=list(parsed.get("constraints") or []),
            github_search_query=" | ".join(parsed.get("github_queries") or []),
            recommended_repo_full_name=content.get("recommended_repo"),
            recommendation_reasoning=content.get("recommendation_reasoning"),
            ranking_results=content,
            repos_compared_count=len(ranking),
            model_used=result.model,
            input_tokens=result.input_tokens,
            output_tokens=result.output_tokens,
            cost_usd=calculate_cost(result.model, result.input_tokens, result.output_tokens),
            user_id=user_id,
        )
        session.add(comparison)
        session.flush()

        by_name = {item["repository"].full_name.lower(): item["repository"] for item in prepared}
        linked = set()
        for position, item in enumerate(ranking, 1):
            name = (item.get("repo_full_name") or "").lower()
            repo = by_name.get(name)
            if repo is None:
                logger.warning(f"Ranked repository not in candidate set: {item.get('repo_full_name')}")
                continue
            if repo.repository_id in linked:
                continue
            linked.add(repo.repository_id)
            session.add(ComparisonRepository(
                comparison_id=comparison.comparison_id,
                repository_id=repo.repository_id,
                rank=item.get("rank") or position,
                score=item.get("score"),
                pros=item.get("pros") or [],
                cons=item.get("cons") or [],
                fit_reasoning=item.get("fit_reasoning"),
            ))
        return comparison

    # ── Category linkage ────────────────────────────────────────────────

    def _link_categories(self, session, comparison: Comparison, parsed: Dict[str, Any], prepared):
        links: Dict[Any, ComparisonCategory] = {}

        def link(category: Category, confidence: float, assigned_by: str):
            # First assignment wins
            if category.category_id in links:
                return
            cc = ComparisonCategory(
                comparison_id=comparison.comparison_id,
                category_id=category.category_id,
                confidence_score=round(confidence, 2),
                assigned_by=assigned_by,
            )
            session.add(cc)
            links[category.category_id] = cc

        self._add_query_problem_domain(session, parsed.get("problem_domain"), link)

        for index, item in enumerate(prepared[:len(TOP_REPO_CONFIDENCE)]):
            for rc in item["repository"].category_links:
                if rc.category is not None:
                    link(rc.category, TOP_REPO_CONFIDENCE[index], "inherited")

        for category_type, threshold in COMMON_CATEGORY_THRESHOLDS:
            self._add_common_categories(prepared, category_type, threshold, link)

    def _add_query_problem_domain(self, session, problem_domain: Optional[str], link):
        if not problem_domain or not problem_domain.strip():
            return

        query_words = _words(problem_domain)
        inferred = 0
        if query_words:
            existing = session.query(Category).filter(Category.category_type == "problem_domain").all()
            for category in existing:
                overlap = query_words & _words(category.name)
                if overlap:
                    link(category, len(overlap) / len(query_words), "inferred")
                    inferred += 1
        if inferred:
            return

        try:
            category = self._resolver.find_or_create(session, problem_domain, "problem_domain")
        except CategoryResolutionError as e:
            logger.warning(f"Could not resolve problem domain '{problem_domain}': {e}")
            return
        link(category, 1.0, "ai")

    def _add_common_categories(self, prepared, category_type: str, threshold: float, link):
        total = len(prepared)
        if total == 0:
            return
        counts: Counter = Counter()
        by_id: Dict[Any, Category] = {}
        for item in prepared:
            for category in item["repository"].categories_of_type(category_type):
                counts[category.category_id] += 1
                by_id[category.category_id] = category

        min_count = ceil(total * threshold)
        for category_id, count in counts.items():
            if count >= min_count:
                link(by_id[category_id], count / total, "inherited")

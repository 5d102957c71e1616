"""Basic (categorization) analysis of a single repository."""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from ..db.models import Analysis, Category, Repository
from ..errors import CategoryResolutionError
from ..prompts import REPOSITORY_ANALYZER_SYSTEM, build_repository_analyzer_prompt
from ..safety import validate_output
from .store import AnalysisStore, RepositoryStore

logger = logging.getLogger(__name__)


@dataclass
class AnalysisOutcome:
    analysis: Analysis
    categories_linked: int = 0
    errors: List[str] = field(default_factory=list)

    @property
    def cost_usd(self) -> float:
        return self.analysis.cost_usd


class RepositoryAnalyzer:
    """Summarize and categorize a repository, then persist the result.

    Writes a current basic Analysis, links each returned category through
    the CategoryResolver, and links the primary language as a technology.
    """

    def __init__(
        self,
        completion_service,
        category_resolver,
        model: str = "gpt-4o-mini",
        repository_store: Optional[RepositoryStore] = None,
        analysis_store: Optional[AnalysisStore] = None,
    ):
        self._completion = completion_service
        self._resolver = category_resolver
        self.model = model
        self._repos = repository_store or RepositoryStore()
        self._analyses = analysis_store or AnalysisStore()

    def analyze(self, session: Session, repository: Repository) -> AnalysisOutcome:
        result = self._completion.complete(
            REPOSITORY_ANALYZER_SYSTEM,
            build_repository_analyzer_prompt(repository, self._available_categories(session)),
            model=self.model,
            purpose="repository_analysis",
        )
        validate_output(result.raw)
        content = result.content

        analysis = self._analyses.record(
            session,
            repository,
            "basic",
            model=result.model,
            input_tokens=result.input_tokens,
            output_tokens=result.output_tokens,
            summary=content.get("summary"),
            use_cases=content.get("use_cases"),
        )

        outcome = AnalysisOutcome(analysis=analysis)
        for cat in content.get("categories") or []:
            self._link(session, repository, cat, outcome)
        if repository.language:
            self._link(
                session,
                repository,
                {"name": repository.language, "category_type": "technology", "confidence": 1.0},
                outcome,
                assigned_by="github_language",
            )

        logger.info(
            f"Analyzed {repository.full_name}: {outcome.categories_linked} categories, "
            f"${analysis.cost_usd:.5f}"
        )
        return outcome

    def _link(
        self,
        session: Session,
        repository: Repository,
        cat: Dict[str, Any],
        outcome: AnalysisOutcome,
        assigned_by: str = "ai",
    ):
        name = (cat or {}).get("name")
        category_type = (cat or {}).get("category_type")
        try:
            category = self._resolver.find_or_create(session, name, category_type)
        except CategoryResolutionError as e:
            logger.error(f"Error linking category {name!r}: {e}")
            outcome.errors.append(str(e))
            return
        self._repos.link_category(session, repository, category, cat.get("confidence"), assigned_by)
        outcome.categories_linked += 1

    def _available_categories(self, session: Session) -> Dict[str, List[str]]:
        grouped: Dict[str, List[str]] = defaultdict(list)
        for name, ctype in session.query(Category.name, Category.category_type).all():
            grouped[ctype].append(name)
        return grouped

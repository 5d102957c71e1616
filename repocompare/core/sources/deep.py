"""Deep analysis of a single repository (README + recent issues)."""

import hashlib
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Union

from sqlalchemy.orm import Session

from ..db.models import Analysis, Repository
from ..errors import SourceNotFoundError
from ..progress import NullBroadcaster
from ..prompts import DEEP_ANALYZER_SYSTEM, build_deep_analyzer_prompt, truncate_readme
from ..safety import validate_output
from .store import AnalysisStore

logger = logging.getLogger(__name__)

DEEP_FIELDS = (
    "readme_analysis",
    "issues_analysis",
    "maintenance_analysis",
    "adoption_analysis",
    "security_analysis",
)


class DeepAnalyzer:
    """Produce a current deep Analysis for one repository."""

    def __init__(
        self,
        completion_service,
        search_client,
        model: str = "gpt-4o",
        analysis_store: AnalysisStore = None,
        readme_max_age: timedelta = timedelta(hours=1),
    ):
        self._completion = completion_service
        self._search = search_client
        self.model = model
        self._analyses = analysis_store or AnalysisStore()
        self.readme_max_age = readme_max_age

    def analyze(self, session: Session, repository: Repository, broadcaster=None) -> Analysis:
        broadcaster = broadcaster or NullBroadcaster()

        broadcaster.broadcast_step(
            "fetching_readme", f"Fetching README for {repository.full_name}...", percentage=10,
        )
        self.ensure_readme_fetched(repository)

        broadcaster.broadcast_step("fetching_issues", "Fetching recent issues...", percentage=35)
        issues = self._recent_issues(repository)

        broadcaster.broadcast_step(
            "running_analysis", f"Running deep AI analysis with {self.model}...", percentage=60,
        )
        result = self._completion.complete(
            DEEP_ANALYZER_SYSTEM,
            build_deep_analyzer_prompt(repository, truncate_readme(repository.readme_content), issues),
            model=self.model,
            temperature=0.3,
            purpose="repository_deep_analysis",
        )
        validate_output(result.raw)

        broadcaster.broadcast_step("saving_analysis", "Saving analysis...", percentage=90)
        analysis = self._analyses.record(
            session,
            repository,
            "deep",
            model=result.model,
            input_tokens=result.input_tokens,
            output_tokens=result.output_tokens,
            **{name: result.content.get(name) for name in DEEP_FIELDS},
        )
        logger.info(f"Deep analysis for {repository.full_name}: ${analysis.cost_usd:.4f}")
        return analysis

    def ensure_readme_fetched(self, repository: Repository):
        """Refresh the cached README unless it was fetched recently."""
        fresh_cutoff = datetime.utcnow() - self.readme_max_age
        if (
            repository.readme_content
            and repository.readme_fetched_at
            and repository.readme_fetched_at > fresh_cutoff
        ):
            return

        content = self._search.fetch_readme(repository.full_name)
        if not content:
            logger.warning(f"No README found for {repository.full_name}")
            return
        repository.readme_content = content
        repository.readme_sha = hashlib.sha256(content.encode("utf-8")).hexdigest()
        repository.readme_length = len(content)
        repository.readme_fetched_at = datetime.utcnow()
        logger.info(f"README fetched for {repository.full_name} ({len(content)} bytes)")

    def _recent_issues(self, repository: Repository) -> Union[str, List[Dict[str, Any]]]:
        try:
            issues = self._search.fetch_issues(repository.full_name, state="all", per_page=30)
        except SourceNotFoundError:
            issues = []
        if not issues:
            return "No issues available"
        return [
            {
                "title": issue.get("title"),
                "state": issue.get("state"),
                "created_at": issue.get("created_at"),
                "comments": issue.get("comments"),
                "labels": [label.get("name") for label in issue.get("labels") or []],
                "is_pull_request": issue.get("pull_request") is not None,
            }
            for issue in issues
        ]

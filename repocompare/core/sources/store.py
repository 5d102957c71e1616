"""Idempotent persistence for repositories, their categories, and analyses."""

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..db.models import Analysis, Category, Repository, RepositoryCategory
from ..gateway import calculate_cost

logger = logging.getLogger(__name__)

# our column -> API key (tuple = nested path)
GITHUB_ATTRIBUTE_MAP = {
    "node_id": "node_id",
    "full_name": "full_name",
    "name": "name",
    "owner_login": ("owner", "login"),
    "owner_avatar_url": ("owner", "avatar_url"),
    "description": "description",
    "html_url": "html_url",
    "homepage_url": "homepage",
    "language": "language",
    "license_name": ("license", "name"),
}

ATTRIBUTE_DEFAULTS = {
    "stargazers_count": 0,
    "forks_count": 0,
    "watchers_count": 0,
    "open_issues_count": 0,
    "archived": False,
    "disabled": False,
    "is_fork": False,
}

TIMESTAMP_MAP = {
    "github_created_at": "created_at",
    "github_updated_at": "updated_at",
    "github_pushed_at": "pushed_at",
}


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse GitHub's ISO-8601 timestamps into naive UTC datetimes."""
    if value is None or isinstance(value, datetime):
        return value
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        logger.warning(f"Unparseable timestamp: {value!r}")
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.replace(tzinfo=None) - (parsed.utcoffset() or timedelta(0))
    return parsed


def _dig(data: Dict[str, Any], path) -> Any:
    if isinstance(path, tuple):
        for key in path:
            if not isinstance(data, dict):
                return None
            data = data.get(key)
        return data
    return data.get(path)


def extract_github_attributes(item: Dict[str, Any]) -> Dict[str, Any]:
    attrs: Dict[str, Any] = {}
    for column, path in GITHUB_ATTRIBUTE_MAP.items():
        value = _dig(item, path)
        if value not in (None, ""):
            attrs[column] = value
    for column, default in ATTRIBUTE_DEFAULTS.items():
        api_key = "fork" if column == "is_fork" else column
        value = item.get(api_key)
        attrs[column] = default if value is None else value
    for column, api_key in TIMESTAMP_MAP.items():
        attrs[column] = parse_timestamp(item.get(api_key))
    attrs["topics"] = list(item.get("topics") or [])
    attrs["last_fetched_at"] = datetime.utcnow()
    return attrs


class RepositoryStore:
    """Upserts repositories by stable GitHub id and links categories."""

    def upsert_from_api(self, session: Session, item: Dict[str, Any]) -> Tuple[Repository, bool]:
        """Create or update the row for ``item['id']``.

        Returns:
            (repository, created). fetch_count increments only for
            rows that already existed.
        """
        github_id = item.get("id")
        if github_id is None:
            raise ValueError("Search item has no stable id")
        attrs = extract_github_attributes(item)

        repo = self.find_by_github_id(session, github_id)
        if repo is not None:
            self._apply(repo, attrs)
            repo.fetch_count = (repo.fetch_count or 0) + 1
            return repo, False

        repo = Repository(github_id=github_id, fetch_count=1, **attrs)
        try:
            with session.begin_nested():
                session.add(repo)
        except IntegrityError:
            # Lost an insert race; treat as a re-fetch of the winner's row
            repo = self.find_by_github_id(session, github_id)
            if repo is None:
                raise
            self._apply(repo, attrs)
            repo.fetch_count = (repo.fetch_count or 0) + 1
            return repo, False
        return repo, True

    def _apply(self, repo: Repository, attrs: Dict[str, Any]):
        for key, value in attrs.items():
            setattr(repo, key, value)

    def find_by_github_id(self, session: Session, github_id: int) -> Optional[Repository]:
        return session.query(Repository).filter(Repository.github_id == github_id).first()

    def count_by_github_id(self, session: Session, github_id: int) -> int:
        return session.query(func.count(Repository.repository_id)).filter(
            Repository.github_id == github_id
        ).scalar()

    def link_category(
        self,
        session: Session,
        repository: Repository,
        category: Category,
        confidence: Optional[float],
        assigned_by: str = "ai",
    ) -> RepositoryCategory:
        """Find or create the repository/category link."""
        for link in repository.category_links:
            if link.category_id == category.category_id or link.category is category:
                return link
        link = RepositoryCategory(
            repository=repository,
            category=category,
            confidence_score=confidence,
            assigned_by=assigned_by,
        )
        session.add(link)
        category.repositories_count = (category.repositories_count or 0) + 1
        return link


class AnalysisStore:
    """Writes Analysis rows and keeps one current row per (repository, variant)."""

    def __init__(self, deep_expiration_days: int = 30):
        self.deep_expiration_days = deep_expiration_days

    def record(
        self,
        session: Session,
        repository: Repository,
        analysis_type: str,
        model: str,
        input_tokens: int,
        output_tokens: int,
        **payload,
    ) -> Analysis:
        """Insert a current analysis, flipping earlier ones of the same variant.

        Raises:
            ModelNotWhitelistedError: model has no pricing entry
        """
        if analysis_type not in ("basic", "deep"):
            raise ValueError(f"Unknown analysis type: {analysis_type}")
        cost = calculate_cost(model, input_tokens, output_tokens)
        now = datetime.utcnow()

        if repository.repository_id is not None:
            session.query(Analysis).filter(
                Analysis.repository_id == repository.repository_id,
                Analysis.analysis_type == analysis_type,
                Analysis.is_current.is_(True),
            ).update({Analysis.is_current: False}, synchronize_session="fetch")

        analysis = Analysis(
            repository=repository,
            analysis_type=analysis_type,
            model_used=model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cost_usd=cost,
            is_current=True,
            created_at=now,
            **payload,
        )
        if analysis_type == "deep":
            analysis.expires_at = now + timedelta(days=self.deep_expiration_days)
        else:
            repository.last_analyzed_at = now
        session.add(analysis)
        session.flush()
        return analysis

    def current(self, session: Session, repository_id, analysis_type: str) -> Optional[Analysis]:
        return (
            session.query(Analysis)
            .filter(
                Analysis.repository_id == repository_id,
                Analysis.analysis_type == analysis_type,
                Analysis.is_current.is_(True),
            )
            .first()
        )

"""Read-only views over persisted records for API responses."""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from .db.models import Comparison, Repository


def time_ago_in_words(then: Optional[datetime], now: Optional[datetime] = None) -> str:
    if then is None:
        return "some time"
    seconds = max(0, int(((now or datetime.utcnow()) - then).total_seconds()))
    for unit, size in (("day", 86400), ("hour", 3600), ("minute", 60)):
        if seconds >= size:
            count = seconds // size
            return f"{count} {unit}{'s' if count != 1 else ''}"
    return "less than a minute"


def comparison_summary(comparison: Comparison) -> Dict[str, Any]:
    """Compact list-item serialization."""
    return {
        "id": str(comparison.comparison_id),
        "user_query": comparison.user_query,
        "normalized_query": comparison.normalized_query,
        "technologies": comparison.technologies or [],
        "problem_domains": comparison.problem_domains or [],
        "architecture_patterns": comparison.architecture_patterns or [],
        "repos_compared_count": comparison.repos_compared_count,
        "recommended_repo": comparison.recommended_repo_full_name,
        "view_count": comparison.view_count,
        "created_at": comparison.created_at.isoformat() if comparison.created_at else None,
        "categories": [
            {
                "id": str(link.category.category_id),
                "name": link.category.name,
                "category_type": link.category.category_type,
                "confidence": link.confidence_score,
                "assigned_by": link.assigned_by,
            }
            for link in comparison.category_links
            if link.category is not None
        ],
    }


def repository_summary(repo: Repository) -> Dict[str, Any]:
    return {
        "id": str(repo.repository_id),
        "full_name": repo.full_name,
        "description": repo.description,
        "stargazers_count": repo.stargazers_count,
        "forks_count": repo.forks_count,
        "language": repo.language,
        "html_url": repo.html_url,
        "archived": repo.archived,
    }


@dataclass(frozen=True)
class ComparisonView:
    """A Comparison plus the request context it is shown in.

    Authorization decisions live here, not on the entity.
    """

    comparison: Comparison
    is_admin: bool = False
    newly_created: bool = False
    similarity: Optional[float] = None

    @property
    def can_refresh(self) -> bool:
        return self.is_admin and not self.newly_created

    def cache_notice(self, now: Optional[datetime] = None) -> Optional[str]:
        if self.newly_created:
            return "Analysis complete!"
        if self.similarity is None:
            return None
        age = time_ago_in_words(self.comparison.created_at, now)
        if self.similarity > 0.9:
            return f"Showing cached results from {age} ago"
        return f"Showing similar query results ({round(self.similarity * 100)}% match) from {age} ago"

    def ranked_repositories(self) -> List[Dict[str, Any]]:
        return [
            {
                "rank": link.rank,
                "score": link.score,
                "pros": link.pros or [],
                "cons": link.cons or [],
                "fit_reasoning": link.fit_reasoning,
                "repository": repository_summary(link.repository),
            }
            for link in self.comparison.repository_links
            if link.repository is not None
        ]

    def to_dict(self) -> Dict[str, Any]:
        data = comparison_summary(self.comparison)
        data.update({
            "constraints": self.comparison.constraints or [],
            "github_search_query": self.comparison.github_search_query,
            "recommendation_reasoning": self.comparison.recommendation_reasoning,
            "repositories": self.ranked_repositories(),
            "model_used": self.comparison.model_used,
            "cost_usd": self.comparison.cost_usd,
            "can_refresh": self.can_refresh,
            "notice": self.cache_notice(),
        })
        return data


def analysis_to_dict(analysis) -> Dict[str, Any]:
    data = {
        "id": str(analysis.analysis_id),
        "analysis_type": analysis.analysis_type,
        "model_used": analysis.model_used,
        "cost_usd": analysis.cost_usd,
        "is_current": analysis.is_current,
        "created_at": analysis.created_at.isoformat() if analysis.created_at else None,
    }
    if analysis.analysis_type == "deep":
        data.update({
            "readme_analysis": analysis.readme_analysis,
            "issues_analysis": analysis.issues_analysis,
            "maintenance_analysis": analysis.maintenance_analysis,
            "adoption_analysis": analysis.adoption_analysis,
            "security_analysis": analysis.security_analysis,
            "expires_at": analysis.expires_at.isoformat() if analysis.expires_at else None,
        })
    else:
        data.update({"summary": analysis.summary, "use_cases": analysis.use_cases})
    return data

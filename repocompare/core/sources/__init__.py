"""Repository discovery, persistence, and enrichment."""

from .aggregator import AggregationResult, SourceAggregator, clamp_limit, quality_signals
from .analyzer import AnalysisOutcome, RepositoryAnalyzer
from .deep import DeepAnalyzer
from .github import GitHubSearchClient
from .store import AnalysisStore, RepositoryStore
from .trending import TrendingSync, priority_for_stars

__all__ = [
    "AggregationResult",
    "SourceAggregator",
    "clamp_limit",
    "quality_signals",
    "AnalysisOutcome",
    "RepositoryAnalyzer",
    "DeepAnalyzer",
    "GitHubSearchClient",
    "AnalysisStore",
    "RepositoryStore",
    "TrendingSync",
    "priority_for_stars",
]

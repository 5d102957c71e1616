"""Process-wide configuration for repocompare.

Settings are resolved once, in this order (later wins):
1. Field defaults below
2. YAML file named by REPOCOMPARE_CONFIG (or config/repocompare.yaml)
3. Environment variables prefixed REPOCOMPARE_ (a .env file is loaded first)

Components receive the Settings instance through their constructors and
never read the environment themselves.
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

load_dotenv()

logger = logging.getLogger(__name__)

ENV_PREFIX = "REPOCOMPARE_"
DEFAULT_CONFIG_PATH = Path(__file__).parent.parent / "config" / "repocompare.yaml"


class Settings(BaseModel):
    """Tunable thresholds, budgets, and model choices."""

    # Storage
    database_url: str = "sqlite:///repocompare.db"

    # Cache resolution
    cache_ttl_days: int = 7
    cache_similarity_threshold: float = 0.8

    # Relevance scoring
    weight_query: float = 100.0
    weight_technologies: float = 50.0
    weight_problem_domains: float = 30.0
    weight_architecture_patterns: float = 20.0
    weight_categories: float = 10.0
    word_similarity_threshold: float = 0.45
    category_confidence_floor: float = 0.3
    default_category_confidence: float = 0.5

    # Category resolution
    category_trigram_threshold: float = 0.55
    category_embedding_threshold: float = 0.75

    # Source aggregation
    fetch_limit: int = 15
    max_fetch_limit: int = 15
    reanalyze_after_days: int = 7

    # Models
    interpreter_model: str = "gpt-4o-mini"
    analyzer_model: str = "gpt-4o-mini"
    ranker_model: str = "gpt-4o"
    deep_analyzer_model: str = "gpt-4o"
    embedding_model: str = "text-embedding-3-small"

    # Budgets and caps
    daily_comparison_budget_usd: float = 5.00
    daily_deep_analysis_budget_usd: float = 0.50
    estimated_comparison_cost_usd: float = 0.05
    estimated_deep_analysis_cost_usd: float = 0.05
    daily_comparison_limit: int = 20
    deep_analysis_per_user: int = 3
    deep_analysis_expiration_days: int = 30
    admin_github_ids: List[int] = Field(default_factory=list)

    # Worker
    worker_poll_interval: float = 2.0
    worker_concurrency: int = 2
    job_max_attempts: int = 2
    job_base_backoff_seconds: float = 5.0
    subscriber_grace_seconds: float = 0.5

    # Batch categorization
    batch_size: int = 20
    batch_cost_limit_usd: float = 0.10
    batch_retry_delays_seconds: List[int] = Field(
        default_factory=lambda: [300, 1800, 7200]
    )

    # Trending sync
    trending_days_ago: int = 7
    trending_min_stars: int = 50
    trending_per_page: int = 10

    # External services
    github_api_base: str = "https://api.github.com"
    github_token: Optional[str] = None
    github_timeout_seconds: float = 15.0

    # HTTP API
    cors_origins: List[str] = Field(
        default_factory=lambda: ["http://localhost:3000", "http://localhost:5173"]
    )

    @field_validator("admin_github_ids", "batch_retry_delays_seconds", mode="before")
    @classmethod
    def _split_csv(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [int(part) for part in value.split(",") if part.strip()]
        return value

    @field_validator("cors_origins", mode="before")
    @classmethod
    def _split_origins(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [part.strip() for part in value.split(",") if part.strip()]
        return value


def _load_yaml_overrides(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    with open(path, "r") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        logger.warning(f"Ignoring {path}: top level must be a mapping")
        return {}
    logger.info(f"Loaded settings overrides from {path}")
    return data


def _load_env_overrides() -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    for name in Settings.model_fields:
        value = os.getenv(f"{ENV_PREFIX}{name.upper()}")
        if value is not None:
            overrides[name] = value
    # Conventional names used by deployment tooling
    if os.getenv("DATABASE_URL"):
        overrides.setdefault("database_url", os.environ["DATABASE_URL"])
    if os.getenv("GITHUB_TOKEN"):
        overrides.setdefault("github_token", os.environ["GITHUB_TOKEN"])
    return overrides


def load_settings(config_path: Optional[str] = None) -> Settings:
    """Build a Settings instance from defaults, YAML, and environment."""
    path = Path(config_path or os.getenv(f"{ENV_PREFIX}CONFIG") or DEFAULT_CONFIG_PATH)
    values = _load_yaml_overrides(path)
    values.update(_load_env_overrides())
    return Settings(**values)


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Return the process-wide Settings, loading it on first use."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings

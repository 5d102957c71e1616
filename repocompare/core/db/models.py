"""
SQLAlchemy ORM Models for repocompare

- User: Account used for per-user daily caps and admin exemption
- Repository: Canonical GitHub repository identity plus cached stats/readme
- Category: Typed label (technology, problem_domain, ...) with optional embedding
- RepositoryCategory: Repository <-> Category link with confidence
- Analysis: Basic or deep AI analysis of a repository (tagged variant)
- Comparison: Immutable ranked comparison for a user query
- ComparisonRepository: Per-repository ranking row of a comparison
- ComparisonCategory: Comparison <-> Category link with confidence
- CostLedgerEntry: Per-(date, model) running AI cost totals
- OperationStatus: Session-scoped status of a background comparison/analysis
- QueuedAnalysis: Backlog item for batch categorization
"""

from sqlalchemy import (
    Column, String, Integer, Float, Text, TIMESTAMP, ForeignKey, BigInteger,
    Index, TypeDecorator, Boolean, UniqueConstraint, Date, JSON,
)
from sqlalchemy.orm import relationship, declarative_base
from sqlalchemy.dialects.postgresql import UUID as PostgreSQL_UUID, JSONB
import uuid
from datetime import datetime, timedelta

Base = declarative_base()

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")
# Stores None as SQL NULL so "not embedded yet" is queryable
NullableJSONType = JSON(none_as_null=True).with_variant(JSONB(none_as_null=True), "postgresql")


# UUID type that works with both PostgreSQL and SQLite
class UUID(TypeDecorator):
    """Platform-independent UUID type.

    Uses PostgreSQL's UUID type when available, otherwise stores as String(36).
    """
    impl = String
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == 'postgresql':
            return dialect.type_descriptor(PostgreSQL_UUID(as_uuid=True))
        return dialect.type_descriptor(String(36))

    def process_bind_param(self, value, dialect):
        if value is None or dialect.name == 'postgresql':
            return value
        return str(value if isinstance(value, uuid.UUID) else uuid.UUID(str(value)))

    def process_result_value(self, value, dialect):
        if value is None or isinstance(value, uuid.UUID):
            return value
        return uuid.UUID(value)


CATEGORY_TYPES = ("technology", "problem_domain", "architecture_pattern", "maturity")
ANALYSIS_TYPES = ("basic", "deep")
OPERATION_KINDS = ("comparison", "analysis")


# =============================================================================
# Users
# =============================================================================

class User(Base):
    """Account used for daily caps; admins are exempt."""
    __tablename__ = "users"

    user_id = Column(UUID(), primary_key=True, default=uuid.uuid4)
    github_id = Column(BigInteger, unique=True)
    username = Column(String(255), nullable=False)
    is_admin = Column(Boolean, default=False, nullable=False)
    created_at = Column(TIMESTAMP, default=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<User(user_id={self.user_id}, username='{self.username}')>"


# =============================================================================
# Repositories and categories
# =============================================================================

class Repository(Base):
    """GitHub repository, upserted by github_id on every fetch."""
    __tablename__ = "repositories"
    __table_args__ = (
        Index('idx_repositories_stars', 'stargazers_count'),
        Index('idx_repositories_language', 'language'),
    )

    repository_id = Column(UUID(), primary_key=True, default=uuid.uuid4)
    github_id = Column(BigInteger, unique=True, nullable=False)
    node_id = Column(String(100), unique=True)
    full_name = Column(String(255), unique=True, nullable=False)
    name = Column(String(255), nullable=False)
    owner_login = Column(String(255))
    owner_avatar_url = Column(Text)
    description = Column(Text)
    html_url = Column(Text)
    homepage_url = Column(Text)

    stargazers_count = Column(Integer, default=0, nullable=False)
    forks_count = Column(Integer, default=0, nullable=False)
    watchers_count = Column(Integer, default=0, nullable=False)
    open_issues_count = Column(Integer, default=0, nullable=False)
    language = Column(String(100))
    topics = Column(JSONType, default=list)
    license_name = Column(String(255))
    is_fork = Column(Boolean, default=False, nullable=False)
    archived = Column(Boolean, default=False, nullable=False)
    disabled = Column(Boolean, default=False, nullable=False)

    github_created_at = Column(TIMESTAMP)
    github_updated_at = Column(TIMESTAMP)
    github_pushed_at = Column(TIMESTAMP)

    readme_content = Column(Text)
    readme_sha = Column(String(64))
    readme_fetched_at = Column(TIMESTAMP)
    readme_length = Column(Integer)

    last_analyzed_at = Column(TIMESTAMP)
    fetch_count = Column(Integer, default=1, nullable=False)
    last_fetched_at = Column(TIMESTAMP, default=datetime.utcnow)
    created_at = Column(TIMESTAMP, default=datetime.utcnow, nullable=False)
    updated_at = Column(TIMESTAMP, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    # Relationships
    category_links = relationship(
        "RepositoryCategory", back_populates="repository", cascade="all, delete-orphan"
    )
    analyses = relationship("Analysis", back_populates="repository", cascade="all, delete-orphan")

    def needs_analysis(self, reanalyze_after_days: int = 7, now: datetime = None) -> bool:
        """True if never analyzed, readme changed since, or analysis is stale."""
        now = now or datetime.utcnow()
        if self.last_analyzed_at is None:
            return True
        if self.readme_fetched_at and self.readme_fetched_at > self.last_analyzed_at:
            return True
        return self.last_analyzed_at < now - timedelta(days=reanalyze_after_days)

    def current_analysis(self, analysis_type: str = "basic"):
        for analysis in self.analyses:
            if analysis.analysis_type == analysis_type and analysis.is_current:
                return analysis
        return None

    def categories_of_type(self, category_type: str) -> list:
        return [
            link.category for link in self.category_links
            if link.category is not None and link.category.category_type == category_type
        ]

    def __repr__(self):
        return f"<Repository(full_name='{self.full_name}', stars={self.stargazers_count})>"


class Category(Base):
    """Typed label; slug is unique within its category_type only."""
    __tablename__ = "categories"
    __table_args__ = (
        UniqueConstraint('slug', 'category_type', name='uq_category_slug_type'),
        Index('idx_categories_type', 'category_type'),
    )

    category_id = Column(UUID(), primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    slug = Column(String(255), nullable=False)
    category_type = Column(String(50), nullable=False)
    description = Column(Text)
    embedding = Column(NullableJSONType)  # list[float] or NULL until embedded
    repositories_count = Column(Integer, default=0, nullable=False)
    created_at = Column(TIMESTAMP, default=datetime.utcnow, nullable=False)

    repository_links = relationship("RepositoryCategory", back_populates="category")

    def __repr__(self):
        return f"<Category(name='{self.name}', type='{self.category_type}')>"


class RepositoryCategory(Base):
    """Repository <-> Category link."""
    __tablename__ = "repository_categories"
    __table_args__ = (
        UniqueConstraint('repository_id', 'category_id', name='uq_repository_category'),
    )

    link_id = Column(UUID(), primary_key=True, default=uuid.uuid4)
    repository_id = Column(UUID(), ForeignKey("repositories.repository_id", ondelete="CASCADE"), nullable=False)
    category_id = Column(UUID(), ForeignKey("categories.category_id", ondelete="CASCADE"), nullable=False)
    confidence_score = Column(Float)
    assigned_by = Column(String(50), default="ai", nullable=False)  # ai, github_language, manual
    created_at = Column(TIMESTAMP, default=datetime.utcnow, nullable=False)

    repository = relationship("Repository", back_populates="category_links")
    category = relationship("Category", back_populates="repository_links")


# =============================================================================
# Analyses (tagged variant: basic | deep)
# =============================================================================

class Analysis(Base):
    """AI analysis of one repository.

    Shared core: model, tokens, cost, is_current.
    basic payload: summary, use_cases.
    deep payload: readme/issues/maintenance/adoption/security analyses, expires_at.

    At most one row per (repository, analysis_type) has is_current = True;
    AnalysisStore.record() maintains this.
    """
    __tablename__ = "analyses"
    __table_args__ = (
        Index('idx_analyses_repo_type_current', 'repository_id', 'analysis_type', 'is_current'),
        Index('idx_analyses_created', 'created_at'),
    )

    analysis_id = Column(UUID(), primary_key=True, default=uuid.uuid4)
    repository_id = Column(UUID(), ForeignKey("repositories.repository_id", ondelete="CASCADE"), nullable=False)
    analysis_type = Column(String(20), nullable=False)
    model_used = Column(String(100), nullable=False)
    input_tokens = Column(Integer, default=0, nullable=False)
    output_tokens = Column(Integer, default=0, nullable=False)
    cost_usd = Column(Float, default=0.0, nullable=False)
    is_current = Column(Boolean, default=True, nullable=False)

    # basic
    summary = Column(Text)
    use_cases = Column(Text)

    # deep
    readme_analysis = Column(Text)
    issues_analysis = Column(Text)
    maintenance_analysis = Column(Text)
    adoption_analysis = Column(Text)
    security_analysis = Column(Text)
    expires_at = Column(TIMESTAMP)

    created_at = Column(TIMESTAMP, default=datetime.utcnow, nullable=False)

    repository = relationship("Repository", back_populates="analyses")

    def __repr__(self):
        return f"<Analysis(type='{self.analysis_type}', repo={self.repository_id}, current={self.is_current})>"


# =============================================================================
# Comparisons
# =============================================================================

class Comparison(Base):
    """Ranked comparison for a user query; immutable apart from view_count."""
    __tablename__ = "comparisons"
    __table_args__ = (
        Index('idx_comparisons_created', 'created_at'),
        Index('idx_comparisons_user', 'user_id', 'created_at'),
    )

    comparison_id = Column(UUID(), primary_key=True, default=uuid.uuid4)
    user_query = Column(Text, nullable=False)
    normalized_query = Column(Text, nullable=False)
    technologies = Column(JSONType, default=list)
    problem_domains = Column(JSONType, default=list)
    architecture_patterns = Column(JSONType, default=list)
    constraints = Column(JSONType, default=list)
    github_search_query = Column(Text)
    recommended_repo_full_name = Column(String(255))
    recommendation_reasoning = Column(Text)
    ranking_results = Column(JSONType)
    repos_compared_count = Column(Integer, default=0, nullable=False)
    model_used = Column(String(100))
    input_tokens = Column(Integer, default=0, nullable=False)
    output_tokens = Column(Integer, default=0, nullable=False)
    cost_usd = Column(Float, default=0.0, nullable=False)
    view_count = Column(Integer, default=0, nullable=False)
    user_id = Column(UUID(), ForeignKey("users.user_id", ondelete="SET NULL"))
    created_at = Column(TIMESTAMP, default=datetime.utcnow, nullable=False)

    repository_links = relationship(
        "ComparisonRepository", back_populates="comparison",
        cascade="all, delete-orphan", order_by="ComparisonRepository.rank",
    )
    category_links = relationship(
        "ComparisonCategory", back_populates="comparison", cascade="all, delete-orphan"
    )

    def __repr__(self):
        return f"<Comparison(comparison_id={self.comparison_id}, query='{self.user_query[:40]}')>"


class ComparisonRepository(Base):
    __tablename__ = "comparison_repositories"
    __table_args__ = (
        UniqueConstraint('comparison_id', 'repository_id', name='uq_comparison_repository'),
    )

    link_id = Column(UUID(), primary_key=True, default=uuid.uuid4)
    comparison_id = Column(UUID(), ForeignKey("comparisons.comparison_id", ondelete="CASCADE"), nullable=False)
    repository_id = Column(UUID(), ForeignKey("repositories.repository_id", ondelete="CASCADE"), nullable=False)
    rank = Column(Integer, nullable=False)
    score = Column(Float)
    pros = Column(JSONType, default=list)
    cons = Column(JSONType, default=list)
    fit_reasoning = Column(Text)

    comparison = relationship("Comparison", back_populates="repository_links")
    repository = relationship("Repository")


class ComparisonCategory(Base):
    __tablename__ = "comparison_categories"
    __table_args__ = (
        UniqueConstraint('comparison_id', 'category_id', name='uq_comparison_category'),
    )

    link_id = Column(UUID(), primary_key=True, default=uuid.uuid4)
    comparison_id = Column(UUID(), ForeignKey("comparisons.comparison_id", ondelete="CASCADE"), nullable=False)
    category_id = Column(UUID(), ForeignKey("categories.category_id", ondelete="CASCADE"), nullable=False)
    confidence_score = Column(Float)
    assigned_by = Column(String(50), nullable=False)  # ai, inherited, inferred

    comparison = relationship("Comparison", back_populates="category_links")
    category = relationship("Category")


# =============================================================================
# Cost accounting and background work
# =============================================================================

class CostLedgerEntry(Base):
    """Running AI cost totals per (date, model)."""
    __tablename__ = "ai_costs"
    __table_args__ = (
        UniqueConstraint('date', 'model', name='uq_ai_costs_date_model'),
    )

    entry_id = Column(UUID(), primary_key=True, default=uuid.uuid4)
    date = Column(Date, nullable=False)
    model = Column(String(100), nullable=False)
    total_requests = Column(Integer, default=0, nullable=False)
    total_input_tokens = Column(BigInteger, default=0, nullable=False)
    total_output_tokens = Column(BigInteger, default=0, nullable=False)
    total_cost_usd = Column(Float, default=0.0, nullable=False)
    updated_at = Column(TIMESTAMP, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    @property
    def average_cost_per_request(self) -> float:
        return self.total_cost_usd / self.total_requests if self.total_requests else 0.0

    @property
    def average_tokens_per_request(self) -> float:
        if not self.total_requests:
            return 0.0
        return (self.total_input_tokens + self.total_output_tokens) / self.total_requests

    def __repr__(self):
        return f"<CostLedgerEntry(date={self.date}, model='{self.model}', cost={self.total_cost_usd:.4f})>"


class OperationStatus(Base):
    """Session-scoped status of a background comparison or analysis.

    processing -> completed | failed. Terminal states are final and zero
    the pending cost reservation. Also carries the job lease columns the
    worker uses to claim and retry.
    """
    __tablename__ = "operation_statuses"
    __table_args__ = (
        Index('idx_operation_status_claim', 'status', 'worker_id', 'next_attempt_at'),
        Index('idx_operation_status_kind_created', 'kind', 'created_at'),
    )

    status_id = Column(UUID(), primary_key=True, default=uuid.uuid4)
    session_id = Column(String(100), unique=True, nullable=False)
    kind = Column(String(20), nullable=False)
    status = Column(String(20), default="processing", nullable=False)
    user_id = Column(UUID(), ForeignKey("users.user_id", ondelete="SET NULL"))
    query = Column(Text)
    repository_id = Column(UUID(), ForeignKey("repositories.repository_id", ondelete="CASCADE"))
    force_refresh = Column(Boolean, default=False, nullable=False)
    pending_cost_usd = Column(Float, default=0.0, nullable=False)
    result_id = Column(UUID())
    redirect_target = Column(String(500))
    error_message = Column(Text)

    # Job lease
    worker_id = Column(String(100))
    retry_count = Column(Integer, default=0, nullable=False)
    next_attempt_at = Column(TIMESTAMP)
    started_at = Column(TIMESTAMP)

    created_at = Column(TIMESTAMP, default=datetime.utcnow, nullable=False)
    completed_at = Column(TIMESTAMP)

    @property
    def is_terminal(self) -> bool:
        return self.status in ("completed", "failed")

    def __repr__(self):
        return f"<OperationStatus(session_id='{self.session_id}', kind='{self.kind}', status='{self.status}')>"


class QueuedAnalysis(Base):
    """Backlog item for batch categorization."""
    __tablename__ = "queued_analyses"
    __table_args__ = (
        Index('idx_queued_analyses_ready', 'status', 'scheduled_for', 'priority'),
    )

    queue_id = Column(UUID(), primary_key=True, default=uuid.uuid4)
    repository_id = Column(UUID(), ForeignKey("repositories.repository_id", ondelete="CASCADE"), nullable=False)
    analysis_type = Column(String(20), default="basic", nullable=False)
    status = Column(String(20), default="pending", nullable=False)
    priority = Column(Integer, default=0, nullable=False)
    retry_count = Column(Integer, default=0, nullable=False)
    scheduled_for = Column(TIMESTAMP, default=datetime.utcnow, nullable=False)
    error_message = Column(Text)
    processed_at = Column(TIMESTAMP)
    created_at = Column(TIMESTAMP, default=datetime.utcnow, nullable=False)

    repository = relationship("Repository")

    def __repr__(self):
        return f"<QueuedAnalysis(repo={self.repository_id}, status='{self.status}', priority={self.priority})>"

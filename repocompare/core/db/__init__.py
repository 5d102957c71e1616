"""
Database module for repocompare.

Exports:
- DatabaseManager: Database connection and session management
- get_database_manager: Factory function for DatabaseManager
- wait_for_db: Database availability checker with retry logic
- Models: Repository, Category, Analysis, Comparison, CostLedgerEntry, ...
- Base: SQLAlchemy declarative base
"""

from .db import DatabaseManager, get_database_manager, wait_for_db
from .models import (
    Base,
    User,
    Repository,
    Category,
    RepositoryCategory,
    Analysis,
    Comparison,
    ComparisonRepository,
    ComparisonCategory,
    CostLedgerEntry,
    OperationStatus,
    QueuedAnalysis,
)

__all__ = [
    # Database management
    "DatabaseManager",
    "get_database_manager",
    "wait_for_db",

    # ORM models
    "Base",
    "User",
    "Repository",
    "Category",
    "RepositoryCategory",
    "Analysis",
    "Comparison",
    "ComparisonRepository",
    "ComparisonCategory",
    "CostLedgerEntry",
    "OperationStatus",
    "QueuedAnalysis",
]

"""Shared fixtures: in-memory SQLite database and row factories."""

from datetime import datetime
from itertools import count

import pytest

from repocompare.core.db import DatabaseManager
from repocompare.core.db.models import Comparison, Repository, User
from repocompare.core.search import normalize
from repocompare.setting import Settings

_github_ids = count(1000)


@pytest.fixture
def db():
    """Fresh in-memory database with all tables created."""
    manager = DatabaseManager("sqlite://")
    manager.create_tables()
    yield manager
    manager.dispose()


@pytest.fixture
def settings():
    return Settings(database_url="sqlite://")


def make_repository(session, full_name="rails/rails", stars=100, **kwargs) -> Repository:
    github_id = kwargs.pop("github_id", next(_github_ids))
    repo = Repository(
        github_id=github_id,
        full_name=full_name,
        name=full_name.split("/")[-1],
        owner_login=full_name.split("/")[0],
        stargazers_count=stars,
        **kwargs,
    )
    session.add(repo)
    session.flush()
    return repo


def make_comparison(session, query="rails background jobs", created_at=None, **kwargs) -> Comparison:
    comparison = Comparison(
        user_query=query,
        normalized_query=normalize(query),
        created_at=created_at or datetime.utcnow(),
        **kwargs,
    )
    session.add(comparison)
    session.flush()
    return comparison


def make_user(session, username="octocat", is_admin=False, github_id=None) -> User:
    user = User(username=username, is_admin=is_admin, github_id=github_id)
    session.add(user)
    session.flush()
    return user

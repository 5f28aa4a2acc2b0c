"""Shared fixtures: in-memory SQLite database, in-memory cache, seed data."""

import pytest

from reviewloom.core.analysis import AnalysisStore, Principal
from reviewloom.core.cache import InMemoryCache, ResilientCache
from reviewloom.core.db import DatabaseManager
from reviewloom.core.ids import new_id


@pytest.fixture
def db_manager():
    db = DatabaseManager("sqlite://")
    db.init_db()
    yield db
    db.dispose()


@pytest.fixture
def cache():
    return ResilientCache(InMemoryCache())


@pytest.fixture
def store(db_manager):
    return AnalysisStore(db_manager)


@pytest.fixture
def principal(store):
    user_id = new_id()
    store.ensure_user(user_id, "octocat")
    return Principal(user_id=user_id, username="octocat", github_token="gho_test_token")


@pytest.fixture
def other_principal(store):
    user_id = new_id()
    store.ensure_user(user_id, "hubot")
    return Principal(user_id=user_id, username="hubot", github_token="gho_other_token")


@pytest.fixture
def repository(store, principal):
    return store.create_repository(
        user_id=principal.user_id,
        name="hello-world",
        full_name="octocat/hello-world",
        github_id=1296269,
    )

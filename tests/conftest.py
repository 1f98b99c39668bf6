"""Shared pytest fixtures for authgraph tests."""

from __future__ import annotations

import os
from collections.abc import Iterator

import pytest
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from authgraph.db.engine import build_engine, build_sessionmaker, create_schema, session_scope
from authgraph.manager import AuthManager
from authgraph.settings import Settings


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep developer AUTHGRAPH_* variables out of the tests."""

    for key in list(os.environ):
        if key.upper().startswith("AUTHGRAPH_"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture()
def settings() -> Settings:
    return Settings(_env_file=None, database_url="sqlite:///:memory:")


@pytest.fixture()
def engine(settings: Settings) -> Iterator[Engine]:
    """In-memory SQLite engine with the schema created."""

    engine = build_engine(settings)
    create_schema(engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def session(engine: Engine) -> Iterator[Session]:
    with session_scope(build_sessionmaker(engine)) as session:
        yield session


@pytest.fixture()
def manager(settings: Settings, engine: Engine) -> AuthManager:
    return AuthManager(settings, engine=engine)


@pytest.fixture()
def blog(manager: AuthManager) -> AuthManager:
    """Seed a small blog hierarchy.

    admin -> author -> createPost
    admin -> updatePost
    reader -> readPost
    author -> readPost
    """

    for name in ("createPost", "readPost", "updatePost"):
        manager.add(manager.create_permission(name, description=f"{name} permission"))
    for name in ("reader", "author", "admin"):
        manager.add(manager.create_role(name, description=name.title()))

    manager.add_child("reader", "readPost")
    manager.add_child("author", "createPost")
    manager.add_child("author", "readPost")
    manager.add_child("admin", "author")
    manager.add_child("admin", "updatePost")
    return manager

"""Database engine and session helpers."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Protocol

from sqlalchemy import create_engine, event, inspect
from sqlalchemy.engine import URL, Engine, make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from . import models  # noqa: F401 - registers the tables on the metadata
from .base import metadata

REQUIRED_TABLES = ("auth_item", "auth_rule", "auth_item_child", "auth_assignment")


class DatabaseSettings(Protocol):
    database_url: str | URL
    database_echo: bool


def is_sqlite_memory_url(url: URL) -> bool:
    database = (url.database or "").strip()
    return not database or database == ":memory:" or database.startswith("file::memory:")


def ensure_sqlite_database_directory(url: URL) -> None:
    if is_sqlite_memory_url(url):
        return
    Path(url.database).expanduser().resolve().parent.mkdir(parents=True, exist_ok=True)


def _enable_sqlite_foreign_keys(engine: Engine) -> None:
    @event.listens_for(engine, "connect")
    def _set_pragma(dbapi_connection, _record) -> None:  # type: ignore[no-untyped-def]
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def _create_sqlite_engine(url: URL, settings: DatabaseSettings) -> Engine:
    if is_sqlite_memory_url(url):
        # One shared connection, otherwise each checkout sees an empty database.
        engine = create_engine(
            url,
            echo=settings.database_echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        ensure_sqlite_database_directory(url)
        engine = create_engine(
            url,
            echo=settings.database_echo,
            connect_args={"check_same_thread": False},
        )
    _enable_sqlite_foreign_keys(engine)
    return engine


def build_engine(settings: DatabaseSettings) -> Engine:
    if not settings.database_url:
        raise ValueError("Settings.database_url is required.")
    url = make_url(str(settings.database_url))

    if url.get_backend_name() == "sqlite":
        return _create_sqlite_engine(url, settings)
    return create_engine(url, echo=settings.database_echo, pool_pre_ping=True)


def build_sessionmaker(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, expire_on_commit=False, autoflush=True)


@contextmanager
def session_scope(
    session_factory: sessionmaker[Session],
) -> Iterator[Session]:
    """Standard session scope with commit/rollback."""
    session = session_factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def create_schema(engine: Engine) -> None:
    """Create the authorization tables if they are missing."""

    metadata.create_all(engine)


def drop_schema(engine: Engine) -> None:
    metadata.drop_all(engine)


def assert_tables_exist(
    engine: Engine,
    required_tables: tuple[str, ...] = REQUIRED_TABLES,
    *,
    schema: str | None = None,
) -> None:
    """Raise if required tables are missing."""
    inspector = inspect(engine)
    missing = [t for t in required_tables if not inspector.has_table(t, schema=schema)]
    if missing:
        raise RuntimeError(
            f"Missing required tables: {', '.join(missing)}. "
            "Run `authgraph init-db` first."
        )


__all__ = [
    "DatabaseSettings",
    "REQUIRED_TABLES",
    "assert_tables_exist",
    "build_engine",
    "build_sessionmaker",
    "create_schema",
    "drop_schema",
    "ensure_sqlite_database_directory",
    "is_sqlite_memory_url",
    "session_scope",
]

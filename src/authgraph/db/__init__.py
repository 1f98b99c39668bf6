"""Database schema and engine helpers for authgraph."""

from .base import NAMING_CONVENTION, Base, metadata
from .engine import (
    assert_tables_exist,
    build_engine,
    build_sessionmaker,
    create_schema,
    drop_schema,
    session_scope,
)
from .models import AuthAssignment, AuthItem, AuthItemChild, AuthRule

__all__ = [
    "AuthAssignment",
    "AuthItem",
    "AuthItemChild",
    "AuthRule",
    "Base",
    "NAMING_CONVENTION",
    "assert_tables_exist",
    "build_engine",
    "build_sessionmaker",
    "create_schema",
    "drop_schema",
    "metadata",
    "session_scope",
]

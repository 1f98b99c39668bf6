from __future__ import annotations

import json
from collections.abc import Iterator
from pathlib import Path

import pytest
from typer.testing import CliRunner

from authgraph import cli
from authgraph.settings import reload_settings

runner = CliRunner()


@pytest.fixture()
def database(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[Path]:
    path = tmp_path / "auth.sqlite"
    monkeypatch.setenv("AUTHGRAPH_DATABASE_URL", f"sqlite:///{path}")
    monkeypatch.setattr(cli, "setup_logging", lambda settings: None)
    reload_settings()
    yield path
    monkeypatch.delenv("AUTHGRAPH_DATABASE_URL")
    reload_settings()


def _invoke(*args: str):
    return runner.invoke(cli.app, list(args))


@pytest.fixture()
def seeded(database: Path) -> Path:
    for args in (
        ("init-db",),
        ("add-role", "admin", "--description", "Administrators"),
        ("add-role", "author"),
        ("add-permission", "createPost"),
        ("add-child", "admin", "author"),
        ("add-child", "author", "createPost"),
        ("assign", "admin", "7"),
    ):
        result = _invoke(*args)
        assert result.exit_code == 0, result.output
    return database


def test_init_db_creates_file(database: Path) -> None:
    result = _invoke("init-db")

    assert result.exit_code == 0
    assert database.exists()


def test_commands_require_schema(database: Path) -> None:
    result = _invoke("add-role", "admin")

    assert result.exit_code == 2
    assert "error: Missing required tables" in result.output


def test_check_allowed_and_denied(seeded: Path) -> None:
    allowed = _invoke("check", "7", "createPost")
    denied = _invoke("check", "8", "createPost")

    assert allowed.exit_code == 0
    assert allowed.output.strip() == "allowed"
    assert denied.exit_code == 1
    assert denied.output.strip() == "denied"


def test_check_rejects_bad_params(seeded: Path) -> None:
    result = _invoke("check", "7", "createPost", "--params", "[1, 2]")

    assert result.exit_code == 2
    assert "error:" in result.output


def test_domain_errors_exit_with_code_2(seeded: Path) -> None:
    cycle = _invoke("add-child", "createPost", "admin")
    duplicate = _invoke("add-role", "admin")
    unknown = _invoke("assign", "ghost", "7")

    assert cycle.exit_code == 2
    assert "error:" in cycle.output
    assert duplicate.exit_code == 2
    assert unknown.exit_code == 2


def test_tree_prints_json(seeded: Path) -> None:
    result = _invoke("tree")

    assert result.exit_code == 0
    assert json.loads(result.output) == {
        "admin": {
            "title": "Administrators",
            "items": {"author": {"title": "", "items": {}}},
        }
    }


def test_permissions_lists_effective_permissions(seeded: Path) -> None:
    result = _invoke("permissions", "7")

    assert result.exit_code == 0
    assert result.output.split() == ["createPost"]


def test_revoke(seeded: Path) -> None:
    assert _invoke("revoke", "admin", "7").exit_code == 0
    assert _invoke("check", "7", "createPost").exit_code == 1

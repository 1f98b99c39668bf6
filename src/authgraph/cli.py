"""authgraph: CLI for managing the authorization store."""

from __future__ import annotations

import json

import typer

from authgraph.db.engine import assert_tables_exist
from authgraph.errors import AuthGraphError
from authgraph.logging import setup_logging
from authgraph.manager import AuthManager
from authgraph.settings import get_settings

app = typer.Typer(
    add_completion=False,
    invoke_without_command=True,
    help="authgraph CLI (init-db, add-role, add-child, assign, check, tree, ...).",
)


@app.callback()
def _main(ctx: typer.Context) -> None:
    setup_logging(get_settings())
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())


def _fail(message: str) -> typer.Exit:
    typer.echo(f"error: {message}", err=True)
    return typer.Exit(code=2)


def _manager() -> AuthManager:
    manager = AuthManager(get_settings())
    try:
        assert_tables_exist(manager.engine)
    except RuntimeError as exc:
        raise _fail(str(exc)) from exc
    return manager


@app.command(name="init-db", help="Create the authorization tables.")
def init_db() -> None:
    manager = AuthManager(get_settings())
    manager.create_schema()
    typer.echo("ok")


@app.command(name="add-role", help="Create a role.")
def add_role(
    name: str = typer.Argument(..., help="Role name."),
    description: str = typer.Option("", "--description", "-d", help="Role description."),
) -> None:
    manager = _manager()
    try:
        manager.add(manager.create_role(name, description=description))
    except AuthGraphError as exc:
        raise _fail(exc.message) from exc
    typer.echo(name)


@app.command(name="add-permission", help="Create a permission.")
def add_permission(
    name: str = typer.Argument(..., help="Permission name."),
    description: str = typer.Option("", "--description", "-d", help="Permission description."),
) -> None:
    manager = _manager()
    try:
        manager.add(manager.create_permission(name, description=description))
    except AuthGraphError as exc:
        raise _fail(exc.message) from exc
    typer.echo(name)


@app.command(name="add-child", help="Make CHILD a child of PARENT.")
def add_child(
    parent: str = typer.Argument(..., help="Parent item name."),
    child: str = typer.Argument(..., help="Child item name."),
) -> None:
    manager = _manager()
    try:
        manager.add_child(parent, child)
    except AuthGraphError as exc:
        raise _fail(exc.message) from exc
    typer.echo(f"{parent} -> {child}")


@app.command(name="assign", help="Assign ITEM to USER_ID.")
def assign(
    item: str = typer.Argument(..., help="Role or permission name."),
    user_id: str = typer.Argument(..., help="User id."),
) -> None:
    manager = _manager()
    try:
        manager.assign(item, user_id)
    except AuthGraphError as exc:
        raise _fail(exc.message) from exc
    typer.echo(f"{item} assigned to {user_id}")


@app.command(name="revoke", help="Revoke ITEM from USER_ID.")
def revoke(
    item: str = typer.Argument(..., help="Role or permission name."),
    user_id: str = typer.Argument(..., help="User id."),
) -> None:
    manager = _manager()
    if not manager.revoke(item, user_id):
        typer.echo(f"{item} was not assigned to {user_id}")
        return
    typer.echo(f"{item} revoked from {user_id}")


@app.command(name="check", help="Check whether USER_ID holds PERMISSION (exit 0 allowed, 1 denied).")
def check(
    user_id: str = typer.Argument(..., help="User id."),
    permission: str = typer.Argument(..., help="Permission or role name."),
    params: str | None = typer.Option(
        None, "--params", help="JSON object passed to rules."
    ),
) -> None:
    manager = _manager()
    rule_params: dict = {}
    if params:
        try:
            rule_params = json.loads(params)
        except json.JSONDecodeError as exc:
            raise _fail(f"--params is not valid JSON: {exc.msg}") from exc
        if not isinstance(rule_params, dict):
            raise _fail("--params must be a JSON object.")

    if manager.check_access(user_id, permission, rule_params):
        typer.echo("allowed")
        return
    typer.echo("denied")
    raise typer.Exit(code=1)


@app.command(name="tree", help="Print the role hierarchy as JSON.")
def tree(
    root: str | None = typer.Option(None, "--root", help="Start below this item."),
) -> None:
    manager = _manager()
    nodes = manager.build_tree(root)
    payload = {name: node.to_dict() for name, node in nodes.items()}
    typer.echo(json.dumps(payload, indent=2, sort_keys=True))


@app.command(name="permissions", help="List the effective permissions of USER_ID.")
def permissions(
    user_id: str = typer.Argument(..., help="User id."),
) -> None:
    manager = _manager()
    for name in sorted(manager.get_permissions_by_user(user_id)):
        typer.echo(name)


if __name__ == "__main__":
    app()

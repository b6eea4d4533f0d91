# tenant_plexus/cli/db_cli.py
import typer
from typing import Optional
from typing_extensions import Annotated

from .utils_cli import make_api_request, parse_json_option
from ..credentials.models import BackendKind

app = typer.Typer(
    name="db",
    help="Manage store database connections via Admin API.",
    no_args_is_help=True
)


@app.command("register")
def register_database(
    tenant_id: Annotated[str, typer.Argument(help="The store ID the database belongs to.")],
    backend_kind: Annotated[BackendKind, typer.Option("--kind", help="Backend kind of the database.")],
    credentials_json: Annotated[
        str,
        typer.Option(
            "--credentials-json",
            prompt="Credentials JSON",
            hide_input=True,
            help="JSON credential field set, e.g. '{\"host\": \"db\", \"database\": \"shop\", ...}'."
        )
    ],
    skip_test: Annotated[bool, typer.Option("--skip-test", help="Do not test the connection after saving.")] = False
):
    """Register (or replace) the database for a store. Credentials are encrypted server-side."""
    payload = {
        "tenant_id": tenant_id,
        "backend_kind": backend_kind.value,
        "credentials": parse_json_option(credentials_json, "--credentials-json"),
        "test_connection": not skip_test,
    }
    make_api_request("POST", "/admin/tenant-databases/", json_payload=payload, expected_status=201)


@app.command("get")
def get_database(
    tenant_id: Annotated[str, typer.Argument(help="The store ID.")]
):
    """Show non-sensitive connection details for a store."""
    make_api_request("GET", f"/admin/tenant-databases/{tenant_id}")


@app.command("list")
def list_databases(
    active_only: Annotated[bool, typer.Option("--active-only", help="Only list active connections.")] = False,
    skip: Annotated[int, typer.Option("--skip", min=0)] = 0,
    limit: Annotated[int, typer.Option("--limit", min=1, max=100)] = 100
):
    """List registered store databases."""
    params = {"active_only": active_only, "skip": skip, "limit": limit}
    make_api_request("GET", "/admin/tenant-databases/", params_payload=params)


@app.command("test")
def test_database(
    tenant_id: Annotated[str, typer.Argument(help="The store ID.")]
):
    """Test a store's database connection and record the result."""
    result = make_api_request("POST", f"/admin/tenant-databases/{tenant_id}/test")
    if result and not result.get("success"):
        raise typer.Exit(code=1)


@app.command("deactivate")
def deactivate_database(
    tenant_id: Annotated[str, typer.Argument(help="The store ID.")],
    force: Annotated[
        bool,
        typer.Option("--force", prompt="Deactivate this store's database?", help="Confirm deactivation.", show_default=False)
    ] = False
):
    """Deactivate a store's database connection. The stored descriptor is kept."""
    if not force:
        typer.echo("Deactivation cancelled.")
        raise typer.Abort()
    make_api_request(
        "DELETE",
        f"/admin/tenant-databases/{tenant_id}",
        expected_status=204,
        expect_json_response=False
    )
    typer.secho(f"Database for store '{tenant_id}' deactivated.", fg=typer.colors.GREEN)


if __name__ == "__main__":
    app()

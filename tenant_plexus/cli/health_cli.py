# tenant_plexus/cli/health_cli.py
import typer
from typing import Optional
from typing_extensions import Annotated

from .utils_cli import make_api_request

app = typer.Typer(
    name="health",
    help="Diagnose store databases via Admin API.",
    no_args_is_help=True
)

cache_app = typer.Typer(
    name="cache",
    help="Inspect and clear cached store connections on the server.",
    no_args_is_help=True
)


@app.command("check")
def check_health(
    tenant_id: Annotated[str, typer.Argument(help="The store ID to diagnose.")]
):
    """Report a store database's provisioning state and recommended actions."""
    report = make_api_request("GET", f"/admin/tenants/{tenant_id}/health")
    if not report:
        return
    colour = typer.colors.GREEN if report.get("status") == "healthy" else typer.colors.YELLOW
    typer.secho(f"Status: {report.get('status')} - {report.get('message')}", fg=colour)
    for action in report.get("recommended_actions", []):
        typer.echo(f"  -> {action}")


@cache_app.command("list")
def list_cached_connections():
    """List connections currently cached by the server."""
    make_api_request("GET", "/admin/connections/")


@cache_app.command("clear")
def clear_cached_connections(
    tenant_id: Annotated[Optional[str], typer.Argument(help="Store ID; clears every connection when omitted.")] = None
):
    """Close and evict one cached connection, or all of them."""
    endpoint = f"/admin/connections/{tenant_id}" if tenant_id else "/admin/connections/"
    make_api_request("DELETE", endpoint)


if __name__ == "__main__":
    app()

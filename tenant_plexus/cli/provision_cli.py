# tenant_plexus/cli/provision_cli.py
import typer
from typing import Any, Dict, Optional
from typing_extensions import Annotated

from .config import PLEXUS_CLI_PROVISION_TIMEOUT
from .utils_cli import make_api_request, parse_json_option

app = typer.Typer(
    name="provision",
    help="Provision store databases via Admin API.",
    no_args_is_help=True
)


def _options_payload(
    store_name: Optional[str],
    store_slug: Optional[str],
    user_email: Optional[str],
    theme_preset: Optional[str],
    custom_domain: Optional[str],
    settings_json: Optional[str],
    access_token: Optional[str],
    project_ref: Optional[str]
) -> Dict[str, Any]:
    payload: Dict[str, Any] = {}
    for key, value in (
        ("store_name", store_name),
        ("store_slug", store_slug),
        ("user_email", user_email),
        ("theme_preset", theme_preset),
        ("custom_domain", custom_domain),
    ):
        if value is not None:
            payload[key] = value

    settings = parse_json_option(settings_json, "--settings-json")
    if settings is not None:
        payload["settings"] = settings

    if bool(access_token) != bool(project_ref):
        typer.secho("Error: --access-token and --project-ref must be given together.", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    if access_token:
        payload["management"] = {"access_token": access_token, "project_ref": project_ref}
    return payload


def _report(result: Optional[Dict[str, Any]]) -> None:
    if not result:
        return
    if result.get("success"):
        label = "already provisioned" if result.get("already_provisioned") else "provisioned"
        typer.secho(f"Store '{result['tenant_id']}' {label}.", fg=typer.colors.GREEN)
    else:
        typer.secho(f"Provisioning failed: {result.get('message')}", fg=typer.colors.RED)
    for error in result.get("errors", []):
        typer.secho(f"  [{error['step']}] {error['error']}", fg=typer.colors.YELLOW)
    if not result.get("success"):
        raise typer.Exit(code=1)


StoreName = Annotated[Optional[str], typer.Option("--name", help="Store display name.")]
StoreSlug = Annotated[Optional[str], typer.Option("--slug", help="Store slug; derived from the name when omitted.")]
UserEmail = Annotated[Optional[str], typer.Option("--email", help="Email of the store's admin user.")]
ThemePreset = Annotated[Optional[str], typer.Option("--theme-preset", help="Named theme preset.")]
CustomDomain = Annotated[Optional[str], typer.Option("--custom-domain", help="Primary custom domain.")]
SettingsJson = Annotated[Optional[str], typer.Option("--settings-json", help="Store settings JSON object.")]
AccessToken = Annotated[
    Optional[str],
    typer.Option("--access-token", hide_input=True, help="Management API token, when the database is not directly reachable.")
]
ProjectRef = Annotated[Optional[str], typer.Option("--project-ref", help="Management API project reference.")]


@app.command("run")
def provision_store(
    tenant_id: Annotated[str, typer.Argument(help="The store ID to provision.")],
    store_name: StoreName = None,
    store_slug: StoreSlug = None,
    user_email: UserEmail = None,
    theme_preset: ThemePreset = None,
    custom_domain: CustomDomain = None,
    settings_json: SettingsJson = None,
    access_token: AccessToken = None,
    project_ref: ProjectRef = None,
    force: Annotated[bool, typer.Option("--force", help="Run every step even if already provisioned.")] = False
):
    """Create schema, seed data and bootstrap rows for a store database."""
    payload = _options_payload(
        store_name, store_slug, user_email, theme_preset, custom_domain, settings_json, access_token, project_ref
    )
    payload["force"] = force
    _report(make_api_request(
        "POST", f"/admin/tenants/{tenant_id}/provision",
        json_payload=payload, timeout=PLEXUS_CLI_PROVISION_TIMEOUT
    ))


@app.command("rerun")
def reprovision_store(
    tenant_id: Annotated[str, typer.Argument(help="The store ID to reprovision.")],
    store_name: StoreName = None,
    store_slug: StoreSlug = None,
    user_email: UserEmail = None,
    theme_preset: ThemePreset = None,
    custom_domain: CustomDomain = None,
    settings_json: SettingsJson = None
):
    """Clear the cached connection and run every provisioning step again."""
    payload = _options_payload(
        store_name, store_slug, user_email, theme_preset, custom_domain, settings_json, None, None
    )
    _report(make_api_request(
        "POST", f"/admin/tenants/{tenant_id}/reprovision",
        json_payload=payload, timeout=PLEXUS_CLI_PROVISION_TIMEOUT
    ))


@app.command("rename")
def rename_store(
    tenant_id: Annotated[str, typer.Argument(help="The store ID.")],
    name: Annotated[str, typer.Argument(help="New store name.")]
):
    """Rename a store in its own database and in the platform registry."""
    make_api_request("PUT", f"/admin/tenants/{tenant_id}/store-name", json_payload={"name": name})


if __name__ == "__main__":
    app()

# tenant_plexus/cli/admin_cli.py
import typer
from . import db_cli
from . import health_cli
from . import provision_cli

# Admin commands call the running server's admin API
app = typer.Typer(
    name="admin",
    help="Tenant Plexus Administrative Commands.",
    no_args_is_help=True
)

app.add_typer(db_cli.app, name="db")
app.add_typer(provision_cli.app, name="provision")
app.add_typer(health_cli.app, name="health")
app.add_typer(health_cli.cache_app, name="cache")


@app.callback()
def admin_callback():
    """
    Tenant Plexus Admin CLI entry point callback.

    Requires ADMIN_API_KEY and, unless the server runs locally on port 8000,
    PLEXUS_CLI_API_BASE_URL in the environment or .env.
    """
    pass


if __name__ == "__main__":
    app()

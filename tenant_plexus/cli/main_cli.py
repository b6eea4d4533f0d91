# tenant_plexus/cli/main_cli.py
import typer
from . import admin_cli
from . import schema_cli

# Main CLI application with help enabled when no arguments are provided
app = typer.Typer(
    name="tenant-plexus",
    help="Tenant Plexus Command Line Interface.",
    no_args_is_help=True
)

app.add_typer(admin_cli.app, name="admin")
app.add_typer(schema_cli.app, name="schema")
app.add_typer(schema_cli.keys_app, name="utils")


@app.callback()
def main_callback():
    """
    Tenant Plexus main CLI application.
    Use 'tenant-plexus admin --help' for commands against a running server.
    """
    pass


def cli_entry_point():
    """Entry point function for console script registration in pyproject.toml"""
    app()


if __name__ == "__main__":
    cli_entry_point()

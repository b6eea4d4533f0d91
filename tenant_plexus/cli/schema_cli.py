# tenant_plexus/cli/schema_cli.py
import typer
from pathlib import Path
from typing import Optional
from typing_extensions import Annotated

from ..provisioning.schema_builder import build_schema_artifacts
from ..utils.security import generate_fernet_key

app = typer.Typer(
    name="schema",
    help="Build the packaged tenant schema scripts (runs locally, no server needed).",
    no_args_is_help=True
)

keys_app = typer.Typer(
    name="utils",
    help="Local helper commands.",
    no_args_is_help=True
)


@app.command("build")
def build_schema(
    source: Annotated[
        Optional[Path],
        typer.Option("--source", exists=True, dir_okay=False, help="Schema source file. Defaults to the packaged tenant_schema.sql.")
    ] = None,
    output_dir: Annotated[
        Optional[Path],
        typer.Option("--output-dir", file_okay=False, help="Output directory. Defaults to the packaged sql/ directory.")
    ] = None,
    unguarded: Annotated[
        bool,
        typer.Option("--unguarded", help="Emit plain ALTER TABLE statements instead of re-runnable blocks.")
    ] = False
):
    """Split the schema source into a tables-only script and a foreign-key script."""
    try:
        model = build_schema_artifacts(source, output_dir, guarded_constraints=not unguarded)
    except (OSError, ValueError) as e:
        typer.secho(f"Error: Could not build schema scripts: {e}", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    typer.secho(
        f"Rendered {len(model.tables)} tables and {len(model.foreign_keys)} foreign keys.",
        fg=typer.colors.GREEN
    )


@keys_app.command("generate-key")
def generate_key():
    """Generate a Fernet key for PLEXUS_ENCRYPTION_KEY."""
    typer.echo("Generated Fernet Key:")
    typer.echo(generate_fernet_key())
    typer.echo("Add this to your .env file as PLEXUS_ENCRYPTION_KEY")


if __name__ == "__main__":
    app()

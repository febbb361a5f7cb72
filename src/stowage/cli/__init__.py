"""CLI commands for Stowage.

Provides command-line interface using Typer:
- stowage purge-unattached: Delete blobs no attachment references

Usage:
    stowage --help
    stowage purge-unattached --days 7
    stowage purge-unattached --hours 1 --dry-run
"""

import typer

from stowage.cli.purge_cmd import app as purge_app

# Main CLI application
app = typer.Typer(
    name="stowage",
    help="Stowage: blob storage maintenance",
    no_args_is_help=True,
)

app.add_typer(purge_app, name="purge-unattached")


@app.callback()
def callback() -> None:
    """Stowage: blob storage maintenance."""
    pass


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()

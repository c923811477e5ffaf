"""Commit commands for zvpg CLI.

A commit is a snapshot of the primary data directory; these commands use the
vocabulary of version control for the snapshot operations.
"""

import typer
from rich.console import Console

from zvpg.cli.commands.snapshot import (
    create_snapshot,
    delete_snapshot,
    list_snapshots,
    show_snapshot,
)

app = typer.Typer(help="Commit (snapshot) commands", invoke_without_command=True)
console = Console()


@app.callback()
def callback(ctx: typer.Context):
    """Show help when no subcommand is provided."""
    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(0)


@app.command()
def create(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Name of the commit"),
    message: str = typer.Option("Manual commit", "--message", "-m", help="Commit message"),
):
    """Commit the current state of the primary data directory."""
    create_snapshot(ctx, name, message)


@app.command()
def remove(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Name of the commit"),
    force: bool = typer.Option(
        False, "--force", "-f", help="Remove even if branches depend on it"
    ),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
):
    """Remove a commit."""
    delete_snapshot(ctx, name, force, yes)


@app.command(name="list")
def list_command(
    ctx: typer.Context,
    format: str = typer.Option("table", "--format", "-f", help="Output format (table, json)"),
):
    """List all commits."""
    list_snapshots(ctx, format)


@app.command()
def show(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Name of the commit"),
    format: str = typer.Option("table", "--format", "-f", help="Output format (table, json)"),
):
    """Show a commit."""
    show_snapshot(ctx, name, format)

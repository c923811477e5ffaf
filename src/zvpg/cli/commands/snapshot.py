"""Snapshot management commands for zvpg CLI."""

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table as RichTable

from zvpg.cli.utils import check_format, confirm_or_cancel, fail, get_managers
from zvpg.core.errors import HasDependentsError, ZvpgError
from zvpg.utils.formatting import format_timestamp

app = typer.Typer(help="Snapshot management commands", invoke_without_command=True)
console = Console()


@app.callback()
def callback(ctx: typer.Context):
    """Show help when no subcommand is provided."""
    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(0)


def create_snapshot(ctx: typer.Context, name: str, message: str) -> None:
    managers = get_managers(ctx)
    try:
        snapshot = managers.snapshots.create_snapshot(name, message)
    except ZvpgError as e:
        fail(e)

    console.print(f"[green]✅ Created snapshot '{snapshot.full_name}'[/green]")
    console.print(f"   Message: {escape(snapshot.message or '-')}")


def delete_snapshot(ctx: typer.Context, name: str, force: bool, yes: bool) -> None:
    managers = get_managers(ctx)
    confirm_or_cancel(f"Are you sure you want to delete snapshot '{name}'?", yes)

    try:
        managers.snapshots.delete_snapshot(name, force=force)
    except HasDependentsError as e:
        console.print(f"[red]❌ Snapshot '{name}' has dependent clones:[/red]")
        for dependent in e.dependents:
            console.print(f"   - {dependent}")
        console.print("Delete the dependent branches first or use --force.")
        raise typer.Exit(1)
    except ZvpgError as e:
        fail(e)

    console.print(f"[green]✅ Deleted snapshot '{name}'[/green]")


def list_snapshots(ctx: typer.Context, format: str) -> None:
    check_format(format)
    managers = get_managers(ctx)
    try:
        snapshots = managers.snapshots.list_snapshots()
    except ZvpgError as e:
        fail(e)

    if format == "json":
        console.print_json(data=[s.model_dump(mode="json") for s in snapshots])
        return

    if not snapshots:
        console.print("[yellow]No snapshots found[/yellow]")
        return

    table = RichTable(title="Snapshots")
    table.add_column("Name", style="cyan")
    table.add_column("Dataset", style="blue")
    table.add_column("Created", style="green")
    table.add_column("Used", justify="right")
    table.add_column("Refer", justify="right")
    table.add_column("Clones", justify="right")
    table.add_column("Message")

    for snapshot in snapshots:
        table.add_row(
            snapshot.name,
            snapshot.dataset,
            format_timestamp(snapshot.created or snapshot.creation),
            snapshot.used,
            snapshot.referenced,
            str(len(snapshot.clones)),
            escape(snapshot.message or ""),
        )

    console.print(table)


def show_snapshot(ctx: typer.Context, name: str, format: str) -> None:
    check_format(format)
    managers = get_managers(ctx)
    try:
        snapshot = managers.snapshots.get_snapshot_info(name)
    except ZvpgError as e:
        fail(e)

    if format == "json":
        console.print_json(data=snapshot.model_dump(mode="json"))
        return

    console.print(f"\n[bold]Snapshot: {snapshot.full_name}[/bold]")
    console.print(f"Dataset: {snapshot.dataset}")
    if snapshot.branch:
        console.print(f"Branch: {snapshot.branch}")
    console.print(f"Created: {format_timestamp(snapshot.created or snapshot.creation)}")
    console.print(f"Message: {escape(snapshot.message or '-')}")
    console.print(f"Used: {snapshot.used or '-'}")
    console.print(f"Referenced: {snapshot.referenced or '-'}")
    console.print(f"Compression: {snapshot.compress_ratio or '-'}")
    if snapshot.clones:
        console.print("Clones:")
        for clone in snapshot.clones:
            console.print(f"  - {clone}")
    else:
        console.print("Clones: none")


@app.command()
def create(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Name of the snapshot"),
    message: str = typer.Option(
        "Manual snapshot", "--message", "-m", help="Description stored with the snapshot"
    ),
):
    """Snapshot the primary data directory."""
    create_snapshot(ctx, name, message)


@app.command()
def delete(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Snapshot name (bare or dataset@name)"),
    force: bool = typer.Option(
        False, "--force", "-f", help="Delete even if clones depend on it"
    ),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
):
    """Delete a snapshot."""
    delete_snapshot(ctx, name, force, yes)


@app.command(name="list")
def list_command(
    ctx: typer.Context,
    format: str = typer.Option("table", "--format", "-f", help="Output format (table, json)"),
):
    """List all snapshots in the pool."""
    list_snapshots(ctx, format)


@app.command()
def info(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Snapshot name (bare or dataset@name)"),
    format: str = typer.Option("table", "--format", "-f", help="Output format (table, json)"),
):
    """Show information about a snapshot."""
    show_snapshot(ctx, name, format)

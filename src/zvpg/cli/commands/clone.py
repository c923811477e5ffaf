"""Clone inspection commands for zvpg CLI.

Clones are created and deleted through ``zvpg branch``; these commands list
every clone in the pool, including ones made outside zvpg.
"""

import typer
from rich.console import Console
from rich.table import Table as RichTable

from zvpg.cli.utils import check_format, fail, get_managers
from zvpg.core.errors import ZvpgError
from zvpg.utils.formatting import format_timestamp

app = typer.Typer(help="Clone inspection commands", invoke_without_command=True)
console = Console()


@app.callback()
def callback(ctx: typer.Context):
    """Show help when no subcommand is provided."""
    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(0)


@app.command(name="list")
def list_clones(
    ctx: typer.Context,
    format: str = typer.Option("table", "--format", "-f", help="Output format (table, json)"),
):
    """List every dataset in the pool cloned from a snapshot."""
    check_format(format)
    managers = get_managers(ctx)
    try:
        clones = managers.snapshots.list_clones()
    except ZvpgError as e:
        fail(e)

    if format == "json":
        console.print_json(data=[c.model_dump(mode="json") for c in clones])
        return

    if not clones:
        console.print("[yellow]No clones found[/yellow]")
        return

    table = RichTable(title="Clones")
    table.add_column("Name", style="cyan")
    table.add_column("Origin", style="blue")
    table.add_column("Branch")
    table.add_column("Port", justify="right")
    table.add_column("Used", justify="right")
    table.add_column("Created", style="green")

    for clone in clones:
        table.add_row(
            clone.name,
            clone.origin,
            clone.branch or "-",
            str(clone.port) if clone.port else "-",
            clone.used,
            format_timestamp(clone.creation),
        )

    console.print(table)


@app.command()
def info(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Dataset path, relative to the pool"),
    format: str = typer.Option("table", "--format", "-f", help="Output format (table, json)"),
):
    """Show information about a clone."""
    check_format(format)
    managers = get_managers(ctx)
    try:
        clone = managers.snapshots.get_clone_info(name)
    except ZvpgError as e:
        fail(e)

    if format == "json":
        console.print_json(data=clone.model_dump(mode="json"))
        return

    console.print(f"\n[bold]Clone: {clone.dataset}[/bold]")
    console.print(f"Origin: {clone.origin}")
    console.print(f"Branch: {clone.branch or '-'}")
    console.print(f"Port: {clone.port or '-'}")
    console.print(f"Used: {clone.used or '-'}")
    console.print(f"Referenced: {clone.referenced or '-'}")
    console.print(f"Created: {format_timestamp(clone.creation)}")

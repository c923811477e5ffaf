"""Branch management commands for zvpg CLI."""

from typing import Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table as RichTable

from zvpg.cli.utils import check_format, confirm_or_cancel, fail, get_managers
from zvpg.config import ZvpgConfig
from zvpg.core.errors import HasDependentsError, PartialFailureError, ZvpgError
from zvpg.models import BranchInfo, InstanceStatus
from zvpg.utils.formatting import format_timestamp

app = typer.Typer(help="Branch management commands", invoke_without_command=True)
console = Console()

STATUS_STYLES = {
    InstanceStatus.RUNNING.value: "green",
    InstanceStatus.STOPPED.value: "red",
    InstanceStatus.UNKNOWN.value: "yellow",
}


@app.callback()
def callback(ctx: typer.Context):
    """Show help when no subcommand is provided."""
    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(0)


def connection_string(config: ZvpgConfig, branch: BranchInfo) -> Optional[str]:
    if branch.port is None:
        return None
    return (
        f"postgresql://{config.postgres_user}@{config.branch_access_host}:"
        f"{branch.port}/{config.postgres_db}"
    )


def _status_text(status: str) -> str:
    style = STATUS_STYLES.get(status, "white")
    return f"[{style}]{status}[/{style}]"


def print_branch(config: ZvpgConfig, branch: BranchInfo) -> None:
    console.print(f"\n[bold]Branch: {branch.name}[/bold]")
    console.print(f"Dataset: {branch.dataset}")
    console.print(f"Mount: {branch.mount}")
    console.print(f"Parent branch: {branch.parent_branch or '-'}")
    console.print(f"Parent snapshot: {branch.parent_snapshot or '-'}")
    console.print(f"Created: {format_timestamp(branch.created or branch.creation)}")
    console.print(f"Used: {branch.used or '-'}  Referenced: {branch.referenced or '-'}")
    console.print(f"Status: {_status_text(branch.status)}")
    if branch.port is not None:
        console.print(f"Port: {branch.port}")
        console.print(f"Connection: {connection_string(config, branch)}")
    if branch.clones:
        console.print("Clones:")
        for clone in branch.clones:
            console.print(f"  - {clone}")


@app.command(name="list")
def list_branches(
    ctx: typer.Context,
    format: str = typer.Option("table", "--format", "-f", help="Output format (table, json)"),
):
    """List all branches."""
    check_format(format)
    managers = get_managers(ctx)
    try:
        branches = managers.branches.list_branches()
    except ZvpgError as e:
        fail(e)

    if format == "json":
        console.print_json(data=[b.model_dump(mode="json") for b in branches])
        return

    if not branches:
        console.print("[yellow]No branches found[/yellow]")
        return

    table = RichTable(title="Branches")
    table.add_column("Name", style="cyan")
    table.add_column("Parent", style="yellow")
    table.add_column("Snapshot", style="blue")
    table.add_column("Status")
    table.add_column("Port", justify="right")
    table.add_column("Used", justify="right")
    table.add_column("Created", style="green")

    for branch in branches:
        table.add_row(
            branch.name,
            branch.parent_branch or "-",
            branch.parent_snapshot or "-",
            _status_text(branch.status),
            str(branch.port) if branch.port is not None else "-",
            branch.used,
            format_timestamp(branch.created or branch.creation),
        )

    console.print(table)


@app.command()
def create(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Name of the new branch"),
    port: Optional[int] = typer.Option(
        None, "--port", "-p", help="Port for the branch instance (default: first free port)"
    ),
    snapshot: Optional[str] = typer.Option(
        None, "--snapshot", "-s", help="Source snapshot (default: latest)"
    ),
    parent: Optional[str] = typer.Option(
        None, "--parent", help="Parent branch label (default from config)"
    ),
    from_branch: Optional[str] = typer.Option(
        None, "--from-branch", help="Clone from the latest snapshot of this branch"
    ),
):
    """Create a branch and start its instance."""
    managers = get_managers(ctx)
    try:
        branch = managers.branches.create_branch(
            name,
            port=port,
            source_snapshot=snapshot,
            parent_branch=parent,
            from_branch=from_branch,
        )
    except PartialFailureError as e:
        if e.result is not None:
            console.print(f"[green]✅ Created branch '{name}'[/green]")
            print_branch(managers.config, e.result)
        fail(e)
    except ZvpgError as e:
        fail(e)

    console.print(f"[green]✅ Created branch '{name}' from {branch.parent_snapshot}[/green]")
    console.print(f"   Port: {branch.port}")
    console.print(f"   Connection: {connection_string(managers.config, branch)}")


@app.command()
def delete(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Name of the branch to delete"),
    force: bool = typer.Option(
        False, "--force", "-f", help="Delete even if other datasets depend on it"
    ),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
):
    """Delete a branch, stopping its instance first."""
    managers = get_managers(ctx)
    confirm_or_cancel(f"Are you sure you want to delete branch '{name}'?", yes)

    try:
        managers.branches.delete_branch(name, force=force)
    except HasDependentsError as e:
        console.print(f"[red]❌ Branch '{name}' has dependent clones:[/red]")
        for dependent in e.dependents:
            console.print(f"   - {dependent}")
        console.print("Delete them first or use --force.")
        raise typer.Exit(1)
    except ZvpgError as e:
        fail(e)

    console.print(f"[green]✅ Deleted branch '{name}'[/green]")


@app.command()
def info(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Branch name"),
    format: str = typer.Option("table", "--format", "-f", help="Output format (table, json)"),
):
    """Show information about a branch."""
    check_format(format)
    managers = get_managers(ctx)
    try:
        branch = managers.branches.get_branch_info(name)
    except ZvpgError as e:
        fail(e)

    if format == "json":
        console.print_json(data=branch.model_dump(mode="json"))
        return

    print_branch(managers.config, branch)


@app.command()
def snapshot(
    ctx: typer.Context,
    branch: str = typer.Argument(..., help="Branch to snapshot"),
    name: str = typer.Argument(..., help="Name of the snapshot"),
    message: str = typer.Option(
        "Branch snapshot", "--message", "-m", help="Description stored with the snapshot"
    ),
):
    """Snapshot the current state of a branch."""
    managers = get_managers(ctx)
    try:
        created = managers.branches.create_branch_snapshot(branch, name, message)
    except ZvpgError as e:
        fail(e)

    console.print(f"[green]✅ Created snapshot '{created.full_name}'[/green]")
    console.print(f"   Message: {escape(created.message or '-')}")


@app.command()
def start(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Branch name"),
    port: Optional[int] = typer.Option(
        None, "--port", "-p", help="Port for the instance (default: first free port)"
    ),
):
    """Start the instance of a branch."""
    managers = get_managers(ctx)
    try:
        branch = managers.branches.start_instance(name, port=port)
    except ZvpgError as e:
        fail(e)

    console.print(f"[green]✅ Started branch '{name}' on port {branch.port}[/green]")
    console.print(f"   Connection: {connection_string(managers.config, branch)}")


@app.command()
def stop(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Branch name"),
):
    """Stop the instance of a branch."""
    managers = get_managers(ctx)
    try:
        stopped = managers.branches.stop_instance(name)
    except ZvpgError as e:
        fail(e)

    if stopped:
        console.print(f"[green]✅ Stopped branch '{name}'[/green]")
    else:
        console.print(f"[yellow]Branch '{name}' has no running instance[/yellow]")

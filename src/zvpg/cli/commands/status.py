"""System status command for zvpg CLI."""

import typer
from rich.console import Console
from rich.table import Table as RichTable

from zvpg.cli.utils import check_format, fail, get_managers
from zvpg.core.errors import ZvpgError
from zvpg.models import SystemStatus
from zvpg.utils.formatting import format_timestamp

console = Console()


def show_status(ctx: typer.Context, format: str) -> None:
    check_format(format)
    managers = get_managers(ctx)
    try:
        status = managers.status.get_system_status()
    except ZvpgError as e:
        fail(e)

    if format == "json":
        data = status.model_dump(mode="json")
        data["healthy"] = status.healthy
        console.print_json(data=data)
        return

    print_status(status)


def _running_text(value: bool) -> str:
    return "[green]running[/green]" if value else "[red]stopped[/red]"


def print_status(status: SystemStatus) -> None:
    pool = status.pool
    health_style = "green" if pool.health.upper() == "ONLINE" else "red"
    console.print("\n[bold]ZFS Pool[/bold]")
    console.print(f"  Name: {pool.name}")
    console.print(f"  Health: [{health_style}]{pool.health}[/{health_style}]")
    console.print(f"  Size: {pool.size}  Used: {pool.used}  Available: {pool.available}")

    postgres = status.postgres
    console.print("\n[bold]PostgreSQL[/bold]")
    console.print(f"  Version: {postgres.version}")
    console.print(f"  Main instance (port {postgres.main_port}): {_running_text(postgres.running)}")

    snapshots = status.snapshots
    console.print("\n[bold]Snapshots[/bold]")
    console.print(f"  Total: {snapshots.total}  Size: {snapshots.total_size}")
    for detail in snapshots.details[-5:]:
        console.print(f"  - {detail.name} ({detail.size}, {format_timestamp(detail.created)})")

    branches = status.branches
    console.print("\n[bold]Branches[/bold]")
    console.print(
        f"  Total: {branches.total}  Active: {branches.active}  Inactive: {branches.inactive}"
    )
    if branches.details:
        table = RichTable()
        table.add_column("Name", style="cyan")
        table.add_column("Status")
        table.add_column("Port", justify="right")
        table.add_column("Size", justify="right")
        for detail in branches.details:
            table.add_row(
                detail.name,
                detail.status,
                str(detail.port) if detail.port is not None else "-",
                detail.size,
            )
        console.print(table)
    if branches.unexpected_inactive:
        console.print(
            f"  [yellow]⚠️  {branches.unexpected_inactive} branch(es) have a recorded port "
            "but no running instance[/yellow]"
        )

    system = status.system
    console.print("\n[bold]System[/bold]")
    console.print(f"  Hostname: {system.hostname}")
    console.print(f"  Uptime: {system.uptime}")
    console.print(f"  Load average: {system.load_average}")
    console.print(f"  Memory: {system.memory_usage}")
    console.print(f"  Disk: {system.disk_usage}")

    if status.healthy:
        console.print("\n[green]✅ System is healthy[/green]")
    else:
        console.print("\n[yellow]⚠️  System needs attention[/yellow]")

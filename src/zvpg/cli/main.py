"""Main CLI entry point for zvpg."""

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console

from zvpg.cli.commands import branch, clone, commit, snapshot
from zvpg.config import Config

app = typer.Typer(
    name="zvpg",
    help="zvpg - Git-like branches and snapshots for PostgreSQL on ZFS",
    add_completion=False,
    invoke_without_command=True,
)
console = Console()


@app.callback()
def main(
    ctx: typer.Context,
    config: Optional[Path] = typer.Option(
        None, "--config", "-c", help="Config file (default: $ZVPG_CONFIG or ~/.zvpg/config.toml)"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """
    zvpg - Git-like branches and snapshots for PostgreSQL on ZFS
    """
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config
    ctx.obj["verbose"] = verbose

    if ctx.invoked_subcommand is None:
        # No subcommand was invoked, show help
        print(ctx.get_help())
        raise typer.Exit(0)


# Add command groups
app.add_typer(snapshot.app, name="snapshot", help="Snapshot management commands")
app.add_typer(commit.app, name="commit", help="Commit (snapshot) commands")
app.add_typer(branch.app, name="branch", help="Branch management commands")
app.add_typer(clone.app, name="clone", help="Clone inspection commands")


@app.command()
def status(
    ctx: typer.Context,
    format: str = typer.Option("table", "--format", "-f", help="Output format (table, json)"),
):
    """Show pool, PostgreSQL, snapshot, branch and host status."""
    from zvpg.cli.commands.status import show_status

    show_status(ctx, format)


@app.command()
def init(
    ctx: typer.Context,
    pool: Optional[str] = typer.Option(None, "--pool", help="ZFS pool name"),
    mount_dir: Optional[str] = typer.Option(None, "--mount-dir", help="Mount root directory"),
    force: bool = typer.Option(False, "--force", help="Overwrite an existing config file"),
    config_only: bool = typer.Option(
        False, "--config-only", help="Only write the config file, do not touch ZFS"
    ),
):
    """Write a config file and create the datasets zvpg needs."""
    from zvpg.cli.utils import fail, get_managers
    from zvpg.core.errors import ZvpgError

    loader = Config(ctx.obj.get("config_path"))
    overrides = {"zfs_pool": pool, "mount_dir": mount_dir}
    overrides = {key: value for key, value in overrides.items() if value is not None}

    try:
        loader.init(force=force, **overrides)
        console.print(f"[green]✅ Wrote config to {loader.config_path}[/green]")
    except FileExistsError:
        console.print(f"[yellow]Using existing config at {loader.config_path}[/yellow]")

    if config_only:
        return

    managers = get_managers(ctx)
    try:
        created = managers.initializer.initialize()
    except ZvpgError as e:
        fail(e)

    for dataset in created:
        console.print(f"[green]✅ Created dataset {dataset}[/green]")
    console.print("[green]✅ zvpg environment initialized[/green]")


@app.command()
def check(ctx: typer.Context):
    """Check that the pool, datasets and tools zvpg needs are present."""
    from zvpg.cli.utils import get_managers

    managers = get_managers(ctx)
    issues = managers.initializer.check_environment()
    if not issues:
        console.print("[green]✅ Environment check passed[/green]")
        return

    console.print(f"[red]❌ Environment check found {len(issues)} issue(s):[/red]")
    for issue in issues:
        console.print(f"   - {issue}")
    raise typer.Exit(1)


@app.command()
def version():
    """Show zvpg version."""
    from zvpg import __version__

    typer.echo(f"zvpg version {__version__}")


if __name__ == "__main__":
    app()

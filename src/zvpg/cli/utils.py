"""Utility functions for CLI commands."""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import NoReturn, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape

from zvpg.config import Config, ZvpgConfig
from zvpg.core.errors import PartialFailureError
from zvpg.core.initializer import EnvironmentInitializer
from zvpg.infrastructure import (
    DatasetBackend,
    InstanceRuntime,
    ZfsBackend,
    create_runtime,
    make_port_probe,
)
from zvpg.infrastructure.port_probe import PortProbe
from zvpg.managers import (
    BranchManager,
    InstanceManager,
    PortAllocator,
    SnapshotManager,
    StatusManager,
)

console = Console()


def setup_logging(level: str) -> None:
    """Send zvpg log records to stderr through rich."""
    logger = logging.getLogger("zvpg")
    for handler in list(logger.handlers):
        if isinstance(handler, RichHandler):
            logger.removeHandler(handler)

    handler = RichHandler(
        console=Console(stderr=True),
        rich_tracebacks=True,
        show_path=False,
    )
    handler.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(handler)
    logger.setLevel(level)


def get_config(ctx: typer.Context) -> ZvpgConfig:
    """Load the configuration selected by the global options.

    The loaded config is cached on the root context so every command of one
    invocation sees the same value.
    """
    root = ctx.find_root()
    root.ensure_object(dict)
    if "config" in root.obj:
        return root.obj["config"]

    config_path: Optional[Path] = root.obj.get("config_path")
    try:
        config = Config(config_path).load()
    except (OSError, ValueError) as e:
        console.print(f"[red]❌ Invalid configuration: {escape(str(e))}[/red]")
        raise typer.Exit(1)

    setup_logging("DEBUG" if root.obj.get("verbose") else config.log_level)
    root.obj["config"] = config
    return config


def create_backend(config: ZvpgConfig) -> DatasetBackend:
    return ZfsBackend(config)


def create_instance_runtime(config: ZvpgConfig) -> InstanceRuntime:
    return create_runtime(config)


def create_port_probe(config: ZvpgConfig) -> PortProbe:
    return make_port_probe(config.branch_access_host)


@dataclass
class Managers:
    """Everything a command needs, wired from one config."""

    config: ZvpgConfig
    backend: DatasetBackend
    runtime: InstanceRuntime
    snapshots: SnapshotManager
    branches: BranchManager
    status: StatusManager
    initializer: EnvironmentInitializer


def get_managers(ctx: typer.Context) -> Managers:
    """Build the managers for the current invocation."""
    config = get_config(ctx)
    backend = create_backend(config)
    runtime = create_instance_runtime(config)
    probe = create_port_probe(config)

    ports = PortAllocator(config.branch_port_start, config.branch_port_end, probe)
    instances = InstanceManager(config, runtime)
    snapshots = SnapshotManager(config, backend)
    branches = BranchManager(config, backend, instances, ports, snapshots=snapshots)

    return Managers(
        config=config,
        backend=backend,
        runtime=runtime,
        snapshots=snapshots,
        branches=branches,
        status=StatusManager(config, backend, runtime, branches, port_probe=probe),
        initializer=EnvironmentInitializer(config, backend, runtime),
    )


def fail(error: Exception) -> NoReturn:
    """Report a failed operation and exit with status 1."""
    if isinstance(error, PartialFailureError):
        console.print(f"[yellow]⚠️  {escape(str(error))}[/yellow]")
    else:
        console.print(f"[red]❌ {escape(str(error))}[/red]")
    raise typer.Exit(1)


def confirm_or_cancel(message: str, yes: bool) -> None:
    """Ask for confirmation unless ``--yes`` was given."""
    if yes:
        return
    if not typer.confirm(message):
        console.print("[yellow]Cancelled[/yellow]")
        raise typer.Exit(0)


def check_format(format: str) -> str:
    if format not in ("table", "json"):
        console.print(f"[red]❌ Unknown format '{escape(format)}' (use table or json)[/red]")
        raise typer.Exit(1)
    return format

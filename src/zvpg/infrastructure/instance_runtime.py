"""Database instance runtimes.

An instance is a PostgreSQL server serving one branch's mounted data
directory on one port. It runs either as a local ``pg_ctl`` managed process
or as a docker/podman container.
"""

import logging
import re
import shutil
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional, Tuple

from zvpg.config import ZvpgConfig
from zvpg.core.errors import BackendError, PortBindError
from zvpg.infrastructure.command import Runner, run_command

logger = logging.getLogger(__name__)

CONTAINER_PGDATA = "/var/lib/postgresql/data"
CONTAINER_CONFIG_DIR = "/etc/postgresql"

# Config file name -> server setting that points at it
CONFIG_FILE_SETTINGS = {
    "postgresql.conf": "config_file",
    "pg_hba.conf": "hba_file",
    "pg_ident.conf": "ident_file",
}

_BIND_FAILURE_MARKERS = (
    "address already in use",
    "port is already allocated",
    "could not bind",
    "bind for",
)


class StopMode(str, Enum):
    """How to shut an instance down."""

    GRACEFUL = "graceful"
    IMMEDIATE = "immediate"


@dataclass
class InstanceSpec:
    """Everything a runtime needs to start an instance for a branch."""

    name: str
    mount_path: Path
    port: int
    host: str = "127.0.0.1"
    socket_dir: Optional[Path] = None
    user: str = "postgres"
    password: str = "postgres"
    database: str = "postgres"
    config_files: List[Path] = field(default_factory=list)

    def __post_init__(self):
        """Ensure paths are Path objects."""
        self.mount_path = Path(self.mount_path)
        if self.socket_dir is not None:
            self.socket_dir = Path(self.socket_dir)
        self.config_files = [Path(p) for p in self.config_files]


def _is_bind_failure(error: BackendError) -> bool:
    return _mentions_bind_failure(f"{error} {error.stderr}")


def _mentions_bind_failure(text: str) -> bool:
    text = text.lower()
    return any(marker in text for marker in _BIND_FAILURE_MARKERS)


def _file_size(path: Path) -> int:
    try:
        return path.stat().st_size
    except OSError:
        return 0


def _read_from(path: Path, offset: int) -> str:
    """Read what was appended to a log file after ``offset``."""
    try:
        with open(path, "rb") as f:
            f.seek(offset)
            return f.read().decode(errors="replace").strip()
    except OSError as e:
        logger.debug(f"Could not read {path}: {e}")
        return ""


def config_file_settings(
    config_files: List[Path], target_dir: Optional[str] = None
) -> List[Tuple[str, str]]:
    """Map known config files onto the server settings that load them."""
    settings = []
    for path in config_files:
        setting = CONFIG_FILE_SETTINGS.get(path.name)
        if setting is None:
            logger.warning(f"Ignoring unsupported config file: {path}")
            continue
        location = f"{target_dir}/{path.name}" if target_dir else str(path)
        settings.append((setting, location))
    return settings


class InstanceRuntime(ABC):
    """Starts, stops and probes database instances."""

    kind = "abstract"

    @abstractmethod
    def start(self, spec: InstanceSpec) -> str:
        """Launch an instance and return its identifier.

        Raises:
            PortBindError: If the port was taken between probe and bind
            BackendError: For any other launch failure
        """

    @abstractmethod
    def stop(
        self,
        instance_id: str,
        mode: StopMode = StopMode.GRACEFUL,
        timeout: Optional[int] = None,
    ) -> None:
        """Shut an instance down."""

    @abstractmethod
    def is_live(self, instance_id: str) -> bool:
        """Check whether the instance process/container is running."""

    @abstractmethod
    def is_ready(self, instance_id: str, port: int) -> bool:
        """Check whether the instance accepts connections."""

    @abstractmethod
    def version(self) -> str:
        """Describe the runtime / server version."""

    @abstractmethod
    def available(self) -> bool:
        """Check whether the runtime tooling is installed."""


class ProcessRuntime(InstanceRuntime):
    """Instances managed by ``pg_ctl`` on the host. The instance id is the data directory."""

    kind = "process"

    def __init__(self, config: ZvpgConfig, runner: Optional[Runner] = None):
        self.config = config
        self.runner = runner
        self.bin_path = Path(config.postgres_bin_path)

    def _tool(self, name: str) -> str:
        return str(self.bin_path / name)

    def _command(self, *args: str) -> List[str]:
        prefix = []
        if self.config.instance_os_user:
            prefix = ["sudo", "-n", "-u", self.config.instance_os_user]
        return [*prefix, *args]

    def start(self, spec: InstanceSpec) -> str:
        settings = [
            ("port", str(spec.port)),
            ("listen_addresses", spec.host),
        ]
        if spec.socket_dir is not None:
            settings.append(("unix_socket_directories", str(spec.socket_dir)))
        settings.extend(config_file_settings(spec.config_files))

        options = " ".join(f"-c {key}={value}" for key, value in settings)
        log_file = spec.mount_path / "postgresql.log"
        args = self._command(
            self._tool("pg_ctl"), "start",
            "-D", str(spec.mount_path),
            "-l", str(log_file),
            "-w",
            "-o", options,
        )

        # pg_ctl only says "could not start server"; the reason is in the log
        log_offset = _file_size(log_file)

        logger.info(f"Starting PostgreSQL for '{spec.name}' on port {spec.port}")
        try:
            run_command(args, runner=self.runner)
        except BackendError as e:
            server_log = _read_from(log_file, log_offset)
            if _is_bind_failure(e) or _mentions_bind_failure(server_log):
                raise PortBindError(
                    spec.port, f"Port {spec.port} became unavailable: {e}",
                    command=e.command, stderr="\n".join(filter(None, [e.stderr, server_log])),
                ) from e
            raise

        return str(spec.mount_path)

    def stop(
        self,
        instance_id: str,
        mode: StopMode = StopMode.GRACEFUL,
        timeout: Optional[int] = None,
    ) -> None:
        pg_mode = "fast" if StopMode(mode) == StopMode.GRACEFUL else "immediate"
        args = self._command(
            self._tool("pg_ctl"), "stop", "-D", instance_id, "-m", pg_mode,
        )
        if timeout is not None:
            args += ["-t", str(timeout)]
        run_command(args, runner=self.runner)

    def is_live(self, instance_id: str) -> bool:
        # pg_ctl status: 0 running, 3 not running, 4 no accessible data directory
        result = run_command(
            self._command(self._tool("pg_ctl"), "status", "-D", instance_id),
            runner=self.runner,
            check=False,
        )
        return result.returncode == 0

    def is_ready(self, instance_id: str, port: int) -> bool:
        # pg_isready answers for whatever server holds the port
        if not self.is_live(instance_id):
            return False
        result = run_command(
            [self._tool("pg_isready"), "-q", "-h", self.config.branch_access_host, "-p", str(port)],
            runner=self.runner,
            check=False,
        )
        return result.returncode == 0

    def version(self) -> str:
        result = run_command([self._tool("pg_ctl"), "--version"], runner=self.runner)
        return (result.stdout or "").strip() or "Unknown"

    def available(self) -> bool:
        return Path(self._tool("pg_ctl")).exists() or shutil.which("pg_ctl") is not None


def container_name(branch: str, port: int) -> str:
    """Derive a container name for a branch instance."""
    safe = re.sub(r"[^a-zA-Z0-9_.-]", "-", branch)
    return f"zvpg_{safe}_{port}"


class ContainerRuntime(InstanceRuntime):
    """Instances running in docker or podman containers. The instance id is the container name."""

    kind = "container"

    def __init__(self, config: ZvpgConfig, runner: Optional[Runner] = None):
        self.config = config
        self.runner = runner
        self.bin = config.container_runtime

    def start(self, spec: InstanceSpec) -> str:
        name = container_name(spec.name, spec.port)
        args = [
            self.bin, "run", "-d",
            "--name", name,
            "-p", f"{spec.host}:{spec.port}:5432",
            "-v", f"{spec.mount_path}:{CONTAINER_PGDATA}",
            "-e", f"POSTGRES_USER={spec.user}",
            "-e", f"POSTGRES_PASSWORD={spec.password}",
            "-e", f"POSTGRES_DB={spec.database}",
        ]
        for path in spec.config_files:
            if path.name in CONFIG_FILE_SETTINGS:
                args += ["-v", f"{path}:{CONTAINER_CONFIG_DIR}/{path.name}:ro"]

        args += [self.config.postgres_image, "postgres", "-c", "listen_addresses=*"]
        for key, value in config_file_settings(spec.config_files, CONTAINER_CONFIG_DIR):
            args += ["-c", f"{key}={value}"]

        logger.info(f"Starting container {name} for '{spec.name}' on port {spec.port}")
        try:
            run_command(args, runner=self.runner)
        except BackendError as e:
            # A failed "run -d" can leave a created container behind
            run_command([self.bin, "rm", "-f", name], runner=self.runner, check=False)
            if _is_bind_failure(e):
                raise PortBindError(
                    spec.port, f"Port {spec.port} became unavailable: {e}",
                    command=e.command, stderr=e.stderr,
                ) from e
            raise

        return name

    def stop(
        self,
        instance_id: str,
        mode: StopMode = StopMode.GRACEFUL,
        timeout: Optional[int] = None,
    ) -> None:
        if StopMode(mode) == StopMode.IMMEDIATE:
            result = run_command([self.bin, "rm", "-f", instance_id], runner=self.runner, check=False)
            if result.returncode != 0 and "no such container" not in (result.stderr or "").lower():
                raise BackendError(
                    f"Failed to remove container {instance_id}: {(result.stderr or '').strip()}",
                    command=[self.bin, "rm", "-f", instance_id],
                    stderr=result.stderr,
                )
            return

        args = [self.bin, "stop"]
        if timeout is not None:
            args += ["-t", str(timeout)]
        args.append(instance_id)
        try:
            run_command(args, runner=self.runner)
        except BackendError as e:
            if "no such container" in e.stderr.lower():
                logger.debug(f"Container {instance_id} is already gone")
                return
            raise
        run_command([self.bin, "rm", instance_id], runner=self.runner)

    def is_live(self, instance_id: str) -> bool:
        result = run_command(
            [self.bin, "ps", "-q", "-f", f"name=^{instance_id}$"],
            runner=self.runner,
        )
        return bool((result.stdout or "").strip())

    def is_ready(self, instance_id: str, port: int) -> bool:
        result = run_command(
            [self.bin, "exec", instance_id, "pg_isready", "-q", "-U", self.config.postgres_user],
            runner=self.runner,
            check=False,
        )
        return result.returncode == 0

    def version(self) -> str:
        result = run_command([self.bin, "--version"], runner=self.runner)
        return (result.stdout or "").strip() or "Unknown"

    def available(self) -> bool:
        return shutil.which(self.bin) is not None


def create_runtime(config: ZvpgConfig, runner: Optional[Runner] = None) -> InstanceRuntime:
    """Build the runtime selected by ``config.runtime``."""
    if config.runtime == "container":
        return ContainerRuntime(config, runner)
    return ProcessRuntime(config, runner)

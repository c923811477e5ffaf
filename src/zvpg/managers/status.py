"""System status aggregation for zvpg."""

import logging
import socket
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta
from pathlib import Path
from typing import Callable, Optional

import psutil

from zvpg.config import ZvpgConfig
from zvpg.core.errors import BackendError, BackendUnavailableError, ZvpgError
from zvpg.infrastructure.dataset_backend import ATTR_CREATED, DatasetBackend
from zvpg.infrastructure.instance_runtime import InstanceRuntime
from zvpg.infrastructure.port_probe import PortProbe, make_port_probe
from zvpg.managers.branch import BranchManager
from zvpg.models import (
    BranchesStatus,
    BranchStatusDetail,
    HostStatus,
    InstanceStatus,
    NodeKind,
    PoolStatus,
    PostgresStatus,
    SnapshotsStatus,
    SnapshotStatusDetail,
    SystemStatus,
)
from zvpg.utils.formatting import format_bytes

logger = logging.getLogger(__name__)

HostProbe = Callable[[], HostStatus]


def collect_host_status(disk_path: str = "/") -> HostStatus:
    """Read host metrics with psutil."""
    uptime = timedelta(seconds=int(time.time() - psutil.boot_time()))
    load = ", ".join(f"{value:.2f}" for value in psutil.getloadavg())

    memory = psutil.virtual_memory()
    memory_usage = (
        f"{format_bytes(memory.total - memory.available)} / {format_bytes(memory.total)} "
        f"({memory.percent:.1f}%)"
    )

    path = disk_path if Path(disk_path).exists() else "/"
    disk = psutil.disk_usage(path)
    disk_usage = f"{format_bytes(disk.used)} / {format_bytes(disk.total)} ({disk.percent:.1f}%)"

    return HostStatus(
        hostname=socket.gethostname(),
        uptime=str(uptime),
        load_average=load,
        memory_usage=memory_usage,
        disk_usage=disk_usage,
    )


class StatusManager:
    """Builds a read-only report over pool, primary instance, snapshots, branches and host.

    Each section is queried independently. A section that fails is replaced by
    placeholders and logged; only an unreachable backend fails the report.
    """

    def __init__(
        self,
        config: ZvpgConfig,
        backend: DatasetBackend,
        runtime: InstanceRuntime,
        branches: BranchManager,
        port_probe: Optional[PortProbe] = None,
        host_probe: Optional[HostProbe] = None,
    ):
        """Initialize status manager.

        Args:
            config: zvpg configuration
            backend: Dataset backend
            runtime: Instance runtime, asked for the server version
            branches: Branch manager
            port_probe: Liveness probe for the primary instance port
            host_probe: Collects host metrics
        """
        self.config = config
        self.backend = backend
        self.runtime = runtime
        self.branches = branches
        self.port_probe = port_probe or make_port_probe(config.branch_access_host)
        self.host_probe = host_probe or (lambda: collect_host_status(config.mount_dir))

    def get_system_status(self) -> SystemStatus:
        """Gather every section of the report in parallel.

        Raises:
            BackendUnavailableError: If the dataset backend cannot be reached
        """
        with ThreadPoolExecutor(max_workers=5) as executor:
            pool = executor.submit(self.get_pool_status)
            postgres = executor.submit(self.get_postgres_status)
            snapshots = executor.submit(self.get_snapshots_status)
            branches = executor.submit(self.get_branches_status)
            system = executor.submit(self.get_host_status)

            return SystemStatus(
                pool=pool.result(),
                postgres=postgres.result(),
                snapshots=snapshots.result(),
                branches=branches.result(),
                system=system.result(),
            )

    def get_pool_status(self) -> PoolStatus:
        try:
            return self.backend.pool_status(self.config.zfs_pool)
        except BackendUnavailableError:
            raise
        except BackendError as e:
            logger.warning(f"Failed to get pool status: {e}")
            return PoolStatus(name=self.config.zfs_pool)

    def get_postgres_status(self) -> PostgresStatus:
        main_port = self.config.main_port
        try:
            version = self.runtime.version()
        except ZvpgError as e:
            logger.warning(f"Failed to get PostgreSQL version: {e}")
            version = "Unknown"

        try:
            running = self.port_probe(main_port)
        except OSError as e:
            logger.warning(f"Failed to probe PostgreSQL on port {main_port}: {e}")
            running = False

        return PostgresStatus(version=version, running=running, main_port=main_port)

    def get_snapshots_status(self) -> SnapshotsStatus:
        try:
            nodes = self.backend.list_nodes(NodeKind.SNAPSHOT, self.config.data_dataset)
        except ZvpgError as e:
            logger.warning(f"Failed to get snapshot status: {e}")
            return SnapshotsStatus()

        details = [
            SnapshotStatusDetail(
                name=node.name,
                full_name=node.path,
                size=node.used,
                referenced=node.referenced,
                created=self._created(node.path),
            )
            for node in nodes
            if node.dataset == self.config.data_dataset
        ]
        total = sum(node.used_bytes for node in nodes if node.dataset == self.config.data_dataset)
        return SnapshotsStatus(
            total=len(details),
            total_size=format_bytes(total),
            details=details,
        )

    def _created(self, path: str) -> Optional[str]:
        try:
            return self.backend.get_attribute(path, ATTR_CREATED)
        except ZvpgError as e:
            logger.debug(f"No creation time for {path}: {e}")
            return None

    def get_branches_status(self) -> BranchesStatus:
        try:
            branches = self.branches.list_branches()
        except ZvpgError as e:
            logger.warning(f"Failed to get branch status: {e}")
            return BranchesStatus()

        details = [
            BranchStatusDetail(
                name=branch.name,
                port=branch.port,
                status=InstanceStatus(branch.status).value,
                size=branch.used,
                created=branch.created,
            )
            for branch in branches
        ]
        active = sum(1 for branch in branches if branch.is_running)
        return BranchesStatus(
            total=len(branches),
            active=active,
            inactive=len(branches) - active,
            unexpected_inactive=sum(1 for branch in branches if branch.has_stale_port),
            details=details,
        )

    def get_host_status(self) -> HostStatus:
        try:
            return self.host_probe()
        except (OSError, psutil.Error) as e:
            logger.warning(f"Failed to get host metrics: {e}")
            return HostStatus()

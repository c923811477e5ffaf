"""Branch management for zvpg.

A branch is a writable clone of a snapshot. Creating a branch also starts a
database instance on its mount; the port and instance id of that instance are
recorded as attributes on the branch dataset so later invocations can find it.
"""

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, List, Optional

from zvpg.config import ZvpgConfig
from zvpg.core.errors import (
    AlreadyExistsError,
    AlreadyRunningError,
    BackendError,
    DeleteFailedError,
    HasDependentsError,
    InstanceStatusUnknownError,
    NoSnapshotsError,
    NotFoundError,
    PartialFailureError,
    PortBindError,
    PortUnavailableError,
    SourceMissingError,
    ZvpgError,
)
from zvpg.core.path_utils import (
    branch_name_from_path,
    branch_path,
    branch_snapshot_path,
    mount_path,
)
from zvpg.infrastructure.dataset_backend import (
    ATTR_BRANCH_NAME,
    ATTR_CREATED,
    ATTR_INSTANCE_ID,
    ATTR_PARENT_BRANCH,
    ATTR_PARENT_SNAPSHOT,
    ATTR_PORT,
    DatasetBackend,
)
from zvpg.managers.instance import InstanceManager
from zvpg.managers.port import PortAllocator
from zvpg.managers.snapshot import SnapshotManager
from zvpg.models import (
    BranchInfo,
    DatasetNode,
    InstanceHandle,
    InstanceStatus,
    NodeKind,
    SnapshotInfo,
)
from zvpg.utils.name_validator import validate_branch_name, validate_snapshot_name

logger = logging.getLogger(__name__)

# Given a dataset path, return the full path of the snapshot to branch from
SourceResolver = Callable[[str], Optional[str]]


class BranchManager:
    """Manages branches and the instances serving them."""

    def __init__(
        self,
        config: ZvpgConfig,
        backend: DatasetBackend,
        instances: InstanceManager,
        ports: PortAllocator,
        snapshots: Optional[SnapshotManager] = None,
        source_resolver: Optional[SourceResolver] = None,
    ):
        """Initialize branch manager.

        Args:
            config: zvpg configuration
            backend: Dataset backend owning the branch datasets
            instances: Instance lifecycle manager
            ports: Port allocator for branch instances
            snapshots: Snapshot manager (built from ``backend`` if omitted)
            source_resolver: Picks the source snapshot of a dataset when none
                is given. Defaults to the most recently created snapshot.
        """
        self.config = config
        self.backend = backend
        self.instances = instances
        self.ports = ports
        self.snapshots = snapshots or SnapshotManager(config, backend)
        self.source_resolver = source_resolver or self.snapshots.latest_snapshot

    def _path(self, name: str) -> str:
        return branch_path(self.config.zfs_pool, name, self.config.branches_subdir)

    def _mount(self, name: str) -> Path:
        return mount_path(self.config.mount_dir, self.config.zfs_pool, self._path(name))

    def _require(self, name: str) -> str:
        path = self._path(name)
        if not self.backend.exists(path):
            raise NotFoundError(f"Branch '{name}' does not exist")
        return path

    def _stored_port(self, path: str) -> Optional[int]:
        value = self.backend.get_attribute(path, ATTR_PORT)
        if value is None:
            return None
        try:
            return int(value)
        except ValueError:
            logger.warning(f"Ignoring malformed port attribute on {path}: {value!r}")
            return None

    def _instance_id(self, name: str, path: str) -> str:
        return self.backend.get_attribute(path, ATTR_INSTANCE_ID) or str(self._mount(name))

    def _clear_instance_attributes(self, path: str) -> None:
        self.backend.clear_attribute(path, ATTR_PORT)
        self.backend.clear_attribute(path, ATTR_INSTANCE_ID)

    def _forget_instance(self, path: str, port: int) -> List[str]:
        """Clear the recorded instance and release its port.

        Returns:
            Attributes that could not be cleared
        """
        leftover = []
        for key in (ATTR_PORT, ATTR_INSTANCE_ID):
            try:
                self.backend.clear_attribute(path, key)
            except ZvpgError as e:
                logger.warning(f"Could not clear {key} on {path}: {e}")
                leftover.append(key)
        self.ports.release(port)
        return leftover

    def branch_exists(self, name: str) -> bool:
        """Check if a branch exists."""
        return self.backend.exists(self._path(name))

    def resolve_source(
        self,
        source_snapshot: Optional[str] = None,
        from_branch: Optional[str] = None,
    ) -> str:
        """Work out which snapshot a new branch is cloned from.

        Args:
            source_snapshot: Explicit snapshot, bare or qualified
            from_branch: Take the latest snapshot of this branch instead of
                the primary data

        Returns:
            Full snapshot path

        Raises:
            NotFoundError: If ``from_branch`` does not exist
            NoSnapshotsError: If no snapshot could be picked
        """
        if source_snapshot:
            return self.snapshots.resolve(source_snapshot)

        if from_branch:
            dataset = self._require(from_branch)
        else:
            dataset = self.config.data_dataset

        if self.config.snapshot_source_policy == "explicit":
            raise NoSnapshotsError(
                "No source snapshot given and snapshot_source_policy is 'explicit'"
            )

        latest = self.source_resolver(dataset)
        if latest is None:
            raise NoSnapshotsError(
                f"No snapshots found for {dataset}. Create a snapshot first."
            )
        logger.debug(f"Using latest snapshot of {dataset}: {latest}")
        return latest

    def create_branch(
        self,
        name: str,
        port: Optional[int] = None,
        source_snapshot: Optional[str] = None,
        parent_branch: Optional[str] = None,
        from_branch: Optional[str] = None,
    ) -> BranchInfo:
        """Clone a snapshot into a new branch and start its instance.

        Every check runs before the clone, including the port check, so a
        failed validation leaves nothing behind. If the clone succeeds but the
        instance does not start, the branch is kept and reported as created
        without an instance.

        Args:
            name: Branch name
            port: Port for the instance; the lowest free port if omitted
            source_snapshot: Snapshot to clone; the latest one if omitted
            parent_branch: Lineage label, informational only
            from_branch: Clone from the latest snapshot of this branch

        Returns:
            The branch with its running instance

        Raises:
            InvalidNameError: If the branch name is invalid
            AlreadyExistsError: If the branch already exists
            NoSnapshotsError: If no source snapshot could be found
            SourceMissingError: If the source snapshot does not exist
            PortError: If the requested port cannot be used
            PartialFailureError: If the branch was created but its instance
                did not start; ``result`` holds the branch
        """
        validate_branch_name(name, self.config.branch_naming_pattern)
        path = self._path(name)
        if self.backend.exists(path):
            raise AlreadyExistsError(f"Branch '{name}' already exists")

        source = self.resolve_source(source_snapshot, from_branch)
        if not self.backend.exists(source):
            raise SourceMissingError(f"Source snapshot {source} does not exist")

        explicit_port = port is not None
        port = self.ports.claim(port)

        self._ensure_branches_root()

        logger.info(f"Creating branch '{name}' from {source}")
        try:
            self.backend.clone_from(source, path)
        except ZvpgError:
            self.ports.release(port)
            raise

        self.backend.set_attribute(path, ATTR_BRANCH_NAME, name)
        self.backend.set_attribute(
            path, ATTR_PARENT_BRANCH, parent_branch or from_branch or self.config.branch_default
        )
        self.backend.set_attribute(path, ATTR_PARENT_SNAPSHOT, source)
        self.backend.set_attribute(path, ATTR_CREATED, datetime.now(timezone.utc).isoformat())

        try:
            self._launch(name, path, port, explicit_port)
        except ZvpgError as e:
            logger.warning(f"Branch '{name}' created but its instance did not start: {e}")
            raise PartialFailureError(
                f"Branch '{name}' was created but its instance failed to start: {e}. "
                f"Start it with 'zvpg branch start {name}'.",
                result=self.get_branch_info(name),
            ) from e

        return self.get_branch_info(name)

    def _ensure_branches_root(self) -> None:
        root = self.config.branches_dataset
        if self.backend.exists(root):
            return
        try:
            self.backend.create(root)
            logger.debug(f"Created branches container {root}")
        except AlreadyExistsError:
            logger.debug(f"Branches container {root} was created concurrently")

    def _launch(self, name: str, path: str, port: int, explicit_port: bool) -> InstanceHandle:
        mount = self._mount(name)
        try:
            handle = self.instances.start(name, mount, port)
        except PortBindError as e:
            if explicit_port:
                self.ports.release(port)
                raise PortUnavailableError(
                    port, f"Port {port} became unavailable before the instance could bind it"
                ) from e
            logger.warning(f"Port {port} was taken before bind, retrying with another port")
            self.ports.release(port)
            port = self.ports.claim()
            try:
                handle = self.instances.start(name, mount, port)
            except ZvpgError:
                self.ports.release(port)
                raise
        except ZvpgError:
            self.ports.release(port)
            raise

        # Only a confirmed start is recorded
        self.backend.set_attribute(path, ATTR_PORT, str(handle.port))
        self.backend.set_attribute(path, ATTR_INSTANCE_ID, handle.instance_id)
        return handle

    def start_instance(self, name: str, port: Optional[int] = None) -> BranchInfo:
        """Start the instance of an existing branch.

        Args:
            name: Branch name
            port: Port for the instance; the lowest free port if omitted

        Returns:
            The branch with its running instance

        Raises:
            NotFoundError: If the branch does not exist
            AlreadyRunningError: If the branch already has a live instance
            InstanceStatusUnknownError: If the recorded instance could not be
                probed; nothing is changed
            PortUnavailableError: If the requested port is in use
            StartupTimeoutError: If the instance did not become ready
        """
        path = self._require(name)

        stored_port = self._stored_port(path)
        if stored_port is not None:
            instance_id = self._instance_id(name, path)
            status = self.instances.status(instance_id)
            if status == InstanceStatus.RUNNING:
                raise AlreadyRunningError(
                    f"Branch '{name}' already has a running instance on port {stored_port}"
                )
            if status == InstanceStatus.UNKNOWN:
                raise InstanceStatusUnknownError(
                    f"Could not tell whether the instance of branch '{name}' on port "
                    f"{stored_port} is still running. Stop it with 'zvpg branch stop {name}' "
                    "once the runtime is reachable."
                )
            logger.info(f"Clearing stale port {stored_port} of branch '{name}'")
            self._clear_instance_attributes(path)
            self.ports.release(stored_port)

        explicit_port = port is not None
        port = self.ports.claim(port)
        self._launch(name, path, port, explicit_port)
        return self.get_branch_info(name)

    def stop_instance(self, name: str) -> bool:
        """Stop the instance of a branch.

        The port and instance id attributes are cleared even when the stop
        itself fails.

        Returns:
            False if the branch had no recorded instance, True otherwise

        Raises:
            NotFoundError: If the branch does not exist
            PartialFailureError: If the instance could not be stopped, or
                was stopped but its attributes could not be cleared
        """
        path = self._require(name)

        port = self._stored_port(path)
        if port is None:
            logger.info(f"Branch '{name}' has no running instance")
            return False

        instance_id = self._instance_id(name, path)
        try:
            if self.instances.status(instance_id) == InstanceStatus.STOPPED:
                logger.info(f"Instance {instance_id} of branch '{name}' is already stopped")
            else:
                self.instances.stop(instance_id)
        finally:
            leftover = self._forget_instance(path, port)

        if leftover:
            raise PartialFailureError(
                f"Stopped the instance of branch '{name}' but could not clear "
                f"{', '.join(leftover)} on {path}"
            )
        return True

    def delete_branch(self, name: str, force: bool = False) -> None:
        """Delete a branch, its snapshots and everything below it.

        The instance is stopped first on a best-effort basis; a branch whose
        instance cannot be stopped is still deleted.

        Args:
            name: Branch name
            force: Delete even if other datasets depend on the branch

        Raises:
            NotFoundError: If the branch does not exist
            HasDependentsError: If the branch has dependents and ``force`` is
                not set
            DeleteFailedError: If the backend refused to destroy the branch
        """
        path = self._require(name)

        dependents = self._dependents(path)
        if dependents and not force:
            raise HasDependentsError(
                f"Cannot delete branch '{name}' - it has dependent clones: "
                f"{', '.join(dependents)}. Use --force to delete anyway.",
                dependents,
            )

        try:
            self.stop_instance(name)
        except ZvpgError as e:
            logger.warning(f"Could not stop instance of branch '{name}', deleting anyway: {e}")

        logger.info(f"Deleting branch '{name}' ({path})")
        try:
            self.backend.destroy(path, recursive=True)
        except BackendError as e:
            logger.error(f"Failed to delete branch '{name}': {e}")
            raise DeleteFailedError(
                f"Failed to delete branch '{name}': {e}",
                command=e.command,
                stderr=e.stderr,
            ) from e

    def _dependents(self, path: str) -> List[str]:
        """Datasets nested below the branch or cloned from one of its snapshots."""
        filesystems = self.backend.list_nodes(NodeKind.FILESYSTEM, self.config.zfs_pool)
        nested = [node.path for node in filesystems if node.path.startswith(path + "/")]
        cloned = [
            node.path
            for node in filesystems
            if node.origin is not None
            and node.origin.startswith(path + "@")
            and node.path not in nested
        ]
        return nested + cloned

    def create_branch_snapshot(
        self, branch: str, snapshot: str, message: str = "Branch snapshot"
    ) -> SnapshotInfo:
        """Snapshot the current state of a branch.

        Raises:
            InvalidNameError: If the snapshot name is invalid
            NotFoundError: If the branch does not exist
            AlreadyExistsError: If the snapshot already exists
        """
        validate_snapshot_name(snapshot)
        self._require(branch)

        full_name = branch_snapshot_path(
            self.config.zfs_pool, branch, snapshot, self.config.branches_subdir
        )
        if self.backend.exists(full_name):
            raise AlreadyExistsError(f"Snapshot already exists: {full_name}")

        logger.info(f"Creating snapshot {full_name} of branch '{branch}'")
        self.backend.create(full_name)
        self.snapshots.stamp_snapshot(full_name, message, branch=branch)
        return self.snapshots.get_snapshot_info(full_name)

    def list_branches(self) -> List[BranchInfo]:
        """List all branches.

        Intermediate datasets created for nested branch names are not
        branches and are skipped.
        """
        root = self.config.branches_dataset
        filesystems = self.backend.list_nodes(NodeKind.FILESYSTEM, root)

        branches = []
        for node in filesystems:
            if node.path == root or node.origin is None:
                continue
            name = branch_name_from_path(
                self.config.zfs_pool, node.path, self.config.branches_subdir
            )
            branches.append(self._build_info(name, node, filesystems))
        return branches

    def get_branch_info(self, name: str) -> BranchInfo:
        """Get details of one branch, with live instance status.

        Raises:
            NotFoundError: If the branch does not exist
        """
        path = self._path(name)
        node = self.backend.get_node(path)
        if node is None:
            raise NotFoundError(f"Branch '{name}' does not exist")
        filesystems = self.backend.list_nodes(NodeKind.FILESYSTEM, path)
        return self._build_info(name, node, filesystems)

    def _build_info(
        self, name: str, node: DatasetNode, filesystems: List[DatasetNode]
    ) -> BranchInfo:
        path = node.path
        port = self._stored_port(path)
        instance_id = self.backend.get_attribute(path, ATTR_INSTANCE_ID)

        # The live probe wins over the stored port
        if port is None:
            status = InstanceStatus.STOPPED
        else:
            status = self.instances.status(instance_id or str(self._mount(name)))

        return BranchInfo(
            name=name,
            dataset=path,
            mount=self._mount(name),
            parent_branch=self.backend.get_attribute(path, ATTR_PARENT_BRANCH),
            parent_snapshot=(
                self.backend.get_attribute(path, ATTR_PARENT_SNAPSHOT) or node.origin
            ),
            created=self.backend.get_attribute(path, ATTR_CREATED),
            used=node.used,
            available=node.available,
            referenced=node.referenced,
            compress_ratio=node.compress_ratio,
            creation=node.creation,
            clones=[fs.path for fs in filesystems if fs.path.startswith(path + "/")],
            port=port,
            instance_id=instance_id,
            status=status,
        )

"""Snapshot management for zvpg."""

import logging
from datetime import datetime, timezone
from typing import List, Optional

from zvpg.config import ZvpgConfig
from zvpg.core.errors import (
    AlreadyExistsError,
    HasDependentsError,
    NotFoundError,
    SourceMissingError,
    ZvpgError,
)
from zvpg.core.path_utils import (
    branch_name_from_path,
    snapshot_path,
    split_snapshot_path,
)
from zvpg.infrastructure.dataset_backend import (
    ATTR_BRANCH,
    ATTR_CREATED,
    ATTR_MESSAGE,
    ATTR_PORT,
    DatasetBackend,
)
from zvpg.models import CloneInfo, DatasetNode, NodeKind, SnapshotInfo
from zvpg.utils.name_validator import validate_snapshot_name

logger = logging.getLogger(__name__)


class SnapshotManager:
    """Manages immutable snapshots of the primary data and of branches."""

    def __init__(self, config: ZvpgConfig, backend: DatasetBackend):
        """Initialize snapshot manager.

        Args:
            config: zvpg configuration
            backend: Dataset backend owning the snapshots
        """
        self.config = config
        self.backend = backend

    def resolve(self, name: str) -> str:
        """Qualify a bare snapshot name against the primary data dataset."""
        return snapshot_path(self.config.zfs_pool, self.config.data_subdir, name)

    def snapshot_exists(self, name: str) -> bool:
        """Check if a snapshot exists.

        Args:
            name: Bare or qualified snapshot name
        """
        return self.backend.exists(self.resolve(name))

    def create_snapshot(self, name: str, message: str = "Manual snapshot") -> SnapshotInfo:
        """Snapshot the primary data directory.

        Args:
            name: Bare snapshot name
            message: Free-text description stored with the snapshot

        Returns:
            The created snapshot

        Raises:
            InvalidNameError: If the name is invalid
            AlreadyExistsError: If the snapshot already exists
            SourceMissingError: If the primary data dataset does not exist
        """
        validate_snapshot_name(name)
        full_name = self.resolve(name)

        if self.backend.exists(full_name):
            raise AlreadyExistsError(f"Snapshot already exists: {full_name}")

        data_dataset = self.config.data_dataset
        if not self.backend.exists(data_dataset):
            raise SourceMissingError(f"Data directory does not exist: {data_dataset}")

        logger.info(f"Creating snapshot: {full_name}")
        self.backend.create(full_name)
        self.stamp_snapshot(full_name, message)

        return self.get_snapshot_info(full_name)

    def stamp_snapshot(
        self, full_name: str, message: str, branch: Optional[str] = None
    ) -> None:
        """Record message, lineage and creation time on a snapshot."""
        self.backend.set_attribute(full_name, ATTR_MESSAGE, message)
        if branch is not None:
            self.backend.set_attribute(full_name, ATTR_BRANCH, branch)
        self.backend.set_attribute(
            full_name, ATTR_CREATED, datetime.now(timezone.utc).isoformat()
        )

    def delete_snapshot(self, name: str, force: bool = False) -> None:
        """Delete a snapshot.

        Args:
            name: Bare or qualified snapshot name
            force: Skip the dependents check. The backend still arbitrates:
                if it refuses, its error is raised unchanged.

        Raises:
            NotFoundError: If the snapshot does not exist
            HasDependentsError: If clones depend on it and ``force`` is not set
            BackendError: If the backend refuses the destroy
        """
        full_name = self.resolve(name)

        if not self.backend.exists(full_name):
            raise NotFoundError(f"Snapshot does not exist: {full_name}")

        dependents = self.get_dependents(full_name)
        if dependents and not force:
            raise HasDependentsError(
                f"Cannot delete snapshot {full_name} - it has dependent clones: "
                f"{', '.join(dependents)}. Use --force to delete anyway.",
                dependents,
            )
        if dependents:
            logger.warning(
                f"Forcing deletion of {full_name} despite dependents: {', '.join(dependents)}"
            )

        logger.info(f"Deleting snapshot: {full_name}")
        self.backend.destroy(full_name, recursive=False)

    def get_dependents(self, full_name: str) -> List[str]:
        """List every dataset in the pool whose origin is ``full_name``."""
        return [
            node.path
            for node in self.backend.list_nodes(NodeKind.FILESYSTEM, self.config.zfs_pool)
            if node.origin == full_name
        ]

    def list_snapshots(self) -> List[SnapshotInfo]:
        """List all snapshots in the pool, primary and branch snapshots alike.

        Snapshots whose details cannot be read are skipped with a warning.
        """
        nodes = self.backend.list_nodes(NodeKind.SNAPSHOT, self.config.zfs_pool)
        filesystems = self.backend.list_nodes(NodeKind.FILESYSTEM, self.config.zfs_pool)

        snapshots = []
        for node in nodes:
            try:
                snapshots.append(self._build_info(node, filesystems))
            except ZvpgError as e:
                logger.warning(f"Failed to get info for snapshot {node.path}: {e}")
        return snapshots

    def get_snapshot_info(self, name: str) -> SnapshotInfo:
        """Get details of one snapshot.

        Raises:
            NotFoundError: If the snapshot does not exist
        """
        full_name = self.resolve(name)
        node = self.backend.get_node(full_name)
        if node is None:
            raise NotFoundError(f"Snapshot does not exist: {full_name}")

        filesystems = self.backend.list_nodes(NodeKind.FILESYSTEM, self.config.zfs_pool)
        return self._build_info(node, filesystems)

    def _build_info(self, node: DatasetNode, filesystems: List[DatasetNode]) -> SnapshotInfo:
        dataset, name = split_snapshot_path(node.path)
        return SnapshotInfo(
            name=name,
            full_name=node.path,
            dataset=dataset,
            used=node.used,
            available=node.available,
            referenced=node.referenced,
            compress_ratio=node.compress_ratio,
            creation=node.creation,
            message=self.backend.get_attribute(node.path, ATTR_MESSAGE),
            created=self.backend.get_attribute(node.path, ATTR_CREATED),
            branch=self.backend.get_attribute(node.path, ATTR_BRANCH),
            clones=[fs.path for fs in filesystems if fs.origin == node.path],
        )

    def latest_snapshot(self, dataset: Optional[str] = None) -> Optional[str]:
        """Get the most recently created snapshot of a dataset.

        Ordering is by backend creation time; among equal times the last one
        listed wins.

        Args:
            dataset: Dataset to look at. Defaults to the primary data dataset.

        Returns:
            Full snapshot path, or None if the dataset has no snapshots
        """
        dataset = dataset or self.config.data_dataset
        nodes = [
            node for node in self.backend.list_nodes(NodeKind.SNAPSHOT, dataset)
            if node.dataset == dataset
        ]
        if not nodes:
            return None

        epoch = datetime.min.replace(tzinfo=timezone.utc)
        ordered = sorted(
            enumerate(nodes),
            key=lambda item: (item[1].creation or epoch, item[0]),
        )
        return ordered[-1][1].path

    def list_clones(self) -> List[CloneInfo]:
        """List every dataset in the pool that was cloned from a snapshot."""
        return [
            self._build_clone(node)
            for node in self.backend.list_nodes(NodeKind.FILESYSTEM, self.config.zfs_pool)
            if node.origin is not None
        ]

    def get_clone_info(self, name: str) -> CloneInfo:
        """Get details of one clone.

        Args:
            name: Dataset path, relative to the pool or qualified with it

        Raises:
            NotFoundError: If the dataset does not exist
            ZvpgError: If the dataset is not a clone
        """
        pool = self.config.zfs_pool
        dataset = name if name.startswith(pool + "/") else f"{pool}/{name}"
        node = self.backend.get_node(dataset)
        if node is None:
            raise NotFoundError(f"Dataset does not exist: {dataset}")
        if node.origin is None:
            raise ZvpgError(f"'{name}' is not a clone")
        return self._build_clone(node)

    def _build_clone(self, node: DatasetNode) -> CloneInfo:
        pool = self.config.zfs_pool
        try:
            branch = branch_name_from_path(pool, node.path, self.config.branches_subdir)
        except ValueError:
            branch = None

        port = self.backend.get_attribute(node.path, ATTR_PORT)
        return CloneInfo(
            name=node.path[len(pool) + 1:],
            dataset=node.path,
            origin=node.origin,
            used=node.used,
            referenced=node.referenced,
            creation=node.creation,
            branch=branch,
            port=int(port) if port and port.isdigit() else None,
        )

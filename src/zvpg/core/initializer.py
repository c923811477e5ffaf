"""Environment initialization for zvpg."""

import logging
from pathlib import Path
from typing import List

from zvpg.config import ZvpgConfig
from zvpg.core.errors import (
    AlreadyExistsError,
    BackendError,
    BackendUnavailableError,
    NotFoundError,
)
from zvpg.infrastructure.dataset_backend import DatasetBackend
from zvpg.infrastructure.instance_runtime import InstanceRuntime

logger = logging.getLogger(__name__)


class EnvironmentInitializer:
    """Prepares and checks the datasets and tools zvpg relies on."""

    def __init__(self, config: ZvpgConfig, backend: DatasetBackend, runtime: InstanceRuntime):
        """Initialize the environment initializer.

        Args:
            config: zvpg configuration
            backend: Dataset backend
            runtime: Instance runtime whose tooling is checked
        """
        self.config = config
        self.backend = backend
        self.runtime = runtime

    def initialize(self) -> List[str]:
        """Create the primary data dataset and the branches container.

        Existing datasets are left alone, so running this twice is harmless.

        Returns:
            Datasets that were created

        Raises:
            NotFoundError: If the pool does not exist
            BackendUnavailableError: If ZFS cannot be reached
        """
        pool = self.config.zfs_pool
        if not self.backend.exists(pool):
            raise NotFoundError(f"ZFS pool '{pool}' does not exist. Create it first.")

        created = []
        for dataset in (self.config.data_dataset, self.config.branches_dataset):
            if self.backend.exists(dataset):
                logger.debug(f"Dataset {dataset} already exists")
                continue
            try:
                self.backend.create(dataset)
                created.append(dataset)
                logger.info(f"Created dataset {dataset}")
            except AlreadyExistsError:
                logger.debug(f"Dataset {dataset} was created concurrently")

        return created

    def check_environment(self) -> List[str]:
        """Report what is missing without changing anything.

        Returns:
            Human readable issues; empty when the environment is ready
        """
        issues = []

        try:
            if not self.backend.exists(self.config.zfs_pool):
                issues.append(f"ZFS pool '{self.config.zfs_pool}' does not exist")
            elif not self.backend.exists(self.config.data_dataset):
                issues.append(
                    f"Data dataset '{self.config.data_dataset}' does not exist (run 'zvpg init')"
                )
        except BackendUnavailableError as e:
            issues.append(f"ZFS is not available: {e}")
        except BackendError as e:
            issues.append(f"Could not query ZFS: {e}")

        if not self.runtime.available():
            if self.runtime.kind == "container":
                issues.append(f"Container runtime '{self.config.container_runtime}' not found")
            else:
                issues.append(f"PostgreSQL tools not found in {self.config.postgres_bin_path}")

        if not Path(self.config.mount_dir).is_dir():
            issues.append(f"Mount directory '{self.config.mount_dir}' does not exist")

        if issues:
            logger.warning(f"Environment check found {len(issues)} issue(s)")
        else:
            logger.info("Environment check passed")
        return issues

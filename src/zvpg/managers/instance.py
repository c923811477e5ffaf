"""Lifecycle of the database instance bound to a branch."""

import logging
import time
from pathlib import Path
from typing import Callable, Optional

from zvpg.config import ZvpgConfig
from zvpg.core.errors import (
    BackendError,
    PartialFailureError,
    StartupTimeoutError,
)
from zvpg.infrastructure.instance_runtime import InstanceRuntime, InstanceSpec, StopMode
from zvpg.models import InstanceHandle, InstanceStatus

logger = logging.getLogger(__name__)


class InstanceManager:
    """Starts, stops and probes branch instances through a runtime."""

    def __init__(
        self,
        config: ZvpgConfig,
        runtime: InstanceRuntime,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """Initialize instance manager.

        Args:
            config: zvpg configuration
            runtime: Process or container runtime
            sleep: Used between readiness polls (replaced in tests)
        """
        self.config = config
        self.runtime = runtime
        self.sleep = sleep

    def build_spec(self, name: str, mount_path: Path, port: int) -> InstanceSpec:
        """Prepare the instance configuration for a branch mount."""
        return InstanceSpec(
            name=name,
            mount_path=mount_path,
            port=port,
            host=self.config.branch_access_host,
            socket_dir=self.config.socket_dir if self.runtime.kind == "process" else None,
            user=self.config.postgres_user,
            password=self.config.postgres_password,
            database=self.config.postgres_db,
            config_files=[Path(p).expanduser() for p in self.config.config_files],
        )

    def start(self, name: str, mount_path: Path, port: int) -> InstanceHandle:
        """Start an instance and wait until it accepts connections.

        Readiness is polled ``readiness_attempts`` times, ``readiness_interval``
        seconds apart. On timeout the half-started instance is shut down
        before the error is raised.

        Raises:
            PortBindError: If the port was taken between probe and bind
            StartupTimeoutError: If the instance never became ready
            BackendError: If the runtime failed to launch the instance
        """
        spec = self.build_spec(name, mount_path, port)
        instance_id = self.runtime.start(spec)

        attempts = self.config.readiness_attempts
        for attempt in range(1, attempts + 1):
            if self.runtime.is_ready(instance_id, port):
                logger.info(f"Instance {instance_id} ready on port {port} (attempt {attempt})")
                return InstanceHandle(instance_id=instance_id, port=port, mount_path=mount_path)
            if attempt < attempts:
                self.sleep(self.config.readiness_interval)

        logger.error(f"Instance {instance_id} not ready after {attempts} attempts, cleaning up")
        try:
            self.stop(instance_id)
        except PartialFailureError as e:
            logger.warning(f"Cleanup after failed start incomplete: {e}")

        raise StartupTimeoutError(
            f"Instance for '{name}' did not become ready on port {port} "
            f"after {attempts} attempts",
            attempts=attempts,
        )

    def stop(self, instance_id: str, timeout: Optional[int] = None) -> None:
        """Shut an instance down, escalating to an immediate stop.

        Raises:
            PartialFailureError: If neither the graceful nor the immediate stop
                succeeded; the instance may still be running
        """
        timeout = self.config.stop_timeout if timeout is None else timeout
        try:
            self.runtime.stop(instance_id, StopMode.GRACEFUL, timeout=timeout)
            logger.info(f"Stopped instance {instance_id}")
            return
        except BackendError as e:
            logger.warning(f"Graceful stop of {instance_id} failed: {e}")

        try:
            self.runtime.stop(instance_id, StopMode.IMMEDIATE, timeout=timeout)
            logger.info(f"Stopped instance {instance_id} (immediate)")
        except BackendError as e:
            logger.warning(f"Immediate stop of {instance_id} failed: {e}")
            raise PartialFailureError(
                f"Could not stop instance {instance_id}: {e}"
            ) from e

    def status(self, instance_id: Optional[str]) -> InstanceStatus:
        """Probe the liveness of an instance."""
        if not instance_id:
            return InstanceStatus.STOPPED
        try:
            live = self.runtime.is_live(instance_id)
        except BackendError as e:
            logger.warning(f"Could not probe instance {instance_id}: {e}")
            return InstanceStatus.UNKNOWN
        return InstanceStatus.RUNNING if live else InstanceStatus.STOPPED

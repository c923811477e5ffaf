"""Pytest configuration and shared fixtures."""

import pytest

from zvpg.config import ZvpgConfig
from zvpg.infrastructure.memory import InMemoryBackend, InMemoryRuntime
from zvpg.managers import (
    BranchManager,
    InstanceManager,
    PortAllocator,
    SnapshotManager,
)

ZVPG_ENV_VARS = (
    "ZVPG_CONFIG",
    "ZVPG_POOL",
    "ZVPG_MOUNT_DIR",
    "ZVPG_LOG_LEVEL",
    "ZVPG_RUNTIME",
    "ZVPG_POSTGRES_PASSWORD",
)


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Keep the caller's zvpg environment out of the tests."""
    for name in ZVPG_ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def config(tmp_path):
    """A config with a small port range and no readiness delay."""
    return ZvpgConfig(
        zfs_pool="testpool",
        mount_dir=str(tmp_path / "mnt"),
        branch_port_start=6001,
        branch_port_end=6005,
        readiness_attempts=3,
        readiness_interval=0,
    )


@pytest.fixture
def backend(config):
    """In-memory backend holding the pool and the primary data dataset."""
    backend = InMemoryBackend(pools=[config.zfs_pool])
    backend.create(config.data_dataset)
    return backend


@pytest.fixture
def runtime():
    return InMemoryRuntime()


@pytest.fixture
def ports(config, runtime):
    return PortAllocator(
        config.branch_port_start, config.branch_port_end, probe=runtime.port_in_use
    )


@pytest.fixture
def sleeps():
    """Records the delays requested between readiness polls."""
    return []


@pytest.fixture
def instances(config, runtime, sleeps):
    return InstanceManager(config, runtime, sleep=sleeps.append)


@pytest.fixture
def snapshots(config, backend):
    return SnapshotManager(config, backend)


@pytest.fixture
def branches(config, backend, instances, ports, snapshots):
    return BranchManager(config, backend, instances, ports, snapshots=snapshots)

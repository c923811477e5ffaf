"""Tests for EnvironmentInitializer."""

import pytest

from zvpg.core.errors import BackendUnavailableError, NotFoundError
from zvpg.core.initializer import EnvironmentInitializer
from zvpg.infrastructure.memory import InMemoryBackend, InMemoryRuntime


@pytest.fixture
def empty_pool(config):
    return InMemoryBackend(pools=[config.zfs_pool])


class TestInitialize:
    """Test dataset creation."""

    def test_creates_datasets(self, config, empty_pool, runtime):
        initializer = EnvironmentInitializer(config, empty_pool, runtime)

        created = initializer.initialize()

        assert created == ["testpool/data", "testpool/branches"]
        assert empty_pool.exists("testpool/data")
        assert empty_pool.exists("testpool/branches")

    def test_idempotent(self, config, empty_pool, runtime):
        initializer = EnvironmentInitializer(config, empty_pool, runtime)
        initializer.initialize()

        assert initializer.initialize() == []

    def test_keeps_existing_data(self, config, backend, runtime):
        created = EnvironmentInitializer(config, backend, runtime).initialize()
        assert created == ["testpool/branches"]

    def test_missing_pool(self, config, runtime):
        initializer = EnvironmentInitializer(config, InMemoryBackend(), runtime)

        with pytest.raises(NotFoundError, match="testpool"):
            initializer.initialize()

    def test_zfs_unreachable(self, config, empty_pool, runtime):
        empty_pool.unreachable = True

        with pytest.raises(BackendUnavailableError):
            EnvironmentInitializer(config, empty_pool, runtime).initialize()


class TestCheckEnvironment:
    """Test the read-only environment check."""

    @pytest.fixture
    def mounted(self, config, tmp_path):
        (tmp_path / "mnt").mkdir()
        return config

    def test_ready(self, mounted, backend, runtime):
        assert EnvironmentInitializer(mounted, backend, runtime).check_environment() == []

    def test_missing_pool(self, mounted, runtime):
        issues = EnvironmentInitializer(mounted, InMemoryBackend(), runtime).check_environment()
        assert issues == ["ZFS pool 'testpool' does not exist"]

    def test_missing_data_dataset(self, mounted, empty_pool, runtime):
        issues = EnvironmentInitializer(mounted, empty_pool, runtime).check_environment()

        assert len(issues) == 1
        assert "zvpg init" in issues[0]

    def test_zfs_unreachable(self, mounted, backend, runtime):
        backend.unreachable = True

        issues = EnvironmentInitializer(mounted, backend, runtime).check_environment()

        assert len(issues) == 1
        assert issues[0].startswith("ZFS is not available")

    def test_missing_mount_dir(self, config, backend, runtime):
        issues = EnvironmentInitializer(config, backend, runtime).check_environment()
        assert issues == [f"Mount directory '{config.mount_dir}' does not exist"]

    @pytest.mark.parametrize("kind, expected", [
        ("process", "PostgreSQL tools not found"),
        ("container", "Container runtime 'docker' not found"),
    ])
    def test_runtime_missing(self, mounted, backend, monkeypatch, kind, expected):
        runtime = InMemoryRuntime(kind=kind)
        monkeypatch.setattr(runtime, "available", lambda: False)

        issues = EnvironmentInitializer(mounted, backend, runtime).check_environment()

        assert len(issues) == 1
        assert issues[0].startswith(expected)

"""Tests for the ZFS dataset backend."""

import subprocess

import pytest

from zvpg.config import ZvpgConfig
from zvpg.core.errors import (
    AlreadyExistsError,
    BackendError,
    BackendUnavailableError,
    NotFoundError,
)
from zvpg.infrastructure.command import run_command
from zvpg.infrastructure.zfs_backend import ZfsBackend
from zvpg.models import NodeKind


class FakeRunner:
    """Stands in for subprocess.run, answering commands from a script."""

    def __init__(self):
        self.calls = []
        self.responses = {}
        self.default = (0, "", "")

    def on(self, prefix, returncode=0, stdout="", stderr=""):
        self.responses[tuple(prefix)] = (returncode, stdout, stderr)

    def __call__(self, args, **kwargs):
        self.calls.append(list(args))
        returncode, stdout, stderr = self.default
        for prefix, response in self.responses.items():
            if tuple(args[: len(prefix)]) == prefix:
                returncode, stdout, stderr = response
        return subprocess.CompletedProcess(args, returncode, stdout=stdout, stderr=stderr)


@pytest.fixture
def runner():
    return FakeRunner()


@pytest.fixture
def zfs(runner):
    return ZfsBackend(ZvpgConfig(zfs_pool="tank"), runner=runner)


class TestRunCommand:
    """Test external command execution."""

    def test_success(self, runner):
        runner.on(["echo"], stdout="hi\n")
        assert run_command(["echo", "hi"], runner=runner).stdout == "hi\n"

    def test_failure_keeps_stderr(self, runner):
        runner.on(["zfs"], returncode=1, stderr="cannot open 'x': dataset does not exist\n")

        with pytest.raises(BackendError) as exc_info:
            run_command(["zfs", "list", "x"], runner=runner)

        assert exc_info.value.stderr == "cannot open 'x': dataset does not exist"
        assert exc_info.value.command == ["zfs", "list", "x"]

    def test_unchecked_failure(self, runner):
        runner.on(["zfs"], returncode=1)
        assert run_command(["zfs"], runner=runner, check=False).returncode == 1

    def test_missing_executable(self):
        def runner(args, **kwargs):
            raise FileNotFoundError(args[0])

        with pytest.raises(BackendUnavailableError):
            run_command(["zfs", "list"], runner=runner)

    def test_timeout(self):
        def runner(args, **kwargs):
            raise subprocess.TimeoutExpired(args, kwargs["timeout"])

        with pytest.raises(BackendError, match="timed out"):
            run_command(["zfs", "list"], runner=runner, timeout=5)


class TestZfsBackend:
    """Test the zfs commands issued by the backend."""

    def test_exists(self, zfs, runner):
        assert zfs.exists("tank/data")
        assert runner.calls[-1] == ["zfs", "list", "-H", "-o", "name", "-t", "all", "tank/data"]

        runner.on(["zfs", "list"], returncode=1, stderr="dataset does not exist")
        assert not zfs.exists("tank/nope")

    def test_create_filesystem(self, zfs, runner):
        runner.on(["zfs", "list"], returncode=1)

        zfs.create("tank/data")

        assert runner.calls[-1] == ["zfs", "create", "tank/data"]

    def test_create_snapshot(self, zfs, runner):
        runner.on(["zfs", "list"], returncode=1)

        zfs.create("tank/data@base")

        assert runner.calls[-1] == ["zfs", "snapshot", "tank/data@base"]

    def test_create_existing(self, zfs, runner):
        with pytest.raises(AlreadyExistsError):
            zfs.create("tank/data@base")
        assert not any(call[1] == "snapshot" for call in runner.calls)

    def test_create_race(self, zfs, runner):
        runner.on(["zfs", "list"], returncode=1)
        runner.on(["zfs", "snapshot"], returncode=1, stderr="cannot create snapshot: dataset already exists")

        with pytest.raises(AlreadyExistsError):
            zfs.create("tank/data@base")

    def test_destroy(self, zfs, runner):
        zfs.destroy("tank/data@base")
        zfs.destroy("tank/branches/dev", recursive=True)

        assert runner.calls == [
            ["zfs", "destroy", "tank/data@base"],
            ["zfs", "destroy", "-r", "tank/branches/dev"],
        ]

    def test_destroy_missing(self, zfs, runner):
        runner.on(["zfs", "destroy"], returncode=1, stderr="could not find any snapshots to destroy; dataset does not exist")

        with pytest.raises(NotFoundError):
            zfs.destroy("tank/data@nope")

    def test_destroy_with_clones_surfaces_stderr(self, zfs, runner):
        runner.on(
            ["zfs", "destroy"],
            returncode=1,
            stderr="cannot destroy 'tank/data@base': snapshot has dependent clones",
        )

        with pytest.raises(BackendError) as exc_info:
            zfs.destroy("tank/data@base")

        assert "dependent clones" in exc_info.value.stderr

    def test_clone_creates_parents(self, zfs, runner):
        zfs.clone_from("tank/data@base", "tank/branches/feature/login")

        assert runner.calls[-1] == [
            "zfs", "clone", "-p", "tank/data@base", "tank/branches/feature/login",
        ]

    def test_attributes(self, zfs, runner):
        zfs.set_attribute("tank/branches/dev", "zvpg:port", "6001")
        zfs.clear_attribute("tank/branches/dev", "zvpg:port")

        assert runner.calls == [
            ["zfs", "set", "zvpg:port=6001", "tank/branches/dev"],
            ["zfs", "inherit", "zvpg:port", "tank/branches/dev"],
        ]

    def test_get_attribute(self, zfs, runner):
        runner.on(["zfs", "get"], stdout="6001\n")
        assert zfs.get_attribute("tank/branches/dev", "zvpg:port") == "6001"
        assert runner.calls[-1] == [
            "zfs", "get", "-H", "-s", "local", "-o", "value", "zvpg:port", "tank/branches/dev",
        ]

        assert zfs.get_attribute("tank/branches/dev", "zvpg:port", inherited=True) == "6001"
        assert runner.calls[-1][3:5] == ["-s", "local,inherited"]

        runner.on(["zfs", "get"], stdout="-\n")
        assert zfs.get_attribute("tank/branches/dev", "zvpg:port") is None

        runner.on(["zfs", "get"], returncode=1, stderr="dataset does not exist")
        assert zfs.get_attribute("tank/branches/gone", "zvpg:port") is None

    def test_get_attribute_ignores_parent_value(self, zfs):
        """A nested branch does not pick up the port of the branch above it."""
        local = {("tank/branches/feature", "zvpg:port"): "6001"}

        def zfs_get(args, **kwargs):
            # zfs get -H [-s sources] -o value <key> <path>
            key, path = args[-2], args[-1]
            sources = args[args.index("-s") + 1].split(",") if "-s" in args else None
            value, source = "-", "default"
            dataset = path
            while dataset:
                if (dataset, key) in local:
                    value = local[(dataset, key)]
                    source = "local" if dataset == path else "inherited"
                    break
                dataset = dataset.rpartition("/")[0]
            stdout = f"{value}\n" if sources is None or source in sources else ""
            return subprocess.CompletedProcess(args, 0, stdout=stdout, stderr="")

        zfs.runner = zfs_get

        assert zfs.get_attribute("tank/branches/feature", "zvpg:port") == "6001"
        assert zfs.get_attribute("tank/branches/feature/x", "zvpg:port") is None
        assert zfs.get_attribute("tank/branches/feature/x", "zvpg:port", inherited=True) == "6001"

    def test_list_nodes(self, zfs, runner):
        runner.on(
            ["zfs", "list"],
            stdout=(
                "tank/data@base\t-\t65536\t-\t8388608\t1.50\t1704067200\n"
                "tank/branches/dev@wip\t-\t0\t-\t8388608\t1.00x\t1704067300\n"
            ),
        )

        nodes = zfs.list_nodes(NodeKind.SNAPSHOT, "tank")

        assert runner.calls[-1] == [
            "zfs", "list", "-H", "-p", "-r", "-t", "snapshot", "-s", "creation",
            "-o", "name,origin,used,available,referenced,compressratio,creation", "tank",
        ]
        assert [n.path for n in nodes] == ["tank/data@base", "tank/branches/dev@wip"]
        base = nodes[0]
        assert base.origin is None
        assert base.used == "64 KB"
        assert base.used_bytes == 65536
        assert base.available == ""
        assert base.referenced == "8 MB"
        assert base.compress_ratio == "1.50x"
        assert base.creation.year == 2024
        assert base.dataset == "tank/data"
        assert base.name == "base"

    def test_list_clones(self, zfs, runner):
        runner.on(
            ["zfs", "list"],
            stdout="tank/branches/dev\ttank/data@base\t1024\t10737418240\t8388608\t1.00x\t1704067300\n",
        )

        node = zfs.list_nodes("filesystem", "tank/branches")[0]

        assert node.kind == NodeKind.FILESYSTEM
        assert node.origin == "tank/data@base"
        assert node.available == "10 GB"

    def test_list_missing_root(self, zfs, runner):
        runner.on(["zfs", "list"], returncode=1, stderr="cannot open 'tank/branches': dataset does not exist")
        assert zfs.list_nodes(NodeKind.FILESYSTEM, "tank/branches") == []

    def test_get_node(self, zfs, runner):
        runner.on(
            ["zfs", "list"],
            stdout=(
                "tank/branches/dev\ttank/data@base\t1024\t1024\t1024\t1.00x\t1704067300\n"
                "tank/branches/dev/child\ttank/data@base\t1024\t1024\t1024\t1.00x\t1704067400\n"
            ),
        )

        assert zfs.get_node("tank/branches/dev").path == "tank/branches/dev"
        assert zfs.get_node("tank/branches/other") is None

    def test_pool_status(self, zfs, runner):
        runner.on(["zpool"], stdout="tank\tONLINE\t10737418240\t1073741824\t9663676416\n")

        pool = zfs.pool_status("tank")

        assert runner.calls[-1] == [
            "zpool", "list", "-H", "-p", "-o", "name,health,size,alloc,free", "tank",
        ]
        assert pool.health == "ONLINE"
        assert pool.size == "10 GB"
        assert pool.used == "1 GB"
        assert pool.available == "9 GB"

    def test_pool_status_garbled(self, zfs, runner):
        runner.on(["zpool"], stdout="tank\n")
        with pytest.raises(BackendError):
            zfs.pool_status("tank")

    def test_zfs_not_installed(self):
        def runner(args, **kwargs):
            raise FileNotFoundError(args[0])

        backend = ZfsBackend(ZvpgConfig(), runner=runner)

        with pytest.raises(BackendUnavailableError):
            backend.exists("tank")

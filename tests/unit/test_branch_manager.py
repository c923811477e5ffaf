"""Tests for BranchManager."""

from pathlib import Path

import pytest

from zvpg.core.errors import (
    AlreadyExistsError,
    AlreadyRunningError,
    BackendError,
    DeleteFailedError,
    HasDependentsError,
    InstanceStatusUnknownError,
    NoPortsAvailableError,
    NoSnapshotsError,
    NotFoundError,
    PartialFailureError,
    PortBindError,
    PortOutOfRangeError,
    PortUnavailableError,
    SourceMissingError,
)
from zvpg.infrastructure.dataset_backend import (
    ATTR_BRANCH,
    ATTR_BRANCH_NAME,
    ATTR_INSTANCE_ID,
    ATTR_PARENT_BRANCH,
    ATTR_PARENT_SNAPSHOT,
    ATTR_PORT,
)
from zvpg.managers.branch import BranchManager
from zvpg.models import InstanceStatus
from zvpg.utils.name_validator import InvalidNameError


@pytest.fixture
def base(snapshots):
    """The primary data with one snapshot called base."""
    return snapshots.create_snapshot("base", "Base snapshot")


class TestCreateBranch:
    """Test branch creation."""

    def test_create_branch(self, branches, backend, runtime, config, base):
        branch = branches.create_branch("feature", port=6001, source_snapshot="base")

        assert branch.name == "feature"
        assert branch.dataset == "testpool/branches/feature"
        assert branch.mount == Path(config.mount_dir) / "testpool" / "branches" / "feature"
        assert branch.parent_snapshot == "testpool/data@base"
        assert branch.parent_branch == "main"
        assert branch.port == 6001
        assert branch.status == InstanceStatus.RUNNING
        assert branch.clones == []
        assert branch.created is not None

        attributes = backend.attributes("testpool/branches/feature")
        assert attributes[ATTR_BRANCH_NAME] == "feature"
        assert attributes[ATTR_PARENT_BRANCH] == "main"
        assert attributes[ATTR_PARENT_SNAPSHOT] == "testpool/data@base"
        assert attributes[ATTR_PORT] == "6001"
        assert attributes[ATTR_INSTANCE_ID] == str(branch.mount)
        assert runtime.instances == {str(branch.mount): 6001}

    def test_info_after_create(self, branches, base):
        branches.create_branch("feature", source_snapshot="base")

        info = branches.get_branch_info("feature")

        assert info.parent_snapshot == "testpool/data@base"
        assert info.clones == []

    def test_creates_branches_container_lazily(self, branches, backend, base):
        assert not backend.exists("testpool/branches")

        branches.create_branch("feature")

        assert backend.exists("testpool/branches")

    def test_branches_container_created_concurrently(self, branches, backend, base, monkeypatch):
        original_exists = backend.exists

        def exists(path):
            # Someone else creates the container between our check and create
            if path == "testpool/branches" and not original_exists(path):
                backend.create(path)
                return False
            return original_exists(path)

        monkeypatch.setattr(backend, "exists", exists)

        branch = branches.create_branch("feature")

        assert branch.name == "feature"

    def test_defaults_to_latest_snapshot(self, branches, snapshots, base):
        snapshots.create_snapshot("newer")

        branch = branches.create_branch("feature")

        assert branch.parent_snapshot == "testpool/data@newer"

    def test_auto_port_is_lowest_free(self, branches, runtime, base):
        runtime.external_ports.add(6001)

        first = branches.create_branch("one")
        second = branches.create_branch("two")

        assert first.port == 6002
        assert second.port == 6003

    def test_parent_label(self, branches, base):
        branch = branches.create_branch("feature", parent_branch="develop")
        assert branch.parent_branch == "develop"

    def test_parent_label_is_not_validated(self, branches, base):
        branch = branches.create_branch("feature", parent_branch="does-not-exist")
        assert branch.parent_branch == "does-not-exist"

    def test_nested_branch_name(self, branches, backend, base):
        branch = branches.create_branch("feature/login")

        assert branch.dataset == "testpool/branches/feature/login"
        assert [b.name for b in branches.list_branches()] == ["feature/login"]

    def test_invalid_name(self, branches, backend, base):
        with pytest.raises(InvalidNameError):
            branches.create_branch("../escape")
        assert not backend.exists("testpool/branches")

    def test_custom_naming_pattern(self, config, backend, instances, ports, snapshots, base):
        config = config.model_copy(update={"branch_naming_pattern": r"^dev-\d+$"})
        manager = BranchManager(config, backend, instances, ports, snapshots=snapshots)

        with pytest.raises(InvalidNameError):
            manager.create_branch("feature")
        assert manager.create_branch("dev-1").name == "dev-1"

    def test_already_exists(self, branches, base):
        branches.create_branch("feature")
        with pytest.raises(AlreadyExistsError):
            branches.create_branch("feature")

    def test_no_snapshots(self, branches, backend):
        with pytest.raises(NoSnapshotsError):
            branches.create_branch("b1")
        assert not backend.exists("testpool/branches/b1")

    def test_missing_source(self, branches, backend, base):
        with pytest.raises(SourceMissingError):
            branches.create_branch("feature", source_snapshot="nope")
        assert not backend.exists("testpool/branches/feature")

    def test_explicit_policy_requires_source(self, config, backend, instances, ports, base):
        config = config.model_copy(update={"snapshot_source_policy": "explicit"})
        manager = BranchManager(config, backend, instances, ports)

        with pytest.raises(NoSnapshotsError):
            manager.create_branch("feature")
        assert manager.create_branch("feature", source_snapshot="base").port == 6001

    def test_custom_source_resolver(self, config, backend, instances, ports, snapshots, base):
        snapshots.create_snapshot("pinned")
        snapshots.create_snapshot("newest")
        manager = BranchManager(
            config,
            backend,
            instances,
            ports,
            snapshots=snapshots,
            source_resolver=lambda dataset: f"{dataset}@pinned",
        )

        assert manager.create_branch("feature").parent_snapshot == "testpool/data@pinned"

    def test_from_branch(self, branches, base):
        branches.create_branch("dev")
        branches.create_branch_snapshot("dev", "wip", "work in progress")

        branch = branches.create_branch("hotfix", from_branch="dev")

        assert branch.parent_snapshot == "testpool/branches/dev@wip"
        assert branch.parent_branch == "dev"

    def test_from_branch_without_snapshots(self, branches, base):
        branches.create_branch("dev")
        with pytest.raises(NoSnapshotsError):
            branches.create_branch("hotfix", from_branch="dev")

    def test_from_missing_branch(self, branches, base):
        with pytest.raises(NotFoundError):
            branches.create_branch("hotfix", from_branch="ghost")

    def test_port_in_use_checked_before_clone(self, branches, backend, base):
        branches.create_branch("one", port=6001)

        with pytest.raises(PortUnavailableError):
            branches.create_branch("two", port=6001)
        assert not backend.exists("testpool/branches/two")

    def test_port_out_of_range(self, branches, backend, base):
        with pytest.raises(PortOutOfRangeError):
            branches.create_branch("feature", port=7000)
        assert not backend.exists("testpool/branches/feature")

    def test_no_ports_available(self, branches, backend, runtime, base):
        runtime.external_ports.update(range(6001, 6006))

        with pytest.raises(NoPortsAvailableError):
            branches.create_branch("feature")
        assert not backend.exists("testpool/branches/feature")

    def test_bind_race_retries_once(self, branches, runtime, base):
        runtime.race_ports.add(6001)

        branch = branches.create_branch("feature")

        assert branch.port == 6002
        assert branch.status == InstanceStatus.RUNNING

    def test_bind_race_on_explicit_port(self, branches, backend, runtime, base):
        runtime.race_ports.add(6003)

        with pytest.raises(PartialFailureError) as exc_info:
            branches.create_branch("feature", port=6003)

        assert isinstance(exc_info.value.__cause__, PortUnavailableError)
        assert backend.exists("testpool/branches/feature")

    def test_bind_race_twice(self, branches, runtime, base):
        runtime.race_ports.update({6001, 6002})

        with pytest.raises(PartialFailureError) as exc_info:
            branches.create_branch("feature")
        assert isinstance(exc_info.value.__cause__, PortBindError)

    def test_startup_failure_keeps_branch(self, branches, backend, runtime, base):
        runtime.never_ready = True

        with pytest.raises(PartialFailureError) as exc_info:
            branches.create_branch("feature", port=6001)

        branch = exc_info.value.result
        assert branch.name == "feature"
        assert branch.port is None
        assert branch.status == InstanceStatus.STOPPED
        assert backend.exists("testpool/branches/feature")
        assert ATTR_PORT not in backend.attributes("testpool/branches/feature")

    def test_failed_start_releases_port(self, branches, runtime, base):
        runtime.never_ready = True
        with pytest.raises(PartialFailureError):
            branches.create_branch("one", port=6001)

        runtime.never_ready = False
        assert branches.create_branch("two").port == 6001


class TestStartStopInstance:
    """Test the instance transitions of a branch."""

    def test_stop_and_start(self, branches, backend, runtime, base):
        branches.create_branch("feature", port=6001)

        assert branches.stop_instance("feature") is True

        info = branches.get_branch_info("feature")
        assert info.status == InstanceStatus.STOPPED
        assert info.port is None
        assert ATTR_INSTANCE_ID not in backend.attributes("testpool/branches/feature")
        assert runtime.instances == {}

        restarted = branches.start_instance("feature", port=6002)
        assert restarted.port == 6002
        assert restarted.status == InstanceStatus.RUNNING

    def test_stop_without_port_is_noop(self, branches, backend, runtime, base):
        runtime.never_ready = True
        with pytest.raises(PartialFailureError):
            branches.create_branch("feature")
        before = backend.attributes("testpool/branches/feature")
        stops = list(runtime.stopped)

        assert branches.stop_instance("feature") is False

        assert backend.attributes("testpool/branches/feature") == before
        assert runtime.stopped == stops

    def test_stop_missing_branch(self, branches):
        with pytest.raises(NotFoundError):
            branches.stop_instance("ghost")

    def test_stop_clears_attributes_even_when_stop_fails(self, branches, backend, runtime, base):
        branches.create_branch("feature")
        runtime.fail_graceful_stop = True
        runtime.fail_immediate_stop = True

        with pytest.raises(PartialFailureError):
            branches.stop_instance("feature")

        attributes = backend.attributes("testpool/branches/feature")
        assert ATTR_PORT not in attributes
        assert ATTR_INSTANCE_ID not in attributes

    def test_stop_crashed_instance(self, branches, backend, runtime, base):
        branch = branches.create_branch("feature")
        runtime.instances.clear()

        assert branches.stop_instance("feature") is True

        assert runtime.stopped == []
        assert ATTR_PORT not in backend.attributes(branch.dataset)

    def test_start_already_running(self, branches, backend, runtime, base):
        branches.create_branch("feature", port=6001)
        attributes = backend.attributes("testpool/branches/feature")

        with pytest.raises(AlreadyRunningError):
            branches.start_instance("feature", port=6002)

        assert backend.attributes("testpool/branches/feature") == attributes
        assert len(runtime.started) == 1

    def test_start_with_stale_port(self, branches, runtime, base):
        branches.create_branch("feature", port=6001)
        runtime.instances.clear()

        branch = branches.start_instance("feature")

        assert branch.port == 6001
        assert branch.status == InstanceStatus.RUNNING

    def test_start_when_status_unknown(self, branches, backend, runtime, ports, base):
        branches.create_branch("feature", port=6001)
        attributes = backend.attributes("testpool/branches/feature")
        runtime.probe_error = True

        with pytest.raises(InstanceStatusUnknownError):
            branches.start_instance("feature")

        assert backend.attributes("testpool/branches/feature") == attributes
        assert len(runtime.started) == 1
        assert list(runtime.instances.values()) == [6001]
        assert not ports.is_available(6001)

    def test_stop_error_survives_failed_clear(self, branches, backend, runtime, monkeypatch, base):
        branches.create_branch("feature", port=6001)
        runtime.fail_graceful_stop = True
        runtime.fail_immediate_stop = True
        clear = backend.clear_attribute

        def clear_attribute(path, key):
            if key == ATTR_PORT:
                raise BackendError(f"cannot inherit {key} for {path}: pool is read-only")
            clear(path, key)

        monkeypatch.setattr(backend, "clear_attribute", clear_attribute)

        with pytest.raises(PartialFailureError, match="Could not stop instance"):
            branches.stop_instance("feature")

        attributes = backend.attributes("testpool/branches/feature")
        assert attributes[ATTR_PORT] == "6001"
        assert ATTR_INSTANCE_ID not in attributes

    def test_stopped_but_attribute_not_cleared(self, branches, backend, runtime, ports, monkeypatch, base):
        branches.create_branch("feature", port=6001)
        clear = backend.clear_attribute

        def clear_attribute(path, key):
            if key == ATTR_PORT:
                raise BackendError(f"cannot inherit {key} for {path}: pool is read-only")
            clear(path, key)

        monkeypatch.setattr(backend, "clear_attribute", clear_attribute)

        with pytest.raises(PartialFailureError, match=ATTR_PORT):
            branches.stop_instance("feature")

        assert runtime.instances == {}
        assert ATTR_INSTANCE_ID not in backend.attributes("testpool/branches/feature")
        assert ports.is_available(6001)

    def test_nested_branch_does_not_inherit_parent_instance(self, branches, backend, runtime, base):
        parent = branches.create_branch("feature", port=6001)
        branches.create_branch("feature/x", port=6002)

        assert branches.stop_instance("feature/x") is True

        child = branches.get_branch_info("feature/x")
        assert child.port is None
        assert child.status == InstanceStatus.STOPPED
        assert backend.get_attribute(child.dataset, ATTR_PORT) is None
        assert backend.get_attribute(child.dataset, ATTR_PORT, inherited=True) == "6001"
        assert branches.stop_instance("feature/x") is False

        branches.delete_branch("feature/x")

        assert runtime.instances == {str(parent.mount): 6001}
        assert branches.get_branch_info("feature").status == InstanceStatus.RUNNING

    def test_start_on_port_in_use(self, branches, base):
        branches.create_branch("one", port=6001)
        branches.create_branch("two", port=6002)
        branches.stop_instance("two")

        with pytest.raises(PortUnavailableError):
            branches.start_instance("two", port=6001)

    def test_start_missing_branch(self, branches):
        with pytest.raises(NotFoundError):
            branches.start_instance("ghost")


class TestDeleteBranch:
    """Test branch deletion."""

    def test_delete(self, branches, backend, runtime, base):
        branches.create_branch("feature")

        branches.delete_branch("feature")

        assert not branches.branch_exists("feature")
        assert runtime.instances == {}

    def test_delete_missing(self, branches):
        with pytest.raises(NotFoundError):
            branches.delete_branch("ghost")

    def test_delete_with_nested_clone(self, branches, backend, base):
        branches.create_branch("feature")
        branches.create_branch("feature/child")

        with pytest.raises(HasDependentsError) as exc_info:
            branches.delete_branch("feature")

        assert exc_info.value.dependents == ["testpool/branches/feature/child"]
        assert branches.branch_exists("feature")

    def test_delete_with_clone_of_branch_snapshot(self, branches, base):
        branches.create_branch("dev")
        branches.create_branch_snapshot("dev", "wip")
        branches.create_branch("hotfix", from_branch="dev")

        with pytest.raises(HasDependentsError) as exc_info:
            branches.delete_branch("dev")
        assert exc_info.value.dependents == ["testpool/branches/hotfix"]

        branches.delete_branch("hotfix")
        branches.delete_branch("dev")
        assert not branches.branch_exists("dev")

    def test_force_delete_nested(self, branches, runtime, base):
        branches.create_branch("feature")
        branches.create_branch("feature/child")

        branches.delete_branch("feature", force=True)

        assert not branches.branch_exists("feature")
        assert not branches.branch_exists("feature/child")

    def test_delete_when_instance_cannot_be_stopped(self, branches, runtime, base):
        branches.create_branch("feature")
        runtime.fail_graceful_stop = True
        runtime.fail_immediate_stop = True

        branches.delete_branch("feature")

        assert not branches.branch_exists("feature")

    def test_delete_when_runtime_unreachable(self, branches, runtime, base):
        branches.create_branch("feature")
        runtime.probe_error = True
        runtime.fail_graceful_stop = True
        runtime.fail_immediate_stop = True

        branches.delete_branch("feature")

        assert not branches.branch_exists("feature")

    def test_backend_refusal_is_delete_failed(self, branches, backend, base):
        branches.create_branch("feature")
        backend.fail_destroy.add("testpool/branches/feature")

        with pytest.raises(DeleteFailedError) as exc_info:
            branches.delete_branch("feature")

        assert "dataset is busy" in exc_info.value.stderr
        assert branches.branch_exists("feature")


class TestBranchSnapshots:
    """Test snapshots taken from branches."""

    def test_create_branch_snapshot(self, branches, snapshots, backend, base):
        branches.create_branch("dev")

        snapshot = branches.create_branch_snapshot("dev", "v1", "First version")

        assert snapshot.full_name == "testpool/branches/dev@v1"
        assert snapshot.branch == "dev"
        assert backend.attributes(snapshot.full_name)[ATTR_BRANCH] == "dev"

        info = snapshots.get_snapshot_info("testpool/branches/dev@v1")
        assert info.message == "First version"
        assert info.clones == []

    def test_default_message(self, branches, base):
        branches.create_branch("dev")
        assert branches.create_branch_snapshot("dev", "v1").message == "Branch snapshot"

    def test_branch_snapshot_clones_follow_branch_lifecycle(self, branches, snapshots, base):
        branches.create_branch("dev")
        branches.create_branch_snapshot("dev", "v1", "First version")
        branches.create_branch("child", source_snapshot="testpool/branches/dev@v1")

        info = snapshots.get_snapshot_info("testpool/branches/dev@v1")
        assert info.message == "First version"
        assert info.clones == ["testpool/branches/child"]

        branches.delete_branch("child")

        assert snapshots.get_snapshot_info("testpool/branches/dev@v1").clones == []

    def test_missing_branch(self, branches, base):
        with pytest.raises(NotFoundError):
            branches.create_branch_snapshot("ghost", "v1")

    def test_duplicate(self, branches, base):
        branches.create_branch("dev")
        branches.create_branch_snapshot("dev", "v1")
        with pytest.raises(AlreadyExistsError):
            branches.create_branch_snapshot("dev", "v1")

    def test_invalid_name(self, branches, base):
        branches.create_branch("dev")
        with pytest.raises(InvalidNameError):
            branches.create_branch_snapshot("dev", "bad name")


class TestBranchQueries:
    """Test listing and inspecting branches."""

    def test_list_empty(self, branches):
        assert branches.list_branches() == []

    def test_list(self, branches, runtime, base):
        branches.create_branch("one", port=6001)
        branches.create_branch("two", port=6002)
        branches.stop_instance("two")

        listed = {b.name: b for b in branches.list_branches()}

        assert set(listed) == {"one", "two"}
        assert listed["one"].status == InstanceStatus.RUNNING
        assert listed["two"].status == InstanceStatus.STOPPED
        assert listed["two"].port is None

    def test_stale_port_reported_stopped(self, branches, runtime, base):
        branches.create_branch("feature", port=6001)
        runtime.instances.clear()

        info = branches.get_branch_info("feature")

        assert info.port == 6001
        assert info.status == InstanceStatus.STOPPED
        assert info.has_stale_port

    def test_unknown_status_when_probe_fails(self, branches, runtime, base):
        branches.create_branch("feature")
        runtime.probe_error = True

        assert branches.get_branch_info("feature").status == InstanceStatus.UNKNOWN

    def test_info_missing(self, branches):
        with pytest.raises(NotFoundError):
            branches.get_branch_info("ghost")

    def test_malformed_port_attribute(self, branches, backend, base):
        branches.create_branch("feature")
        backend.set_attribute("testpool/branches/feature", ATTR_PORT, "not-a-port")

        info = branches.get_branch_info("feature")

        assert info.port is None
        assert info.status == InstanceStatus.STOPPED

    def test_branch_exists(self, branches, base):
        assert not branches.branch_exists("feature")
        branches.create_branch("feature")
        assert branches.branch_exists("feature")

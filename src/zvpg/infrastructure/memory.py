"""In-memory dataset backend and instance runtime.

These mirror the behaviour of ZFS and of a real runtime closely enough to
drive the snapshot and branch state machines without a pool or a database
server: ZFS refuses to destroy a snapshot that still has clones, refuses a
non-recursive destroy of a dataset with children, and creates missing parents
when cloning with ``-p``.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional, Set, Tuple, Union

from zvpg.core.errors import (
    AlreadyExistsError,
    BackendError,
    BackendUnavailableError,
    NotFoundError,
    PortBindError,
)
from zvpg.infrastructure.dataset_backend import DatasetBackend
from zvpg.infrastructure.instance_runtime import (
    InstanceRuntime,
    InstanceSpec,
    StopMode,
    container_name,
)
from zvpg.models import DatasetNode, NodeKind, PoolStatus


@dataclass
class _Node:
    path: str
    kind: NodeKind
    creation: datetime
    origin: Optional[str] = None
    attributes: Dict[str, str] = field(default_factory=dict)


class InMemoryBackend(DatasetBackend):
    """Dataset backend keeping every node in a dictionary."""

    def __init__(self, pools: Iterable[str] = (), pool_health: str = "ONLINE"):
        self._nodes: Dict[str, _Node] = {}
        self._clock = datetime(2024, 1, 1, tzinfo=timezone.utc)
        self.pool_health = pool_health
        self.unreachable = False
        self.fail_destroy: Set[str] = set()
        self.calls: List[Tuple[str, ...]] = []
        for pool in pools:
            self._add(pool, NodeKind.FILESYSTEM)

    def _tick(self) -> datetime:
        self._clock += timedelta(seconds=1)
        return self._clock

    def _add(self, path: str, kind: NodeKind, origin: Optional[str] = None) -> None:
        self._nodes[path] = _Node(path=path, kind=kind, creation=self._tick(), origin=origin)

    def _check_reachable(self) -> None:
        if self.unreachable:
            raise BackendUnavailableError("Command not found: zfs", command=["zfs"])

    def _require(self, path: str) -> _Node:
        node = self._nodes.get(path)
        if node is None:
            raise NotFoundError(f"Dataset does not exist: {path}")
        return node

    def _subtree(self, path: str) -> List[str]:
        return [
            p for p in self._nodes
            if p == path or p.startswith(path + "/") or p.startswith(path + "@")
        ]

    @staticmethod
    def _parent(path: str) -> Optional[str]:
        if "@" in path:
            return path.split("@", 1)[0]
        if "/" in path:
            return path.rsplit("/", 1)[0]
        return None

    def exists(self, path: str) -> bool:
        self._check_reachable()
        return path in self._nodes

    def create(self, path: str) -> None:
        self._check_reachable()
        self.calls.append(("create", path))
        if path in self._nodes:
            raise AlreadyExistsError(f"Dataset already exists: {path}")

        parent = self._parent(path)
        if parent is None or parent not in self._nodes:
            raise BackendError(
                f"cannot create '{path}': parent does not exist",
                stderr="parent does not exist",
            )
        kind = NodeKind.SNAPSHOT if "@" in path else NodeKind.FILESYSTEM
        self._add(path, kind)

    def destroy(self, path: str, recursive: bool = False) -> None:
        self._check_reachable()
        self.calls.append(("destroy", path, str(recursive)))
        self._require(path)

        if path in self.fail_destroy:
            raise BackendError(f"cannot destroy '{path}': dataset is busy", stderr="dataset is busy")

        doomed = self._subtree(path) if recursive else [path]
        if not recursive and len(self._subtree(path)) > 1:
            raise BackendError(
                f"cannot destroy '{path}': filesystem has children",
                stderr="filesystem has children",
            )

        dependents = [
            n.path for n in self._nodes.values()
            if n.origin in doomed and n.path not in doomed
        ]
        if dependents:
            raise BackendError(
                f"cannot destroy '{path}': snapshot has dependent clones: {', '.join(dependents)}",
                stderr="snapshot has dependent clones",
            )

        for p in doomed:
            del self._nodes[p]

    def clone_from(self, origin: str, new_path: str) -> None:
        self._check_reachable()
        self.calls.append(("clone", origin, new_path))
        source = self._nodes.get(origin)
        if source is None or source.kind != NodeKind.SNAPSHOT:
            raise BackendError(
                f"cannot open '{origin}': dataset does not exist",
                stderr="dataset does not exist",
            )
        if new_path in self._nodes:
            raise AlreadyExistsError(f"Dataset already exists: {new_path}")

        # zfs clone -p
        missing = []
        parent = self._parent(new_path)
        while parent is not None and parent not in self._nodes:
            missing.append(parent)
            parent = self._parent(parent)
        if parent is None:
            raise BackendError(f"cannot create '{new_path}': no such pool", stderr="no such pool")
        for p in reversed(missing):
            self._add(p, NodeKind.FILESYSTEM)

        self._add(new_path, NodeKind.FILESYSTEM, origin=origin)

    def set_attribute(self, path: str, key: str, value: str) -> None:
        self._check_reachable()
        self._require(path).attributes[key] = value

    def get_attribute(
        self, path: str, key: str, inherited: bool = False
    ) -> Optional[str]:
        self._check_reachable()
        node = self._nodes.get(path)
        if node is None:
            return None

        # Snapshots inherit from their dataset, filesystems from their parent
        while node is not None:
            value = node.attributes.get(key)
            if value or not inherited:
                return value or None
            parent = self._parent(node.path)
            node = self._nodes.get(parent) if parent else None
        return None

    def clear_attribute(self, path: str, key: str) -> None:
        self._check_reachable()
        self._require(path).attributes.pop(key, None)

    def list_nodes(
        self, kind: Union[NodeKind, str], root: str
    ) -> List[DatasetNode]:
        self._check_reachable()
        kind = NodeKind(kind)
        if root not in self._nodes:
            return []

        nodes = [self._nodes[p] for p in self._subtree(root)]
        nodes = sorted((n for n in nodes if n.kind == kind), key=lambda n: n.creation)
        return [
            DatasetNode(
                path=n.path,
                kind=n.kind,
                origin=n.origin,
                used="64 KB",
                used_bytes=65536,
                available="" if n.kind == NodeKind.SNAPSHOT else "10 GB",
                referenced="8 MB",
                compress_ratio="1.00x",
                creation=n.creation,
            )
            for n in nodes
        ]

    def pool_status(self, pool: str) -> PoolStatus:
        self._check_reachable()
        if pool not in self._nodes:
            raise BackendError(f"cannot open '{pool}': no such pool", stderr="no such pool")
        return PoolStatus(
            name=pool, health=self.pool_health, size="10 GB", used="1 GB", available="9 GB"
        )

    def attributes(self, path: str) -> Dict[str, str]:
        """All attributes of a node (test helper)."""
        return dict(self._require(path).attributes)


class InMemoryRuntime(InstanceRuntime):
    """Runtime that tracks instances without starting anything.

    Ports listed in ``external_ports`` are treated as held by other programs.
    Ports in ``race_ports`` get taken by someone else just before the bind.
    """

    def __init__(self, kind: str = "process"):
        self.kind = kind
        self.instances: Dict[str, int] = {}
        self.external_ports: Set[int] = set()
        self.race_ports: Set[int] = set()
        self.never_ready = False
        self.fail_graceful_stop = False
        self.fail_immediate_stop = False
        self.probe_error = False
        self.started: List[InstanceSpec] = []
        self.stopped: List[Tuple[str, str]] = []

    def port_in_use(self, port: int) -> bool:
        """Port probe seeing both external programs and our instances."""
        return port in self.external_ports or port in self.instances.values()

    def start(self, spec: InstanceSpec) -> str:
        if spec.port in self.race_ports:
            self.race_ports.discard(spec.port)
            self.external_ports.add(spec.port)
        if self.port_in_use(spec.port):
            raise PortBindError(
                spec.port,
                f"Port {spec.port} became unavailable: address already in use",
                stderr="address already in use",
            )

        if self.kind == "container":
            instance_id = container_name(spec.name, spec.port)
        else:
            instance_id = str(spec.mount_path)
        self.instances[instance_id] = spec.port
        self.started.append(spec)
        return instance_id

    def stop(
        self,
        instance_id: str,
        mode: StopMode = StopMode.GRACEFUL,
        timeout: Optional[int] = None,
    ) -> None:
        mode = StopMode(mode)
        self.stopped.append((instance_id, mode.value))
        if mode == StopMode.GRACEFUL and self.fail_graceful_stop:
            raise BackendError(f"pg_ctl: server does not shut down ({instance_id})")
        if mode == StopMode.IMMEDIATE and self.fail_immediate_stop:
            raise BackendError(f"pg_ctl: could not send stop signal ({instance_id})")
        self.instances.pop(instance_id, None)

    def is_live(self, instance_id: str) -> bool:
        if self.probe_error:
            raise BackendError("runtime probe failed")
        return instance_id in self.instances

    def is_ready(self, instance_id: str, port: int) -> bool:
        return not self.never_ready and instance_id in self.instances

    def version(self) -> str:
        return "pg_ctl (PostgreSQL) 17.0"

    def available(self) -> bool:
        return True

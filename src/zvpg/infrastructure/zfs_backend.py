"""ZFS implementation of the dataset backend.

Uses the ``zfs`` and ``zpool`` CLIs in scripted mode (``-H``: no headers,
tab separated; ``-p``: exact, parseable numbers).
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional, Union

from zvpg.config import ZvpgConfig
from zvpg.core.errors import AlreadyExistsError, BackendError, NotFoundError
from zvpg.infrastructure.command import Runner, run_command
from zvpg.infrastructure.dataset_backend import DatasetBackend
from zvpg.models import DatasetNode, NodeKind, PoolStatus
from zvpg.utils.formatting import format_bytes

logger = logging.getLogger(__name__)

LIST_PROPERTIES = "name,origin,used,available,referenced,compressratio,creation"

_NOT_FOUND_MARKERS = ("does not exist", "no such pool", "no such dataset")


def _is_not_found(error: BackendError) -> bool:
    return any(marker in error.stderr.lower() for marker in _NOT_FOUND_MARKERS)


def _unset(value: str) -> Optional[str]:
    """Map the ZFS "no value" markers to None."""
    value = value.strip()
    return None if value in ("", "-") else value


def _size(value: str) -> str:
    value = value.strip()
    if value in ("", "-"):
        return ""
    try:
        return format_bytes(int(value))
    except ValueError:
        return value


class ZfsBackend(DatasetBackend):
    """Dataset backend driving a local ZFS installation."""

    def __init__(self, config: ZvpgConfig, runner: Optional[Runner] = None):
        """Initialize the backend.

        Args:
            config: zvpg configuration (tool paths)
            runner: Replacement for ``subprocess.run`` (used by tests)
        """
        self.config = config
        self.runner = runner

    def _zfs(self, *args: str, check: bool = True):
        return run_command([self.config.zfs_bin, *args], runner=self.runner, check=check)

    def exists(self, path: str) -> bool:
        result = self._zfs("list", "-H", "-o", "name", "-t", "all", path, check=False)
        return result.returncode == 0

    def create(self, path: str) -> None:
        if self.exists(path):
            raise AlreadyExistsError(f"Dataset already exists: {path}")

        command = "snapshot" if "@" in path else "create"
        logger.debug(f"zfs {command} {path}")
        try:
            self._zfs(command, path)
        except BackendError as e:
            if "already exists" in e.stderr.lower():
                raise AlreadyExistsError(f"Dataset already exists: {path}") from e
            raise

    def destroy(self, path: str, recursive: bool = False) -> None:
        args = ["destroy"]
        if recursive:
            args.append("-r")
        args.append(path)
        try:
            self._zfs(*args)
        except BackendError as e:
            if _is_not_found(e):
                raise NotFoundError(f"Dataset does not exist: {path}") from e
            raise

    def clone_from(self, origin: str, new_path: str) -> None:
        try:
            self._zfs("clone", "-p", origin, new_path)
        except BackendError as e:
            if "already exists" in e.stderr.lower():
                raise AlreadyExistsError(f"Dataset already exists: {new_path}") from e
            raise

    def set_attribute(self, path: str, key: str, value: str) -> None:
        self._zfs("set", f"{key}={value}", path)

    def get_attribute(
        self, path: str, key: str, inherited: bool = False
    ) -> Optional[str]:
        sources = "local,inherited" if inherited else "local"
        result = self._zfs("get", "-H", "-s", sources, "-o", "value", key, path, check=False)
        if result.returncode != 0:
            # Unset and unreadable attributes are both reported as absent
            logger.debug(f"Could not read {key} on {path}: {(result.stderr or '').strip()}")
            return None
        return _unset(result.stdout or "")

    def clear_attribute(self, path: str, key: str) -> None:
        self._zfs("inherit", key, path)

    def list_nodes(
        self, kind: Union[NodeKind, str], root: str
    ) -> List[DatasetNode]:
        kind = NodeKind(kind)
        try:
            result = self._zfs(
                "list", "-H", "-p", "-r",
                "-t", kind.value,
                "-s", "creation",
                "-o", LIST_PROPERTIES,
                root,
            )
        except BackendError as e:
            if _is_not_found(e):
                return []
            raise

        return [
            self._parse_node(line, kind)
            for line in (result.stdout or "").splitlines()
            if line.strip()
        ]

    def _parse_node(self, line: str, kind: NodeKind) -> DatasetNode:
        fields = line.split("\t")
        fields += [""] * (7 - len(fields))
        name, origin, used, available, referenced, ratio, creation = fields[:7]

        created_at = None
        if creation.strip().isdigit():
            created_at = datetime.fromtimestamp(int(creation), tz=timezone.utc)

        ratio = ratio.strip()
        if ratio and ratio != "-" and not ratio.endswith("x"):
            ratio = f"{ratio}x"

        return DatasetNode(
            path=name,
            kind=kind,
            origin=_unset(origin),
            used=_size(used),
            used_bytes=int(used) if used.strip().isdigit() else 0,
            available=_size(available),
            referenced=_size(referenced),
            compress_ratio="" if ratio == "-" else ratio,
            creation=created_at,
        )

    def pool_status(self, pool: str) -> PoolStatus:
        result = run_command(
            [self.config.zpool_bin, "list", "-H", "-p", "-o", "name,health,size,alloc,free", pool],
            runner=self.runner,
        )
        fields = (result.stdout or "").strip().split("\t")
        if len(fields) < 5:
            raise BackendError(f"Unexpected zpool output: {result.stdout!r}")
        name, health, size, used, available = fields[:5]
        return PoolStatus(
            name=name,
            health=health,
            size=_size(size),
            used=_size(used),
            available=_size(available),
        )

"""Dataset naming for zvpg.

Pure functions mapping logical snapshot and branch names to ZFS dataset paths
and to the host mountpoints of those datasets. Nothing here touches the
backend.
"""

from pathlib import Path
from typing import Tuple

from zvpg.utils.name_validator import InvalidNameError

SNAPSHOT_SEPARATOR = "@"


def _check_bare_name(name: str, kind: str) -> None:
    if not name:
        raise InvalidNameError(f"{kind.capitalize()} name cannot be empty")
    if "/" in name:
        raise InvalidNameError(
            f"Bare {kind} name '{name}' cannot contain a path separator"
        )


def is_qualified_snapshot(name: str) -> bool:
    """Check whether a snapshot reference already names its dataset."""
    return SNAPSHOT_SEPARATOR in name


def snapshot_path(pool: str, data_subdir: str, name: str) -> str:
    """Get the full snapshot path for a snapshot reference.

    Args:
        pool: ZFS pool name
        data_subdir: Dataset of the primary data directory
        name: Either a bare snapshot name (qualified against the primary
            data dataset) or an already qualified ``dataset@name`` path

    Returns:
        Full snapshot path, e.g. ``pool/data@base``

    Raises:
        InvalidNameError: If a bare name is empty or contains a path separator
    """
    if is_qualified_snapshot(name):
        dataset, _, snap = name.partition(SNAPSHOT_SEPARATOR)
        if not dataset or not snap:
            raise InvalidNameError(f"Malformed snapshot path '{name}'")
        return name

    _check_bare_name(name, "snapshot")
    return f"{pool}/{data_subdir}{SNAPSHOT_SEPARATOR}{name}"


def split_snapshot_path(full_name: str) -> Tuple[str, str]:
    """Split ``dataset@name`` into ``(dataset, name)``."""
    dataset, _, name = full_name.partition(SNAPSHOT_SEPARATOR)
    return dataset, name


def branches_root(pool: str, branches_subdir: str = "branches") -> str:
    """Get the dataset path of the branches container."""
    return f"{pool}/{branches_subdir}"


def branch_path(pool: str, name: str, branches_subdir: str = "branches") -> str:
    """Get the dataset path of a branch.

    Branch names may contain ``/`` (``feature/login``) which maps onto nested
    datasets below the branches container.
    """
    if not name:
        raise InvalidNameError("Branch name cannot be empty")
    return f"{branches_root(pool, branches_subdir)}/{name}"


def branch_snapshot_path(
    pool: str, branch: str, snapshot: str, branches_subdir: str = "branches"
) -> str:
    """Get the full path of a snapshot taken from a branch."""
    _check_bare_name(snapshot, "snapshot")
    return f"{branch_path(pool, branch, branches_subdir)}{SNAPSHOT_SEPARATOR}{snapshot}"


def branch_name_from_path(
    pool: str, dataset: str, branches_subdir: str = "branches"
) -> str:
    """Recover a branch name from its dataset path.

    Raises:
        ValueError: If the dataset does not live below the branches container
    """
    prefix = branches_root(pool, branches_subdir) + "/"
    if not dataset.startswith(prefix) or dataset == prefix:
        raise ValueError(f"Dataset '{dataset}' is not a branch of pool '{pool}'")
    return dataset[len(prefix):]


def mount_path(mount_root: str, pool: str, relative_path: str) -> Path:
    """Get the host filesystem mountpoint of a dataset.

    Args:
        mount_root: Root directory all datasets are mounted below
        pool: ZFS pool name
        relative_path: Dataset path relative to the pool, or a full dataset
            path starting with the pool name

    Returns:
        Mountpoint, e.g. ``/var/lib/zvpg/zvpg_pool/branches/feature``
    """
    if relative_path == pool:
        relative_path = ""
    elif relative_path.startswith(pool + "/"):
        relative_path = relative_path[len(pool) + 1:]

    if SNAPSHOT_SEPARATOR in relative_path:
        raise InvalidNameError(
            f"Snapshots are not mounted: '{relative_path}' is a snapshot path"
        )

    base = Path(mount_root) / pool
    return base / relative_path if relative_path else base

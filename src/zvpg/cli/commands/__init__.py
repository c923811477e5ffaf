"""CLI command modules."""

from . import snapshot, commit, branch, clone, status

__all__ = [
    "snapshot",
    "commit",
    "branch",
    "clone",
    "status",
]

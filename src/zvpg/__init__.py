"""zvpg - Git-like version control for PostgreSQL data directories on ZFS."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("zvpg")
except PackageNotFoundError:
    # Package metadata not available (e.g. running from a source checkout)
    __version__ = "0.2.0"

__all__ = ["__version__"]

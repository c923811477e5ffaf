"""Dataset node models as reported by the dataset backend."""

from enum import Enum
from typing import Optional

from pydantic import Field

from .base import TimestampedModel, ZvpgBaseModel


class NodeKind(str, Enum):
    """Kinds of backend nodes."""

    FILESYSTEM = "filesystem"
    SNAPSHOT = "snapshot"


class DatasetNode(TimestampedModel):
    """One node of the copy-on-write store."""

    path: str = Field(description="Full backend path, e.g. pool/data@base")
    kind: NodeKind = Field(description="filesystem or snapshot")
    origin: Optional[str] = Field(
        default=None, description="Snapshot this node was cloned from"
    )
    used: str = Field(default="", description="Space used by the node")
    used_bytes: int = Field(default=0, description="Space used by the node in bytes")
    available: str = Field(default="", description="Space available to the node")
    referenced: str = Field(default="", description="Space referenced by the node")
    compress_ratio: str = Field(default="", description="Compression ratio")

    @property
    def dataset(self) -> str:
        """Dataset part of the path (everything before ``@``)."""
        return self.path.split("@", 1)[0]

    @property
    def name(self) -> str:
        """Snapshot name for snapshots, last path component otherwise."""
        if "@" in self.path:
            return self.path.split("@", 1)[1]
        return self.path.rsplit("/", 1)[-1]


class PoolStatus(ZvpgBaseModel):
    """Health and capacity of the storage pool."""

    name: str
    health: str = "UNKNOWN"
    size: str = "N/A"
    used: str = "N/A"
    available: str = "N/A"

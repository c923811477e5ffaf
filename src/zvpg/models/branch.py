"""Branch and instance models for zvpg."""

from enum import Enum
from pathlib import Path
from typing import List, Optional

from pydantic import Field

from .base import TimestampedModel, ZvpgBaseModel


class InstanceStatus(str, Enum):
    """Liveness of the database instance attached to a branch."""

    RUNNING = "running"
    STOPPED = "stopped"
    UNKNOWN = "unknown"


class InstanceHandle(ZvpgBaseModel):
    """A started database instance."""

    instance_id: str = Field(description="Container name or data directory")
    port: int
    mount_path: Path


class BranchInfo(TimestampedModel):
    """A writable clone of a snapshot, optionally serving a database instance."""

    name: str = Field(description="Branch name")
    dataset: str = Field(description="Full backend path of the branch")
    mount: Path = Field(description="Host mountpoint of the branch")
    parent_branch: Optional[str] = Field(
        default=None, description="Informational lineage label"
    )
    parent_snapshot: Optional[str] = Field(
        default=None, description="Full path of the origin snapshot"
    )
    created: Optional[str] = Field(
        default=None, description="ISO-8601 creation time stamped by zvpg"
    )
    used: str = ""
    available: str = ""
    referenced: str = ""
    compress_ratio: str = ""
    clones: List[str] = Field(
        default_factory=list, description="Child datasets below the branch"
    )
    port: Optional[int] = Field(default=None, description="Port recorded for the instance")
    instance_id: Optional[str] = Field(default=None, description="Recorded instance id")
    status: InstanceStatus = Field(default=InstanceStatus.STOPPED)

    @property
    def is_running(self) -> bool:
        return self.status == InstanceStatus.RUNNING

    @property
    def has_stale_port(self) -> bool:
        """A port is recorded but the instance is not answering."""
        return self.port is not None and self.status != InstanceStatus.RUNNING

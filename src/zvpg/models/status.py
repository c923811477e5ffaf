"""System status report models."""

from typing import List, Optional

from pydantic import Field

from .base import ZvpgBaseModel
from .dataset import PoolStatus


class PostgresStatus(ZvpgBaseModel):
    version: str = "Unknown"
    running: bool = False
    main_port: int


class BranchStatusDetail(ZvpgBaseModel):
    name: str
    port: Optional[int] = None
    status: str = "unknown"
    size: str = ""
    created: Optional[str] = None


class BranchesStatus(ZvpgBaseModel):
    total: int = 0
    active: int = 0
    inactive: int = 0
    unexpected_inactive: int = Field(
        default=0, description="Branches with a recorded port whose instance is down"
    )
    details: List[BranchStatusDetail] = Field(default_factory=list)


class SnapshotStatusDetail(ZvpgBaseModel):
    name: str
    full_name: str
    size: str = ""
    referenced: str = ""
    created: Optional[str] = None


class SnapshotsStatus(ZvpgBaseModel):
    total: int = 0
    total_size: str = "N/A"
    details: List[SnapshotStatusDetail] = Field(default_factory=list)


class HostStatus(ZvpgBaseModel):
    hostname: str = "N/A"
    uptime: str = "N/A"
    load_average: str = "N/A"
    memory_usage: str = "N/A"
    disk_usage: str = "N/A"


class SystemStatus(ZvpgBaseModel):
    """Aggregated, read-only view of the whole installation."""

    pool: PoolStatus
    postgres: PostgresStatus
    branches: BranchesStatus
    snapshots: SnapshotsStatus
    system: HostStatus

    @property
    def healthy(self) -> bool:
        """Pool online, primary instance running and no branch unexpectedly down."""
        return (
            self.pool.health.upper() == "ONLINE"
            and self.postgres.running
            and self.branches.unexpected_inactive == 0
        )

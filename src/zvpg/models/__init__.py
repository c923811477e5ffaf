"""Core data models for zvpg."""

from .base import ZvpgBaseModel, TimestampedModel
from .dataset import DatasetNode, NodeKind, PoolStatus
from .snapshot import CloneInfo, SnapshotInfo
from .branch import BranchInfo, InstanceHandle, InstanceStatus
from .status import (
    SystemStatus,
    PostgresStatus,
    BranchesStatus,
    BranchStatusDetail,
    SnapshotsStatus,
    SnapshotStatusDetail,
    HostStatus,
)

__all__ = [
    "ZvpgBaseModel",
    "TimestampedModel",
    "DatasetNode",
    "NodeKind",
    "PoolStatus",
    "SnapshotInfo",
    "CloneInfo",
    "BranchInfo",
    "InstanceHandle",
    "InstanceStatus",
    "SystemStatus",
    "PostgresStatus",
    "BranchesStatus",
    "BranchStatusDetail",
    "SnapshotsStatus",
    "SnapshotStatusDetail",
    "HostStatus",
]

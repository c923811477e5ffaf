"""Snapshot model for zvpg."""

from typing import List, Optional

from pydantic import Field

from .base import TimestampedModel


class SnapshotInfo(TimestampedModel):
    """An immutable point-in-time node of the primary data or of a branch."""

    name: str = Field(description="Snapshot name (the part after '@')")
    full_name: str = Field(description="Full backend path")
    dataset: str = Field(description="Dataset the snapshot was taken of")
    used: str = ""
    available: str = ""
    referenced: str = ""
    compress_ratio: str = ""
    message: Optional[str] = Field(default=None, description="Free-text message")
    created: Optional[str] = Field(
        default=None, description="ISO-8601 creation time stamped by zvpg"
    )
    branch: Optional[str] = Field(
        default=None, description="Branch the snapshot was taken from"
    )
    clones: List[str] = Field(
        default_factory=list, description="Datasets whose origin is this snapshot"
    )

    def can_delete(self) -> bool:
        """Check if this snapshot can be deleted without forcing."""
        return not self.clones


class CloneInfo(TimestampedModel):
    """A writable dataset cloned from a snapshot, inside or outside the branches container."""

    name: str = Field(description="Dataset path relative to the pool")
    dataset: str = Field(description="Full backend path")
    origin: str = Field(description="Snapshot the dataset was cloned from")
    used: str = ""
    referenced: str = ""
    branch: Optional[str] = Field(
        default=None, description="Branch name when the clone is a zvpg branch"
    )
    port: Optional[int] = Field(
        default=None, description="Recorded instance port of a branch clone"
    )

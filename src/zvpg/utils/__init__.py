"""Utility modules for zvpg."""

from zvpg.utils.name_validator import (
    validate_branch_name,
    validate_snapshot_name,
    InvalidNameError,
)
from zvpg.utils.formatting import format_bytes, format_timestamp

__all__ = [
    "validate_branch_name",
    "validate_snapshot_name",
    "InvalidNameError",
    "format_bytes",
    "format_timestamp",
]

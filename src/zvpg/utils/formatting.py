"""Formatting helpers shared by managers and CLI output."""

from datetime import datetime
from typing import Optional, Union


def format_bytes(num_bytes: Union[int, float]) -> str:
    """Format a byte count as a human readable string (1024 based)."""
    if num_bytes <= 0:
        return "0 B"

    units = ["B", "KB", "MB", "GB", "TB", "PB"]
    value = float(num_bytes)
    index = 0
    while value >= 1024 and index < len(units) - 1:
        value /= 1024
        index += 1

    return f"{round(value, 2):g} {units[index]}"


def format_timestamp(value: Optional[Union[str, datetime]]) -> str:
    """Render an ISO timestamp (or datetime) as ``YYYY-MM-DD HH:MM:SS``.

    Unparseable strings are returned unchanged and missing values become "-".
    """
    if value is None or value == "":
        return "-"
    if isinstance(value, datetime):
        return value.strftime("%Y-%m-%d %H:%M:%S")
    try:
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return value
    return dt.strftime("%Y-%m-%d %H:%M:%S")

"""Base models for zvpg."""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, field_serializer


class ZvpgBaseModel(BaseModel):
    """Base model for values reported by zvpg managers."""

    model_config = ConfigDict(
        populate_by_name=True,
        use_enum_values=True,
        extra="forbid",
    )


class TimestampedModel(ZvpgBaseModel):
    """Base for models carrying the backend-reported creation time."""

    creation: Optional[datetime] = None

    @field_serializer("creation")
    def serialize_datetime(self, dt: Optional[datetime], _info: Any) -> Optional[str]:
        """Serialize datetime to ISO format."""
        return dt.isoformat() if dt else None

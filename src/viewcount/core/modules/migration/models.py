"""Shapes persisted by earlier plugin versions."""

from enum import StrEnum
from typing import Any

from pydantic import Field, field_validator

from viewcount.core.models import CamelModel

DEFAULT_LAST_VIEW_TIME_PROPERTY = "last-view-time"  # Used before 0.5.0
DEFAULT_LAST_VIEW_DATE_PROPERTY = "view-date"


class StorageType(StrEnum):
    """Where counters were persisted before 2.0.0."""

    PROPERTY = "property"  # Embedded in each item's frontmatter
    FILE = "file"  # External snapshot file


class LegacyEntry(CamelModel):
    """Snapshot item before 2.0.0."""

    path: str
    view_count: int = Field(0, ge=0)
    last_view_millis: int = 0

    @field_validator("view_count", mode="before")
    @classmethod
    def clamp_view_count(cls, value: Any) -> Any:
        if isinstance(value, int) and not isinstance(value, bool):
            return max(value, 0)
        return value


class LegacySettings(CamelModel):
    """Settings fields read by data migrations (1.2.x and earlier)."""

    increment_once_a_day: bool = False
    storage_type: StorageType = StorageType.FILE
    view_count_property_name: str = "view-count"
    last_view_date_property_name: str = DEFAULT_LAST_VIEW_DATE_PROPERTY
    last_view_time_property_name: str = DEFAULT_LAST_VIEW_TIME_PROPERTY
    excluded_paths: list[str] = Field(default_factory=list)

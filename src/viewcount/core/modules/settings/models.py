"""User settings record and its enumerations."""

from enum import StrEnum
from typing import Any, Literal

from pydantic import Field, field_validator

from viewcount.core.models import CamelModel
from viewcount.utils import normalize_path

PLUGIN_VERSION = "2.4.1"  # Settings schema version written after migrations
MAX_TEMPLATER_DELAY_MS = 5000


class CountMethod(StrEnum):
    """How an item's view count is computed."""

    UNIQUE_DAYS_OPENED = "unique-days-opened"
    TOTAL_TIMES_OPENED = "total-times-opened"


class ViewType(StrEnum):
    """List shown by the display collaborator."""

    VIEWS = "views"
    TRENDS = "trends"


class TimePeriod(StrEnum):
    """Windows supported by trending queries."""

    MONTH = "month"
    WEEK_ISO = "week-iso"
    WEEK = "week"
    TODAY = "today"
    DAYS_30 = "30-days"
    DAYS_14 = "14-days"
    DAYS_7 = "7-days"
    DAYS_3 = "3-days"


ItemCount = Literal[10, 15, 20, 25, 50, 100]


class Settings(CamelModel):
    """Versioned user configuration, persisted by the host as a JSON document."""

    view_count_type: CountMethod = CountMethod.UNIQUE_DAYS_OPENED
    save_view_count_to_frontmatter: bool = False  # Mirror counts into each item's frontmatter
    view_count_property_name: str = "view-count"
    plugin_version: str = ""  # Schema version the record was last migrated to
    log_level: str = "off"
    excluded_paths: list[str] = Field(default_factory=list)  # Path prefixes never tracked
    templater_delay: int = 0  # Milliseconds to wait before mirroring into a brand-new item
    current_view: ViewType = ViewType.VIEWS
    time_period: TimePeriod = TimePeriod.DAYS_3
    item_count: ItemCount = 20

    @field_validator("excluded_paths", mode="before")
    @classmethod
    def parse_excluded_paths(cls, value: Any) -> Any:
        """Accept the comma-joined form used by the settings UI and drop blank entries."""
        if isinstance(value, str):
            value = value.split(",")
        if isinstance(value, list):
            normalized = (normalize_path(str(path)) for path in value)
            return [path for path in normalized if path]
        return value

    @field_validator("templater_delay", mode="before")
    @classmethod
    def clamp_templater_delay(cls, value: Any) -> Any:
        if isinstance(value, int | float) and not isinstance(value, bool):
            return min(max(int(value), 0), MAX_TEMPLATER_DELAY_MS)
        return value

    def excluded_paths_text(self) -> str:
        """Comma-joined exclusion list for display."""
        return ",".join(self.excluded_paths)

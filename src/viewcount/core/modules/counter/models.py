"""Counter entries tracked per vault item."""

from typing import Self

from pydantic import Field, model_validator

from viewcount.core.models import CamelModel


class OpenLogEntry(CamelModel):
    """A single recorded open of an item."""

    timestamp_millis: int


class CounterEntry(CamelModel):
    """Open counters for one item, keyed by its vault path.

    `open_logs` is kept in ascending time order and trimmed to the retention
    window on every open.
    """

    path: str
    total_times_opened: int = Field(0, ge=0)
    unique_days_opened: int = Field(0, ge=0)  # Never exceeds total_times_opened
    open_logs: list[OpenLogEntry] = Field(default_factory=list)

    @model_validator(mode="after")
    def clamp_unique_days(self) -> Self:
        self.unique_days_opened = min(self.unique_days_opened, self.total_times_opened)
        return self

    @property
    def last_open_millis(self) -> int:
        """Timestamp of the most recent open, or 0 if never opened."""
        if not self.open_logs:
            return 0
        return self.open_logs[-1].timestamp_millis


class MostViewedItem(CamelModel):
    """Row of the most viewed list."""

    path: str
    view_count: int


class TrendingItem(CamelModel):
    """Row of the trending list."""

    path: str
    times_opened: int

from collections.abc import AsyncGenerator, Callable
from contextlib import asynccontextmanager
from typing import Any

from viewcount import utils
from viewcount.config import Config
from viewcount.core.core import Core
from viewcount.core.modules.counter import time_utils
from viewcount.core.modules.counter.models import CounterEntry, MostViewedItem, TrendingItem
from viewcount.core.modules.settings.models import Settings, TimePeriod
from viewcount.logging import setup_logging


class App:
    """Facade for host events and display queries, delegating to Core."""

    def __init__(self, config: Config, clock: Callable[[], int] = utils.now_millis) -> None:
        setup_logging(config.debug)
        self._core = Core(config, clock)

    @asynccontextmanager
    async def lifespan(self) -> AsyncGenerator[None]:
        """Run migrations and load counters on entry; flush pending writes on exit."""
        async with self._core.lifespan():
            yield

    @property
    def settings(self) -> Settings:
        return self._core.services.settings.settings

    @property
    def notices(self) -> list[str]:
        """User-visible notices raised so far, oldest first."""
        return list(self._core.notifier.messages)

    async def handle_file_open(self, path: str) -> str:
        """Record an open and return the status bar text for the item."""
        await self._core.services.counter.handle_open(path)
        view_count = self._core.services.counter.get_view_count(path)
        return f"{view_count} {'view' if view_count == 1 else 'views'}"

    async def handle_rename(self, old_path: str, new_path: str) -> None:
        await self._core.services.counter.rename(old_path, new_path)

    async def handle_delete(self, path: str) -> None:
        await self._core.services.counter.delete(path)

    def get_entries(self) -> list[CounterEntry]:
        return self._core.services.counter.get_entries()

    def get_view_count(self, path: str) -> int:
        return self._core.services.counter.get_view_count(path)

    def get_last_open_time(self, path: str) -> int:
        return self._core.services.counter.get_last_open_time(path)

    def get_trending_weight(self, path: str, period: TimePeriod | str) -> int:
        return self._core.services.counter.get_trending_weight(path, period)

    def get_most_viewed(self, limit: int | None = None) -> list[MostViewedItem]:
        """Existing items ordered by view count, highest first."""
        counter = self._core.services.counter
        if limit is None:
            limit = self.settings.item_count
        items = [
            MostViewedItem(path=entry.path, view_count=counter.get_view_count_for_entry(entry))
            for entry in counter.get_entries_sorted_by_view_count("desc")
            if self._core.vault.has_item(entry.path)
        ]
        return items[:limit]

    def get_trending(self, period: TimePeriod | str | None = None, limit: int | None = None) -> list[TrendingItem]:
        """Existing items opened during `period`, most opens first."""
        counter = self._core.services.counter
        start = time_utils.start_of_period(self._core.clock(), period or self.settings.time_period)
        if limit is None:
            limit = self.settings.item_count
        weighted = [
            TrendingItem(path=entry.path, times_opened=counter.get_trending_weight_for_entry(entry, start))
            for entry in counter.get_entries()
            if self._core.vault.has_item(entry.path)
        ]
        trending = sorted((item for item in weighted if item.times_opened > 0), key=lambda item: item.times_opened, reverse=True)
        return trending[:limit]

    def subscribe(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Register a callback run after the counters change."""
        return self._core.services.counter.subscribe(callback)

    async def update_settings(self, **changes: Any) -> Settings:
        return await self._core.services.settings.update_settings(**changes)

    async def sync_all_to_frontmatter(self) -> None:
        await self._core.services.counter.sync_all_to_frontmatter()

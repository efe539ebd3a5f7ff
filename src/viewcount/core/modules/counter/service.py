import asyncio
from bisect import insort
from collections.abc import Callable
from typing import Any, Literal

import structlog
from pydantic import ValidationError

from viewcount.core.core import Service
from viewcount.core.modules.counter import time_utils
from viewcount.core.modules.counter.codec import SNAPSHOT_FILE, deserialize_with_legacy, serialize
from viewcount.core.modules.counter.models import CounterEntry, OpenLogEntry
from viewcount.core.modules.counter.scheduler import CoalescingScheduler
from viewcount.core.modules.migration.data import convert_legacy_entry
from viewcount.core.modules.migration.legacy import LegacyPropertyStorage
from viewcount.core.modules.migration.models import LegacyEntry, StorageType
from viewcount.core.modules.settings.models import CountMethod, Settings, TimePeriod
from viewcount.core.vault import Vault
from viewcount.errors import CorruptStoreError, StoreIOError
from viewcount.utils import normalize_path

logger = structlog.get_logger(__name__)

CORRUPT_SUFFIX = ".corrupt"

RefreshCallback = Callable[[], None]


class CounterService(Service):
    """Owns the canonical entry set and reconciles open, rename and delete events.

    Entries are kept in an insertion-ordered dict keyed by path and are only
    mutated through this service's operations. Persistence and refresh
    notifications are coalesced so a burst of opens yields a single write.

    Two overlapping `handle_open` calls for the same path are not guarded
    against; the last write wins.
    """

    def __init__(self, vault: Vault) -> None:
        super().__init__(vault)
        self._entries: dict[str, CounterEntry] = {}
        self._legacy_items: list[dict[str, Any]] = []  # Unmigrated records, preserved for a retry
        self._observers: list[RefreshCallback] = []
        self._save_scheduler: CoalescingScheduler | None = None
        self._refresh_scheduler: CoalescingScheduler | None = None

    async def on_start(self) -> None:
        config = self.core.config
        self._save_scheduler = CoalescingScheduler(self.save, config.save_debounce_ms, "save")
        self._refresh_scheduler = CoalescingScheduler(self._notify_observers, config.refresh_debounce_ms, "refresh")
        await self.load()
        logger.debug("counter_service_started", entry_count=len(self._entries))

    async def on_stop(self) -> None:
        """Flush any pending save so the final mutation is not lost."""
        if self._save_scheduler is not None:
            await self._save_scheduler.flush()
        if self._refresh_scheduler is not None:
            await self._refresh_scheduler.flush()

    @property
    def settings(self) -> Settings:
        return self.core.services.settings.settings

    @property
    def awaiting_migration(self) -> bool:
        """True while counters still live in a legacy storage; mirroring is held off until they move."""
        return self.core.services.settings.pending_legacy_settings is not None

    @property
    def snapshot_path(self) -> str:
        return self.vault.config_path(SNAPSHOT_FILE)

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    async def load(self) -> None:
        """Load the snapshot, creating an empty one on first run.

        Failures never propagate: I/O errors keep the current in-memory entries,
        and a corrupt snapshot is set aside and treated as empty.
        """
        path = self.snapshot_path
        try:
            if not await self.vault.exists(path):
                logger.debug("creating_counter_store", path=path)
                await self.vault.create(path, serialize([]))
                return
            text = await self.vault.read(path)
        except StoreIOError as e:
            logger.exception("counter_store_load_failed", path=path, error=str(e))
            self.core.notifier.notify("error loading cache")
            return

        try:
            entries, legacy_items = deserialize_with_legacy(text)
        except CorruptStoreError as e:
            logger.warning("counter_store_corrupt", path=path, error=str(e))
            self.core.notifier.notify("cache is corrupt, starting with an empty cache")
            await self._set_aside_corrupt(path, text)
            entries, legacy_items = [], []

        self._entries = {entry.path: entry for entry in entries}
        self._legacy_items = legacy_items
        if legacy_items:
            logger.warning("counter_store_has_unmigrated_records", record_count=len(legacy_items))
        logger.debug("counter_store_loaded", entry_count=len(self._entries))
        await self._notify_observers()

    async def save(self) -> None:
        """Write the full snapshot. Failures are logged and reported, not raised."""
        try:
            await self.vault.write(self.snapshot_path, serialize(self._entries.values(), self._legacy_items))
        except StoreIOError as e:
            logger.exception("counter_store_save_failed", error=str(e))
            self.core.notifier.notify("error saving file cache")
            return
        logger.debug("counter_store_saved", entry_count=len(self._entries))

    async def _set_aside_corrupt(self, path: str, text: str) -> None:
        backup_path = f"{path}{CORRUPT_SUFFIX}"
        try:
            await self.vault.write(backup_path, text)
        except StoreIOError as e:
            logger.exception("corrupt_backup_failed", path=backup_path, error=str(e))

    # -------------------------------------------------------------------------
    # Events
    # -------------------------------------------------------------------------

    async def handle_open(self, path: str, now: int | None = None) -> CounterEntry | None:
        """Record an open of `path` at `now` (defaults to the core clock).

        Returns the updated entry, or None if the path is excluded.
        """
        path = normalize_path(path)
        if self.is_excluded(path):
            logger.debug("file_excluded", path=path)
            return None

        now = self.core.clock() if now is None else now
        entry = self._entries.get(path)
        is_new = entry is None
        if entry is None:
            entry = await self._create_entry(path)

        self._increment_view_count(entry, now)
        self._add_open_log_entry(entry, now)

        settings = self.settings
        if settings.save_view_count_to_frontmatter and not self.awaiting_migration:
            # Let a template plugin fill a brand-new item before its frontmatter is touched
            if is_new and settings.templater_delay > 0:
                logger.debug("waiting_for_templater", path=path, delay_ms=settings.templater_delay)
                await asyncio.sleep(settings.templater_delay / 1000)
            await self.core.services.frontmatter.write_count(entry.path, self.get_view_count_for_entry(entry))

        self._schedule_save_and_refresh()
        return entry

    async def rename(self, old_path: str, new_path: str) -> bool:
        """Move an entry to a new path, keeping its position. Returns False if untracked."""
        old_path = normalize_path(old_path)
        new_path = normalize_path(new_path)
        if old_path == new_path:
            return False
        moved_legacy = self._move_legacy_item(old_path, new_path)
        entry = self._entries.get(old_path)
        if entry is None:
            if moved_legacy:
                self._schedule_save_and_refresh()
            return moved_legacy

        logger.debug("renaming_entry", old_path=old_path, new_path=new_path)
        if new_path in self._entries:
            logger.warning("rename_replaced_entry", path=new_path)
        entry.path = new_path
        self._entries = {
            (new_path if path == old_path else path): existing
            for path, existing in self._entries.items()
            if path != new_path
        }
        self._schedule_save_and_refresh()
        return True

    async def delete(self, path: str) -> bool:
        """Remove an entry. Returns False if untracked."""
        path = normalize_path(path)
        removed_legacy = self._pop_legacy_item(path) is not None
        if self._entries.pop(path, None) is None and not removed_legacy:
            return False
        logger.debug("deleting_entry", path=path)
        self._schedule_save_and_refresh()
        return True

    async def sync_all_to_frontmatter(self, previous_property_name: str | None = None) -> None:
        """Bring every item's mirrored property in line with the current settings.

        Writes the value when mirroring is enabled and clears it otherwise. When
        the property was renamed, `previous_property_name` is cleared first.
        """
        if self.awaiting_migration:
            logger.warning("frontmatter_sync_deferred", reason="counter migration incomplete")
            return
        mirror = self.core.services.frontmatter
        settings = self.settings
        for entry in list(self._entries.values()):
            if not self.vault.has_item(entry.path):
                continue
            if previous_property_name and previous_property_name != settings.view_count_property_name:
                await mirror.clear(entry.path, previous_property_name)
            if settings.save_view_count_to_frontmatter:
                await mirror.write_count(entry.path, self.get_view_count_for_entry(entry))
            else:
                await mirror.clear(entry.path)
        logger.info("frontmatter_synced", entry_count=len(self._entries))

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def is_excluded(self, path: str) -> bool:
        return any(path.startswith(prefix) for prefix in self.settings.excluded_paths)

    def get_entry(self, path: str) -> CounterEntry | None:
        return self._entries.get(normalize_path(path))

    def get_entries(self) -> list[CounterEntry]:
        """All entries in insertion order."""
        return list(self._entries.values())

    def get_entries_sorted_by_view_count(self, direction: Literal["asc", "desc"] = "desc") -> list[CounterEntry]:
        """Entries sorted by view count; ties keep insertion order."""
        return sorted(self._entries.values(), key=self.get_view_count_for_entry, reverse=direction == "desc")

    def get_view_count(self, path: str) -> int:
        entry = self.get_entry(path)
        if entry is None:
            return 0
        return self.get_view_count_for_entry(entry)

    def get_view_count_for_entry(self, entry: CounterEntry) -> int:
        if self.settings.view_count_type == CountMethod.UNIQUE_DAYS_OPENED:
            return entry.unique_days_opened
        return entry.total_times_opened

    def get_last_open_time(self, path: str) -> int:
        entry = self.get_entry(path)
        if entry is None:
            return 0
        return entry.last_open_millis

    def get_trending_weight(self, path: str, period: TimePeriod | str, now: int | None = None) -> int:
        """Number of opens since the start of `period`. Raises ValueError for an unknown period."""
        now = self.core.clock() if now is None else now
        start = time_utils.start_of_period(now, period)
        entry = self.get_entry(path)
        if entry is None:
            return 0
        return self.get_trending_weight_for_entry(entry, start)

    @staticmethod
    def get_trending_weight_for_entry(entry: CounterEntry, start_millis: int) -> int:
        return sum(1 for log in entry.open_logs if log.timestamp_millis >= start_millis)

    # -------------------------------------------------------------------------
    # Observers
    # -------------------------------------------------------------------------

    def subscribe(self, callback: RefreshCallback) -> Callable[[], None]:
        """Register a refresh observer. Returns a function that unregisters it."""
        self._observers.append(callback)

        def unsubscribe() -> None:
            if callback in self._observers:
                self._observers.remove(callback)

        return unsubscribe

    async def _notify_observers(self) -> None:
        for callback in list(self._observers):
            try:
                callback()
            except Exception:
                logger.exception("refresh_observer_failed")

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    async def _create_entry(self, path: str) -> CounterEntry:
        entry = await self._seed_from_legacy(path)
        if entry is None:
            logger.debug("creating_entry", path=path)
            entry = CounterEntry(path=path)
        self._entries[path] = entry
        return entry

    async def _seed_from_legacy(self, path: str) -> CounterEntry | None:
        """Start a new entry from the legacy counter of `path` while its migration is pending.

        Embedded counters are authoritative in property mode; otherwise the
        set-aside flat record is used. The consumed flat record is dropped so a
        retried migration does not count it twice.
        """
        legacy_settings = self.core.services.settings.pending_legacy_settings
        if legacy_settings is None:
            return None

        legacy_entry = None
        if legacy_settings.storage_type == StorageType.PROPERTY:
            legacy_entry = await LegacyPropertyStorage(self.vault, legacy_settings).read_entry(path)
        item = self._find_legacy_item(path)
        if legacy_entry is None and item is not None:
            try:
                legacy_entry = LegacyEntry.model_validate(item)
            except ValidationError as e:
                logger.warning("legacy_record_invalid", path=path, error=str(e))
                return None
        if legacy_entry is None:
            return None

        self._pop_legacy_item(path)
        entry = convert_legacy_entry(legacy_entry, legacy_settings.increment_once_a_day)
        entry.path = path
        logger.info("entry_seeded_from_legacy", path=path, total_times_opened=entry.total_times_opened)
        return entry

    def _find_legacy_item(self, path: str) -> dict[str, Any] | None:
        return next((item for item in self._legacy_items if normalize_path(str(item.get("path", ""))) == path), None)

    def _pop_legacy_item(self, path: str) -> dict[str, Any] | None:
        item = self._find_legacy_item(path)
        if item is not None:
            self._legacy_items.remove(item)
        return item

    def _move_legacy_item(self, old_path: str, new_path: str) -> bool:
        item = self._find_legacy_item(old_path)
        if item is None:
            return False
        item["path"] = new_path
        return True

    def _increment_view_count(self, entry: CounterEntry, now: int) -> None:
        is_new_day = entry.last_open_millis < time_utils.start_of_day(now)
        entry.total_times_opened += 1
        if is_new_day:
            entry.unique_days_opened += 1
        logger.debug(
            "incrementing_view_count",
            path=entry.path,
            total_times_opened=entry.total_times_opened,
            unique_days_opened=entry.unique_days_opened,
        )

    def _add_open_log_entry(self, entry: CounterEntry, now: int) -> None:
        cutoff = time_utils.start_of_n_days_ago(now, time_utils.LOG_RETENTION_DAYS)
        logs = [log for log in entry.open_logs if log.timestamp_millis >= cutoff]
        insort(logs, OpenLogEntry(timestamp_millis=now), key=lambda log: log.timestamp_millis)
        entry.open_logs = logs

    def _schedule_save_and_refresh(self) -> None:
        if self._save_scheduler is None or self._refresh_scheduler is None:
            raise RuntimeError("Counter service not started")
        self._save_scheduler.request()
        self._refresh_scheduler.request()

"""Counter storage strategies used before 2.0.0.

Before 2.0.0 counters lived either in an external snapshot of flat
`{path, viewCount, lastViewMillis}` records or embedded in each item's
frontmatter. Both variants expose the same operations so migrations can read
either one the same way.
"""

import json
from datetime import date, datetime
from typing import Any, Protocol

import structlog
import yaml
from pydantic import ValidationError

from viewcount.core.modules.counter.codec import ITEMS_FIELD, is_legacy_item, parse_items
from viewcount.core.modules.counter.time_utils import date_string_to_millis
from viewcount.core.modules.migration.models import LegacyEntry, LegacySettings, StorageType
from viewcount.core.vault import Vault
from viewcount.errors import MigrationError, NotFoundError, StoreIOError

logger = structlog.get_logger(__name__)

LEGACY_SNAPSHOT_FILE = "view-count.json"


class LegacyStorage(Protocol):
    async def load(self) -> None: ...

    async def increment_view_count(self, path: str, now: int) -> None: ...

    async def get_view_count(self, path: str) -> int: ...

    async def get_last_view_time(self, path: str) -> int: ...

    async def rename_entry(self, old_path: str, new_path: str) -> None: ...

    async def delete_entry(self, path: str) -> None: ...

    def get_entries(self) -> list[LegacyEntry]: ...


def to_millis(value: Any) -> int:
    """Interpret a legacy last-view value: epoch millis, a YYYY-MM-DD string or a date."""
    if isinstance(value, bool) or value is None:
        return 0
    if isinstance(value, int | float):
        return int(value)
    if isinstance(value, datetime):
        return int(value.timestamp() * 1000)
    if isinstance(value, date):
        return date_string_to_millis(value.isoformat())
    if isinstance(value, str):
        try:
            return date_string_to_millis(value.strip()[:10])
        except ValueError:
            return 0
    return 0


def to_count(value: Any) -> int:
    if isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return max(value, 0)
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return 0


class LegacyFileStorage:
    """Flat records in the external snapshot file."""

    def __init__(self, vault: Vault) -> None:
        self._vault = vault
        self._entries: list[LegacyEntry] = []

    @property
    def path(self) -> str:
        return self._vault.config_path(LEGACY_SNAPSHOT_FILE)

    async def load(self) -> None:
        """Read legacy records; records already in the current shape are skipped."""
        if not await self._vault.exists(self.path):
            self._entries = []
            return
        items = parse_items(await self._vault.read(self.path))
        try:
            self._entries = [LegacyEntry.model_validate(item) for item in items if is_legacy_item(item)]
        except ValidationError as e:
            raise MigrationError(f"Legacy snapshot contains an invalid record: {e.error_count()} error(s)") from e

    async def save(self) -> None:
        data = {ITEMS_FIELD: [entry.to_json_dict() for entry in self._entries]}
        await self._vault.write(self.path, json.dumps(data, indent=2))

    async def increment_view_count(self, path: str, now: int) -> None:
        entry = self._find(path)
        if entry is None:
            self._entries.append(LegacyEntry(path=path, view_count=1, last_view_millis=now))
        else:
            entry.view_count += 1
            entry.last_view_millis = now
        await self.save()

    async def get_view_count(self, path: str) -> int:
        entry = self._find(path)
        return entry.view_count if entry else 0

    async def get_last_view_time(self, path: str) -> int:
        entry = self._find(path)
        return entry.last_view_millis if entry else 0

    async def rename_entry(self, old_path: str, new_path: str) -> None:
        entry = self._find(old_path)
        if entry is not None:
            entry.path = new_path
            await self.save()

    async def delete_entry(self, path: str) -> None:
        self._entries = [entry for entry in self._entries if entry.path != path]
        await self.save()

    def get_entries(self) -> list[LegacyEntry]:
        return list(self._entries)

    def _find(self, path: str) -> LegacyEntry | None:
        return next((entry for entry in self._entries if entry.path == path), None)


class LegacyPropertyStorage:
    """Counters embedded in each item's frontmatter; the frontmatter is the only copy."""

    def __init__(self, vault: Vault, settings: LegacySettings) -> None:
        self._vault = vault
        self._settings = settings
        self._entries: list[LegacyEntry] = []

    async def load(self) -> None:
        """Read counters from every markdown item that carries a view count."""
        entries = []
        for path in self._vault.list_items():
            try:
                frontmatter = await self._vault.read_frontmatter(path)
            except yaml.YAMLError as e:
                logger.warning("legacy_frontmatter_invalid", path=path, error=str(e))
                continue
            entry = self._entry_from_frontmatter(path, frontmatter)
            if entry is not None:
                entries.append(entry)
        self._entries = entries
        logger.debug("legacy_property_storage_loaded", entry_count=len(entries))

    async def read_entry(self, path: str) -> LegacyEntry | None:
        """Read one item's embedded counter, or None if it has none or cannot be read."""
        try:
            frontmatter = await self._vault.read_frontmatter(path)
        except NotFoundError:
            return None
        except yaml.YAMLError as e:
            logger.warning("legacy_frontmatter_invalid", path=path, error=str(e))
            return None
        except StoreIOError as e:
            logger.warning("legacy_frontmatter_unreadable", path=path, error=str(e))
            return None
        return self._entry_from_frontmatter(path, frontmatter)

    async def increment_view_count(self, path: str, now: int) -> None:
        count_name = self._settings.view_count_property_name
        date_name = self._settings.last_view_date_property_name

        def update(frontmatter: dict[str, Any]) -> None:
            frontmatter[count_name] = to_count(frontmatter.get(count_name)) + 1
            if self._settings.increment_once_a_day:
                frontmatter[date_name] = now

        await self._vault.process_frontmatter(path, update)
        entry = self._find(path)
        if entry is None:
            self._entries.append(LegacyEntry(path=path, view_count=1, last_view_millis=now))
        else:
            entry.view_count += 1
            entry.last_view_millis = now

    async def get_view_count(self, path: str) -> int:
        try:
            frontmatter = await self._vault.read_frontmatter(path)
        except NotFoundError:
            return 0
        return to_count(frontmatter.get(self._settings.view_count_property_name))

    async def get_last_view_time(self, path: str) -> int:
        try:
            frontmatter = await self._vault.read_frontmatter(path)
        except NotFoundError:
            return 0
        return to_millis(frontmatter.get(self._settings.last_view_date_property_name))

    async def rename_entry(self, old_path: str, new_path: str) -> None:
        # The frontmatter travels with the item; only the cached entry moves
        entry = self._find(old_path)
        if entry is not None:
            entry.path = new_path

    async def delete_entry(self, path: str) -> None:
        self._entries = [entry for entry in self._entries if entry.path != path]

    def get_entries(self) -> list[LegacyEntry]:
        return list(self._entries)

    def _entry_from_frontmatter(self, path: str, frontmatter: dict[str, Any]) -> LegacyEntry | None:
        view_count = to_count(frontmatter.get(self._settings.view_count_property_name))
        if view_count == 0:
            return None
        last_view = to_millis(frontmatter.get(self._settings.last_view_date_property_name))
        return LegacyEntry(path=path, view_count=view_count, last_view_millis=last_view)

    def _find(self, path: str) -> LegacyEntry | None:
        return next((entry for entry in self._entries if entry.path == path), None)


def create_legacy_storage(vault: Vault, settings: LegacySettings) -> LegacyStorage:
    """Pick the storage variant the legacy settings were using."""
    if settings.storage_type == StorageType.PROPERTY:
        return LegacyPropertyStorage(vault, settings)
    return LegacyFileStorage(vault)

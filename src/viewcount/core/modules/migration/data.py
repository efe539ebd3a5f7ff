"""Data migration side effects: rewrite stored counters into the current snapshot shape."""

from typing import Any

import structlog
import yaml
from pydantic import ValidationError

from viewcount.core.modules.counter.codec import SNAPSHOT_FILE, is_legacy_item, parse_items, serialize
from viewcount.core.modules.counter.models import CounterEntry, OpenLogEntry
from viewcount.core.modules.counter.time_utils import millis_to_date_string
from viewcount.core.modules.migration.legacy import LegacyStorage
from viewcount.core.modules.migration.models import LegacyEntry, LegacySettings
from viewcount.core.vault import Vault
from viewcount.errors import MigrationError

logger = structlog.get_logger(__name__)


def convert_legacy_entry(entry: LegacyEntry, increment_once_a_day: bool) -> CounterEntry:
    """Convert a flat legacy record.

    The last view becomes the single open-log entry. Unique days can only be
    recovered when the legacy count was already once-a-day.
    """
    return CounterEntry(
        path=entry.path,
        total_times_opened=entry.view_count,
        unique_days_opened=entry.view_count if increment_once_a_day else 0,
        open_logs=[OpenLogEntry(timestamp_millis=entry.last_view_millis)],
    )


async def migrate_to_snapshot(vault: Vault, storage: LegacyStorage, settings: LegacySettings) -> int:
    """Merge a legacy storage variant into the current snapshot.

    Entries already present in the current shape are never overwritten, so the
    migration can be re-run safely after an interruption. Flat records in the
    snapshot file are dropped once their path has a converted entry.

    Returns:
        Number of entries converted
    """
    await storage.load()
    legacy_entries = storage.get_entries()

    path = vault.config_path(SNAPSHOT_FILE)
    current: list[CounterEntry] = []
    legacy_items: list[dict[str, Any]] = []
    if await vault.exists(path):
        items = parse_items(await vault.read(path))
        legacy_items = [item for item in items if is_legacy_item(item)]
        try:
            current = [CounterEntry.model_validate(item) for item in items if not is_legacy_item(item)]
        except ValidationError as e:
            raise MigrationError(f"Snapshot contains an invalid entry: {e.error_count()} error(s)") from e

    known = {entry.path for entry in current}
    converted = []
    for legacy_entry in legacy_entries:
        if legacy_entry.path in known:
            continue
        converted.append(convert_legacy_entry(legacy_entry, settings.increment_once_a_day))
        known.add(legacy_entry.path)

    # Flat records another storage variant has yet to convert stay in place
    remaining = [item for item in legacy_items if item.get("path") not in known]
    if not converted and len(remaining) == len(legacy_items):
        logger.debug("snapshot_already_migrated", storage=type(storage).__name__)
        return 0

    await vault.write(path, serialize([*current, *converted], remaining))
    logger.info("snapshot_migrated", storage=type(storage).__name__, converted=len(converted))
    return len(converted)


async def migrate_last_view_property(vault: Vault, time_property: str, date_property: str) -> int:
    """Move the pre-0.5.0 last-view-time property to the date property and store dates as YYYY-MM-DD.

    Returns:
        Number of items examined
    """
    rename = time_property != date_property

    def update(frontmatter: dict[str, Any]) -> None:
        if rename and time_property in frontmatter:
            value = frontmatter.pop(time_property)
            frontmatter.setdefault(date_property, value)
        value = frontmatter.get(date_property)
        if isinstance(value, int | float) and not isinstance(value, bool) and value > 0:
            frontmatter[date_property] = millis_to_date_string(int(value))

    items = vault.list_items()
    for path in items:
        try:
            await vault.process_frontmatter(path, update)
        except yaml.YAMLError as e:
            logger.warning("legacy_frontmatter_invalid", path=path, error=str(e))
    logger.info("last_view_property_migrated", item_count=len(items), date_property=date_property)
    return len(items)

"""JSON envelope for the counter snapshot."""

import json
from collections.abc import Iterable
from typing import Any

from pydantic import ValidationError

from viewcount.core.modules.counter.models import CounterEntry
from viewcount.errors import CorruptStoreError

SNAPSHOT_FILE = "view-count.json"  # Relative to the host config area
ITEMS_FIELD = "items"


def serialize(entries: Iterable[CounterEntry], legacy_items: Iterable[dict[str, Any]] = ()) -> str:
    """Wrap entries in the snapshot envelope as indented JSON.

    `legacy_items` are raw records not yet migrated; they are written back unchanged.
    """
    items = [entry.to_json_dict() for entry in entries]
    items.extend(legacy_items)
    return json.dumps({ITEMS_FIELD: items}, indent=2)


def parse_items(text: str) -> list[dict[str, Any]]:
    """Return the raw item records of a snapshot.

    Blank input, a missing `items` field and an empty list all yield an empty list.

    Raises:
        CorruptStoreError: If the text is not JSON or the envelope has the wrong shape
    """
    if not text.strip():
        return []
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise CorruptStoreError(f"Counter store is not valid JSON: {e}") from e

    if not isinstance(data, dict):
        raise CorruptStoreError("Counter store must be a JSON object")
    items = data.get(ITEMS_FIELD)
    if not items:
        return []
    if not isinstance(items, list) or not all(isinstance(item, dict) for item in items):
        raise CorruptStoreError(f"Counter store field '{ITEMS_FIELD}' must be a list of objects")
    return items


def deserialize(text: str) -> list[CounterEntry]:
    """Parse a snapshot into counter entries.

    Raises:
        CorruptStoreError: If the text cannot be parsed or an item is malformed
    """
    try:
        return [CounterEntry.model_validate(item) for item in parse_items(text)]
    except ValidationError as e:
        raise CorruptStoreError(f"Counter store contains an invalid entry: {e.error_count()} error(s)") from e


def is_legacy_item(item: dict[str, Any]) -> bool:
    """Check whether a raw item still has the flat `viewCount`/`lastViewMillis` shape."""
    return "viewCount" in item and "totalTimesOpened" not in item


def deserialize_with_legacy(text: str) -> tuple[list[CounterEntry], list[dict[str, Any]]]:
    """Parse a snapshot, setting aside records still in the flat legacy shape.

    Raises:
        CorruptStoreError: If the text cannot be parsed or a current item is malformed
    """
    items = parse_items(text)
    legacy_items = [item for item in items if is_legacy_item(item)]
    try:
        entries = [CounterEntry.model_validate(item) for item in items if not is_legacy_item(item)]
    except ValidationError as e:
        raise CorruptStoreError(f"Counter store contains an invalid entry: {e.error_count()} error(s)") from e
    return entries, legacy_items

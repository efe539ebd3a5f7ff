"""Version-gated settings transforms and their data migration side effects.

Each step targets a plugin version. Every step whose version is newer than the
version recorded in the settings runs in ascending order. Transforms are pure
dict rewrites; side effects rewrite stored counter data and must be safe to
re-run.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

import structlog
from pydantic import ValidationError

from viewcount.core.modules.migration.data import migrate_last_view_property, migrate_to_snapshot
from viewcount.core.modules.migration.legacy import LegacyFileStorage, LegacyStorage, create_legacy_storage
from viewcount.core.modules.migration.models import (
    DEFAULT_LAST_VIEW_DATE_PROPERTY,
    DEFAULT_LAST_VIEW_TIME_PROPERTY,
    LegacySettings,
    StorageType,
)
from viewcount.core.modules.settings.models import CountMethod, TimePeriod, ViewType
from viewcount.core.vault import Vault
from viewcount.errors import MigrationError, UserError
from viewcount.utils import is_version_less_than, parse_version

logger = structlog.get_logger(__name__)

Transform = Callable[[dict[str, Any]], dict[str, Any]]
SideEffect = Callable[[Vault, dict[str, Any], dict[str, Any]], Awaitable[None]]


@dataclass(frozen=True)
class MigrationStep:
    version: str  # Applied when the recorded version is older than this
    description: str
    transform: Transform
    side_effect: SideEffect | None = None  # Receives the settings before and after the transform


@dataclass
class MigrationResult:
    data: dict[str, Any]
    applied: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)  # Versions whose side effect did not complete
    failed_inputs: dict[str, dict[str, Any]] = field(default_factory=dict)  # Settings each failed step started from

    @property
    def complete(self) -> bool:
        return not self.failed


# -----------------------------------------------------------------------------
# 0.5.0: last view time renamed to a date property
# -----------------------------------------------------------------------------


def transform_0_5_0(data: dict[str, Any]) -> dict[str, Any]:
    time_property = data.pop("lastViewTimePropertyName", DEFAULT_LAST_VIEW_TIME_PROPERTY)
    if time_property != DEFAULT_LAST_VIEW_TIME_PROPERTY:
        # A custom name is adopted as the date property as-is
        data["lastViewDatePropertyName"] = time_property
    else:
        data.setdefault("lastViewDatePropertyName", DEFAULT_LAST_VIEW_DATE_PROPERTY)
    return data


async def migrate_0_5_0(vault: Vault, previous: dict[str, Any], current: dict[str, Any]) -> None:
    time_property = previous.get("lastViewTimePropertyName", DEFAULT_LAST_VIEW_TIME_PROPERTY)
    date_property = current["lastViewDatePropertyName"]
    await migrate_last_view_property(vault, time_property, date_property)


# -----------------------------------------------------------------------------
# 1.2.2: templater delay became a duration
# -----------------------------------------------------------------------------


def transform_1_2_2(data: dict[str, Any]) -> dict[str, Any]:
    data.pop("enableTemplaterDelay", None)
    data["templaterDelay"] = 0
    return data


# -----------------------------------------------------------------------------
# 2.0.0: counters moved to the richer snapshot shape
# -----------------------------------------------------------------------------


def transform_2_0_0(data: dict[str, Any]) -> dict[str, Any]:
    data["saveViewCountToFrontmatter"] = data.get("storageType") == StorageType.PROPERTY.value
    data["viewCountType"] = (
        CountMethod.UNIQUE_DAYS_OPENED.value if data.get("incrementOnceADay") is True else CountMethod.TOTAL_TIMES_OPENED.value
    )
    for key in ("incrementOnceADay", "storageType", "lastViewDatePropertyName"):
        data.pop(key, None)
    return data


async def migrate_2_0_0(vault: Vault, previous: dict[str, Any], current: dict[str, Any]) -> None:
    try:
        legacy = LegacySettings.model_validate(previous)
    except ValidationError as e:
        raise MigrationError(f"Legacy settings are invalid: {e.error_count()} error(s)") from e
    # The authoritative variant goes first so its values win over stale file records
    storages: list[LegacyStorage] = [create_legacy_storage(vault, legacy)]
    if legacy.storage_type == StorageType.PROPERTY:
        storages.append(LegacyFileStorage(vault))
    for storage in storages:
        await migrate_to_snapshot(vault, storage, legacy)


# -----------------------------------------------------------------------------
# 2.4.0 / 2.4.1: list view preferences
# -----------------------------------------------------------------------------


def transform_2_4_0(data: dict[str, Any]) -> dict[str, Any]:
    data["durationFilter"] = TimePeriod.DAYS_3.value
    data["currentView"] = "most-viewed"
    data["listSize"] = 20
    return data


def transform_2_4_1(data: dict[str, Any]) -> dict[str, Any]:
    duration = data.pop("durationFilter", TimePeriod.DAYS_3.value)
    data["timePeriod"] = duration if duration in set(TimePeriod) else TimePeriod.DAYS_3.value
    data["currentView"] = ViewType.TRENDS.value if data.get("currentView") == "trending" else ViewType.VIEWS.value
    data["itemCount"] = data.pop("listSize", 20)
    return data


# Step whose side effect moves counters out of the legacy storages
COUNTER_MIGRATION_VERSION = "2.0.0"

MIGRATION_STEPS: list[MigrationStep] = [
    MigrationStep("0.5.0", "rename last view time property to a date property", transform_0_5_0, migrate_0_5_0),
    MigrationStep("1.2.2", "replace templater toggle with a delay", transform_1_2_2),
    MigrationStep(COUNTER_MIGRATION_VERSION, "move counters to the open-log snapshot", transform_2_0_0, migrate_2_0_0),
    MigrationStep("2.4.0", "add list view preferences", transform_2_4_0),
    MigrationStep("2.4.1", "rename list view preferences", transform_2_4_1),
]


def pending_steps(version: str) -> list[MigrationStep]:
    """Steps newer than `version`. A missing or unparseable version means a fresh install."""
    if parse_version(version) is None:
        return []
    return [step for step in MIGRATION_STEPS if is_version_less_than(version, step.version)]


async def run_migrations(vault: Vault, data: dict[str, Any], version: str) -> MigrationResult:
    """Bring a persisted settings record up to date.

    Transforms always complete. A failing side effect is logged and recorded in
    `MigrationResult.failed`; the stored data then keeps its old shape until a
    later run retries it.
    """
    result = MigrationResult(data=dict(data))
    for step in pending_steps(version):
        previous = result.data
        result.data = step.transform(dict(previous))
        result.applied.append(step.version)
        logger.info("settings_migrated", target_version=step.version, description=step.description)

        if step.side_effect is None:
            continue
        try:
            await step.side_effect(vault, previous, result.data)
        except UserError as e:
            logger.exception("data_migration_failed", target_version=step.version, error=str(e))
            result.failed.append(step.version)
            result.failed_inputs[step.version] = previous
    return result

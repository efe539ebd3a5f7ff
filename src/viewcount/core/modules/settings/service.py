import json
from typing import Any, TypeVar

import structlog
from pydantic import BaseModel, ValidationError

from viewcount.core.core import Service
from viewcount.core.modules.migration.chain import COUNTER_MIGRATION_VERSION, run_migrations
from viewcount.core.modules.migration.models import LegacySettings
from viewcount.core.modules.settings.models import PLUGIN_VERSION, Settings
from viewcount.core.vault import Vault
from viewcount.errors import StoreIOError
from viewcount.logging import set_log_level

logger = structlog.get_logger(__name__)

SETTINGS_FILE = "plugins/view-count/data.json"

ModelT = TypeVar("ModelT", bound=BaseModel)


class SettingsService(Service):
    """Loads, migrates and persists the user settings record."""

    def __init__(self, vault: Vault) -> None:
        super().__init__(vault)
        self.settings = Settings()
        self.migration_complete = True
        # Legacy storage settings while counters still await migration out of them
        self.pending_legacy_settings: LegacySettings | None = None

    @property
    def settings_path(self) -> str:
        return self.vault.config_path(SETTINGS_FILE)

    async def on_start(self) -> None:
        await self.load_settings()
        logger.debug("settings_service_started", plugin_version=self.settings.plugin_version)

    async def load_settings(self) -> Settings:
        """Run pending migrations on the stored record and adopt the result.

        The upgraded record is persisted only when every data migration
        succeeded, so a failed one runs again from the original record on the
        next start.
        """
        data = await self._read_data()
        version = str(data.get("pluginVersion") or "") if data else ""
        result = await run_migrations(self.vault, data or {}, version)

        settings = self._validate(Settings, result.data)
        settings.plugin_version = PLUGIN_VERSION
        self.settings = settings
        self.migration_complete = result.complete
        legacy_data = result.failed_inputs.get(COUNTER_MIGRATION_VERSION)
        self.pending_legacy_settings = None if legacy_data is None else self._validate(LegacySettings, legacy_data)
        self._apply_log_level()

        if not result.complete:
            logger.warning("migration_incomplete", failed_versions=result.failed)
            self.core.notifier.notify("data migration failed, it will be retried on next start")
            return settings

        if result.applied:
            logger.info("migrations_applied", versions=result.applied, plugin_version=PLUGIN_VERSION)
        await self.save_settings()
        return settings

    async def save_settings(self) -> None:
        """Persist the record. Skipped until every data migration has succeeded."""
        if not self.migration_complete:
            logger.warning("settings_save_deferred", reason="data migration incomplete")
            return
        try:
            await self.vault.write(self.settings_path, json.dumps(self.settings.to_json_dict(), indent=2))
        except StoreIOError as e:
            logger.exception("settings_save_failed", error=str(e))
            self.core.notifier.notify("error saving settings")

    async def update_settings(self, **changes: Any) -> Settings:
        """Apply changes by field name, persist them and resync mirrored properties if needed."""
        previous = self.settings
        updated = Settings.model_validate({**previous.model_dump(), **changes})
        self.settings = updated
        await self.save_settings()

        if updated.log_level != previous.log_level:
            self._apply_log_level()

        counter = self.core.services.counter
        if updated.view_count_property_name != previous.view_count_property_name:
            await counter.sync_all_to_frontmatter(previous_property_name=previous.view_count_property_name)
        elif (
            updated.save_view_count_to_frontmatter != previous.save_view_count_to_frontmatter
            or updated.view_count_type != previous.view_count_type
        ):
            await counter.sync_all_to_frontmatter()
        return updated

    def _apply_log_level(self) -> None:
        # Debug mode keeps the package logger at DEBUG regardless of the record
        if not self.core.config.debug:
            set_log_level(self.settings.log_level)

    async def _read_data(self) -> dict[str, Any] | None:
        path = self.settings_path
        try:
            if not await self.vault.exists(path):
                return None
            data = json.loads(await self.vault.read(path))
        except StoreIOError as e:
            logger.exception("settings_load_failed", error=str(e))
            self.core.notifier.notify("error loading settings")
            return None
        except json.JSONDecodeError as e:
            logger.warning("settings_corrupt", error=str(e))
            self.core.notifier.notify("settings are corrupt, using defaults")
            return None
        if not isinstance(data, dict):
            return None
        return data

    @staticmethod
    def _validate(model: type[ModelT], data: dict[str, Any]) -> ModelT:
        """Validate a settings record, falling back to defaults for invalid fields."""
        try:
            return model.model_validate(data)
        except ValidationError as e:
            invalid = {str(error["loc"][0]) for error in e.errors() if error["loc"]}
            logger.warning("settings_fields_invalid", model=model.__name__, fields=sorted(invalid))
            return model.model_validate({key: value for key, value in data.items() if key not in invalid})

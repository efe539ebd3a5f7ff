"""End-to-end upgrades from older persisted settings and counters."""

import pytest
from conftest import at, read_note_frontmatter, read_settings, read_snapshot, write_note, write_settings, write_snapshot

from viewcount.core.core import Core
from viewcount.core.modules.settings.models import PLUGIN_VERSION, CountMethod, TimePeriod, ViewType


class TestFileStorageUpgrade:
    """Upgrades of counters kept in the external snapshot."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(("once_a_day", "unique", "count_type"), [(True, 4, "unique-days-opened"), (False, 0, "total-times-opened")])
    async def test_from_1_2_1(self, core, vault_path, once_a_day, unique, count_type):
        last_view = at(2024, 5, 1, 9)
        write_settings(
            vault_path,
            {
                "pluginVersion": "1.2.1",
                "incrementOnceADay": once_a_day,
                "storageType": "file",
                "viewCountPropertyName": "view-count",
                "lastViewDatePropertyName": "view-date",
                "excludedPaths": ["private"],
                "enableTemplaterDelay": True,
                "templaterDelay": 300,
            },
        )
        write_snapshot(vault_path, [{"path": "a.md", "viewCount": 4, "lastViewMillis": last_view}])

        async with core.lifespan():
            entry = core.services.counter.get_entry("a.md")
            assert entry.total_times_opened == 4
            assert entry.unique_days_opened == unique
            assert entry.last_open_millis == last_view
            settings = core.services.settings.settings
            assert settings.view_count_type == CountMethod(count_type)
            assert settings.save_view_count_to_frontmatter is False
            assert settings.excluded_paths == ["private"]
            assert settings.templater_delay == 0

        data = read_settings(vault_path)
        assert data["pluginVersion"] == PLUGIN_VERSION
        assert "incrementOnceADay" not in data
        assert "storageType" not in data
        assert data["viewCountType"] == count_type
        assert read_snapshot(vault_path)[0]["totalTimesOpened"] == 4

    @pytest.mark.asyncio
    async def test_failed_migration_is_retried(self, config, clock, vault_path):
        write_settings(vault_path, {"pluginVersion": "1.2.1", "incrementOnceADay": True, "storageType": "file"})
        snapshot = vault_path / ".obsidian" / "view-count.json"
        snapshot.mkdir()

        first = Core(config, clock)
        async with first.lifespan():
            assert first.services.settings.settings.view_count_type == CountMethod.UNIQUE_DAYS_OPENED
            assert "View Count: data migration failed, it will be retried on next start" in first.notifier.messages
        assert read_settings(vault_path)["pluginVersion"] == "1.2.1"

        snapshot.rmdir()
        write_snapshot(vault_path, [{"path": "a.md", "viewCount": 2, "lastViewMillis": at(2024, 5, 2)}])

        second = Core(config, clock)
        async with second.lifespan():
            assert second.services.counter.get_view_count("a.md") == 2
        assert read_settings(vault_path)["pluginVersion"] == PLUGIN_VERSION


class TestPropertyStorageUpgrade:
    """Upgrades of counters embedded in item frontmatter."""

    @pytest.mark.asyncio
    async def test_from_1_2_1(self, core, vault_path):
        write_settings(
            vault_path,
            {
                "pluginVersion": "1.2.1",
                "incrementOnceADay": True,
                "storageType": "property",
                "viewCountPropertyName": "view-count",
                "lastViewDatePropertyName": "view-date",
            },
        )
        (vault_path / "a.md").write_text("---\nview-count: 3\nview-date: 2024-05-02\n---\nBody\n", encoding="utf-8")
        write_note(vault_path, "folder/b.md", {"view-count": "5", "view-date": "2024-05-03"})
        write_note(vault_path, "unviewed.md", {"view-count": 0})
        write_note(vault_path, "plain.md")
        # Stale file records: the frontmatter wins for a.md, c.md only exists here
        write_snapshot(
            vault_path,
            [
                {"path": "a.md", "viewCount": 1, "lastViewMillis": 1},
                {"path": "c.md", "viewCount": 2, "lastViewMillis": at(2024, 4, 20)},
            ],
        )

        async with core.lifespan():
            counter = core.services.counter
            assert [entry.path for entry in counter.get_entries()] == ["a.md", "folder/b.md", "c.md"]
            a = counter.get_entry("a.md")
            assert (a.total_times_opened, a.unique_days_opened, a.last_open_millis) == (3, 3, at(2024, 5, 2, 0))
            b = counter.get_entry("folder/b.md")
            assert (b.total_times_opened, b.last_open_millis) == (5, at(2024, 5, 3, 0))
            c = counter.get_entry("c.md")
            assert (c.total_times_opened, c.last_open_millis) == (2, at(2024, 4, 20))
            assert core.services.settings.settings.save_view_count_to_frontmatter is True

        assert read_settings(vault_path)["saveViewCountToFrontmatter"] is True
        assert all("viewCount" not in item for item in read_snapshot(vault_path))

    @pytest.mark.asyncio
    async def test_from_0_4_converts_time_property(self, core, vault_path):
        write_settings(
            vault_path,
            {"pluginVersion": "0.4.0", "incrementOnceADay": True, "storageType": "property", "lastViewTimePropertyName": "last-view-time"},
        )
        write_note(vault_path, "a.md", {"view-count": 2, "last-view-time": at(2024, 5, 1, 15)})

        async with core.lifespan():
            entry = core.services.counter.get_entry("a.md")
            assert entry.total_times_opened == 2
            assert entry.last_open_millis == at(2024, 5, 1, 0)

        assert read_note_frontmatter(vault_path, "a.md") == {"view-count": 2, "view-date": "2024-05-01"}

    @pytest.mark.asyncio
    async def test_from_0_4_keeps_custom_time_property(self, core, vault_path):
        write_settings(vault_path, {"pluginVersion": "0.4.0", "storageType": "property", "lastViewTimePropertyName": "seen"})
        write_note(vault_path, "a.md", {"view-count": 1, "seen": at(2024, 5, 1, 15)})

        async with core.lifespan():
            assert core.services.counter.get_entry("a.md").last_open_millis == at(2024, 5, 1, 0)

        assert read_note_frontmatter(vault_path, "a.md") == {"view-count": 1, "seen": "2024-05-01"}


class TestListPreferencesUpgrade:
    """Upgrades of the list view preferences."""

    @pytest.mark.asyncio
    async def test_from_2_4_0_keeps_choices(self, core, vault_path):
        write_settings(vault_path, {"pluginVersion": "2.4.0", "durationFilter": "month", "currentView": "trending", "listSize": 50})
        async with core.lifespan():
            settings = core.services.settings.settings
            assert settings.time_period == TimePeriod.MONTH
            assert settings.current_view == ViewType.TRENDS
            assert settings.item_count == 50
        data = read_settings(vault_path)
        assert "durationFilter" not in data
        assert "listSize" not in data

    @pytest.mark.asyncio
    async def test_from_2_3_0_gets_defaults(self, core, vault_path):
        write_settings(vault_path, {"pluginVersion": "2.3.0", "viewCountType": "total-times-opened"})
        async with core.lifespan():
            settings = core.services.settings.settings
            assert settings.view_count_type == CountMethod.TOTAL_TIMES_OPENED
            assert settings.time_period == TimePeriod.DAYS_3
            assert settings.current_view == ViewType.VIEWS
            assert settings.item_count == 20


class TestInterruptedUpgrade:
    """Counters stay intact while a failed counter migration waits for its retry."""

    @pytest.mark.asyncio
    async def test_embedded_count_survives_open_before_retry(self, config, clock, vault_path):
        write_settings(vault_path, {"pluginVersion": "1.2.1", "storageType": "property"})
        write_note(vault_path, "a.md", {"view-count": 7})
        snapshot = vault_path / ".obsidian" / "view-count.json"
        snapshot.write_text("{broken", encoding="utf-8")

        first = Core(config, clock)
        async with first.lifespan():
            assert first.services.counter.awaiting_migration
            await first.services.counter.handle_open("a.md")
            assert first.services.counter.get_entry("a.md").total_times_opened == 8
            await first.services.settings.update_settings(item_count=50)
        assert read_note_frontmatter(vault_path, "a.md") == {"view-count": 7}
        assert read_settings(vault_path)["pluginVersion"] == "1.2.1"

        second = Core(config, clock)
        async with second.lifespan():
            assert not second.services.counter.awaiting_migration
            assert second.services.counter.get_view_count("a.md") == 8
        assert read_settings(vault_path)["pluginVersion"] == PLUGIN_VERSION

    @pytest.mark.asyncio
    async def test_flat_record_survives_open_before_retry(self, config, clock, vault_path):
        write_settings(vault_path, {"pluginVersion": "1.2.1", "storageType": "file", "incrementOnceADay": True})
        write_snapshot(
            vault_path,
            [
                {"path": "a.md", "viewCount": 5, "lastViewMillis": at(2024, 5, 1)},
                {"path": "b.md", "viewCount": "lots", "lastViewMillis": 1},
            ],
        )

        first = Core(config, clock)
        async with first.lifespan():
            entry = await first.services.counter.handle_open("a.md")
            assert (entry.total_times_opened, entry.unique_days_opened) == (6, 6)

        second = Core(config, clock)
        async with second.lifespan():
            entry = second.services.counter.get_entry("a.md")
            assert (entry.total_times_opened, entry.unique_days_opened) == (6, 6)
            assert "View Count: data migration failed, it will be retried on next start" in second.notifier.messages
        items = read_snapshot(vault_path)
        assert {"path": "b.md", "viewCount": "lots", "lastViewMillis": 1} in items
        assert not any("viewCount" in item and item["path"] == "a.md" for item in items)

    @pytest.mark.asyncio
    async def test_flat_record_follows_rename_and_delete(self, core, vault_path):
        write_settings(vault_path, {"pluginVersion": "1.2.1", "storageType": "file"})
        write_snapshot(
            vault_path,
            [
                {"path": "a.md", "viewCount": 2, "lastViewMillis": 1},
                {"path": "b.md", "viewCount": 4, "lastViewMillis": 1},
                {"path": "c.md", "viewCount": "lots", "lastViewMillis": 1},
            ],
        )
        async with core.lifespan():
            counter = core.services.counter
            assert await counter.rename("a.md", "renamed.md")
            assert await counter.delete("b.md")
        paths = [item["path"] for item in read_snapshot(vault_path)]
        assert paths == ["renamed.md", "c.md"]


class TestLegacyValueClamping:
    """Out-of-range legacy values do not stop the upgrade."""

    @pytest.mark.asyncio
    async def test_negative_view_count(self, core, vault_path):
        write_settings(vault_path, {"pluginVersion": "1.2.1", "storageType": "file"})
        write_snapshot(
            vault_path,
            [
                {"path": "a.md", "viewCount": -1, "lastViewMillis": 1},
                {"path": "b.md", "viewCount": 3, "lastViewMillis": 1},
            ],
        )
        async with core.lifespan():
            counter = core.services.counter
            assert counter.get_entry("a.md").total_times_opened == 0
            assert counter.get_entry("b.md").total_times_opened == 3
            assert list(core.notifier.messages) == []
        assert read_settings(vault_path)["pluginVersion"] == PLUGIN_VERSION

    @pytest.mark.asyncio
    async def test_prerelease_version_still_migrates(self, core, vault_path):
        write_settings(vault_path, {"pluginVersion": "2.4.0-beta", "durationFilter": "week", "listSize": 15})
        async with core.lifespan():
            settings = core.services.settings.settings
            assert settings.time_period == TimePeriod.WEEK
            assert settings.item_count == 15

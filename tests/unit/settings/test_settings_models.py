"""Tests for the Settings record."""

import pytest
from pydantic import ValidationError

from viewcount.core.modules.settings.models import MAX_TEMPLATER_DELAY_MS, CountMethod, Settings, TimePeriod, ViewType


class TestSettingsDefaults:
    """Tests for default values and the persisted shape."""

    def test_defaults(self):
        settings = Settings()
        assert settings.view_count_type == CountMethod.UNIQUE_DAYS_OPENED
        assert settings.save_view_count_to_frontmatter is False
        assert settings.view_count_property_name == "view-count"
        assert settings.excluded_paths == []
        assert settings.templater_delay == 0
        assert settings.current_view == ViewType.VIEWS
        assert settings.time_period == TimePeriod.DAYS_3
        assert settings.item_count == 20

    def test_json_uses_camel_case(self):
        data = Settings(plugin_version="2.4.1").to_json_dict()
        assert data["viewCountType"] == "unique-days-opened"
        assert data["saveViewCountToFrontmatter"] is False
        assert data["pluginVersion"] == "2.4.1"
        assert data["timePeriod"] == "3-days"
        assert data["itemCount"] == 20

    def test_unknown_fields_are_ignored(self):
        settings = Settings.model_validate({"viewCountType": "total-times-opened", "legacyFlag": True})
        assert settings.view_count_type == CountMethod.TOTAL_TIMES_OPENED


class TestSettingsValidation:
    """Tests for field validators."""

    def test_excluded_paths_from_comma_string(self):
        settings = Settings.model_validate({"excludedPaths": " private/ ,, archive\\old ,"})
        assert settings.excluded_paths == ["private", "archive/old"]
        assert settings.excluded_paths_text() == "private,archive/old"

    def test_excluded_paths_from_list(self):
        settings = Settings(excluded_paths=["/a/", ""])
        assert settings.excluded_paths == ["a"]

    @pytest.mark.parametrize(
        ("value", "expected"),
        [(-5, 0), (0, 0), (250, 250), (9000, MAX_TEMPLATER_DELAY_MS), (1.5, 1)],
    )
    def test_templater_delay_is_clamped(self, value, expected):
        assert Settings(templater_delay=value).templater_delay == expected

    def test_invalid_item_count(self):
        with pytest.raises(ValidationError):
            Settings(item_count=30)

    def test_invalid_time_period(self):
        with pytest.raises(ValidationError):
            Settings.model_validate({"timePeriod": "fortnight"})

"""
Unit tests for extraction settings.

Tests:
- Defaults and bounds
- Custom stat validation
- YAML loading
- User-side scoping
"""

import pytest

from relstats.core.config import ExtractionSettings, LoggingConfig, scope_settings_for_user, settings as app_settings
from relstats.core.exceptions import ConfigurationError
from relstats.models.api import ExtractionRequest
from relstats.models.schemas import CustomStatDefinition, StatKey


class TestExtractionSettingsDefaults:
    def test_defaults(self, settings):
        assert settings.sequential_extraction is False
        assert settings.max_concurrent_calls == 2
        assert settings.max_delta_per_turn == 15
        assert settings.confidence_dampening == 0.65
        assert settings.mood_stickiness == 0.6
        assert settings.strict_json_repair is True
        assert settings.max_retries_per_stat == 2
        assert settings.enabled_stats() == list(StatKey)

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("TRACKER_MAX_DELTA_PER_TURN", "7")
        monkeypatch.setenv("TRACKER_TRACK_DESIRE", "false")

        settings = ExtractionSettings()

        assert settings.max_delta_per_turn == 7
        assert StatKey.DESIRE not in settings.enabled_stats()

    def test_default_for(self):
        settings = ExtractionSettings(default_trust=20, default_mood="Shy")
        assert settings.default_for(StatKey.TRUST) == 20
        assert settings.default_for(StatKey.MOOD) == "Shy"
        assert settings.default_for(StatKey.LAST_THOUGHT) == ""

    def test_max_delta_for_custom(self, settings):
        assert settings.max_delta_for() == 15
        assert settings.max_delta_for(CustomStatDefinition(id="respect", label="R")) == 15
        assert settings.max_delta_for(CustomStatDefinition(id="respect", label="R", max_delta_per_turn=3)) == 3


class TestFromMapping:
    @pytest.mark.parametrize(
        "data",
        [
            {"max_delta_per_turn": 0},
            {"max_delta_per_turn": 31},
            {"max_retries_per_stat": 5},
            {"max_concurrent_calls": 9},
            {"confidence_dampening": 1.5},
            {"prompt_templates_sequential": {"charm": "x"}},
        ],
    )
    def test_out_of_range_values_rejected(self, data):
        with pytest.raises(ConfigurationError) as exc_info:
            ExtractionSettings.from_mapping(data)

        assert exc_info.value.error_code == "configuration_error"
        assert exc_info.value.errors

    def test_duplicate_custom_ids_rejected(self):
        with pytest.raises(ConfigurationError):
            ExtractionSettings.from_mapping({
                "custom_stats": [
                    {"id": "respect", "label": "Respect"},
                    {"id": "respect", "label": "Respect again"},
                ]
            })

    def test_too_many_custom_stats_rejected(self):
        stats = [{"id": f"stat_{i}", "label": f"Stat {i}"} for i in range(9)]
        with pytest.raises(ConfigurationError):
            ExtractionSettings.from_mapping({"custom_stats": stats})

    @pytest.mark.parametrize("stat_id", ["Respect", "r", "1abc", "trust", "mood", "has-dash"])
    def test_invalid_custom_ids_rejected(self, stat_id):
        with pytest.raises(ConfigurationError):
            ExtractionSettings.from_mapping({"custom_stats": [{"id": stat_id, "label": "X"}]})

    def test_valid_mapping(self):
        settings = ExtractionSettings.from_mapping({
            "sequential_extraction": True,
            "custom_stats": [{"id": "respect", "label": "Respect", "max_delta_per_turn": 5}],
        })
        assert settings.sequential_extraction is True
        assert settings.custom_stats[0].max_delta_per_turn == 5


class TestFromYaml:
    def test_tracker_section(self, tmp_path):
        path = tmp_path / "tracker.yaml"
        path.write_text("tracker:\n  max_delta_per_turn: 9\n  track_mood: false\n", encoding="utf-8")

        settings = ExtractionSettings.from_yaml(str(path))

        assert settings.max_delta_per_turn == 9
        assert settings.track_mood is False

    def test_flat_mapping(self, tmp_path):
        path = tmp_path / "tracker.yaml"
        path.write_text("mood_stickiness: 0.2\n", encoding="utf-8")

        assert ExtractionSettings.from_yaml(str(path)).mood_stickiness == 0.2

    def test_missing_file_uses_defaults(self, tmp_path):
        settings = ExtractionSettings.from_yaml(str(tmp_path / "absent.yaml"))
        assert settings.max_delta_per_turn == 15

    def test_non_mapping_rejected(self, tmp_path):
        path = tmp_path / "tracker.yaml"
        path.write_text("- one\n- two\n", encoding="utf-8")

        with pytest.raises(ConfigurationError):
            ExtractionSettings.from_yaml(str(path))


class TestScopeSettingsForUser:
    def test_numeric_builtins_disabled(self):
        settings = ExtractionSettings(
            user_track_last_thought=False,
            custom_stats=[
                CustomStatDefinition(id="respect", label="Respect"),
                CustomStatDefinition(id="hidden", label="Hidden", track=False),
            ],
        )

        scoped = scope_settings_for_user(settings)

        assert scoped.enabled_stats() == [StatKey.MOOD]
        assert [d.id for d in scoped.custom_stats] == ["respect"]
        assert settings.track_affection is True

    def test_user_flags_cannot_enable_untracked_stats(self):
        settings = ExtractionSettings(track_mood=False, user_track_mood=True)
        assert StatKey.MOOD not in scope_settings_for_user(settings).enabled_stats()


class TestLoggingConfig:
    def test_get_level(self):
        assert LoggingConfig(level="debug").get_level() == 10
        assert LoggingConfig(level="nonsense").get_level() == 20


class TestAppConfig:
    def test_request_defaults_to_global_extraction_settings(self, monkeypatch):
        monkeypatch.setattr(app_settings, "extraction", ExtractionSettings(max_delta_per_turn=9))

        request = ExtractionRequest()

        assert request.settings.max_delta_per_turn == 9
        assert request.settings is not app_settings.extraction

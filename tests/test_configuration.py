"""Tests for AnalysisConfiguration and the ConfigurationHandle."""

from __future__ import annotations

import json

import pytest

from compass_analytics.domain.configuration import (
    PRESETS,
    AnalysisConfiguration,
    ConfigurationHandle,
    deep_merge,
)
from compass_analytics.domain.enums import SensitivityLevel
from compass_analytics.foundation.errors import ConfigurationError


@pytest.fixture
def handle() -> ConfigurationHandle:
    return ConfigurationHandle()


class TestAnalysisConfiguration:
    def test_defaults(self) -> None:
        config = AnalysisConfiguration()
        assert config.pattern_analysis.min_data_points == 3
        assert config.pattern_analysis.correlation_threshold == 0.25
        assert config.enhanced_analysis.anomaly_threshold == 1.5
        assert config.time_windows.long_term_days == 90
        assert config.alert_sensitivity.high == 0.7
        assert config.cache.ttl_seconds == 600.0

    def test_section_lookup(self) -> None:
        config = AnalysisConfiguration()
        assert config.section("cache") is config.cache
        with pytest.raises(ConfigurationError):
            config.section("nope")

    def test_configuration_error_is_a_value_error(self) -> None:
        with pytest.raises(ValueError):
            AnalysisConfiguration().section("nope")

    def test_deep_merge_keeps_siblings(self) -> None:
        merged = deep_merge({"a": {"x": 1, "y": 2}, "b": 3}, {"a": {"y": 5}})
        assert merged == {"a": {"x": 1, "y": 5}, "b": 3}


class TestConfigurationUpdates:
    def test_update_publishes_new_snapshot(self, handle: ConfigurationHandle) -> None:
        before = handle.current
        after = handle.update({"alert_sensitivity": {"high": 0.85}})
        assert handle.current is after
        assert after.alert_sensitivity.high == 0.85
        assert after.alert_sensitivity.medium == 0.5
        assert before.alert_sensitivity.high == 0.7

    @pytest.mark.parametrize("bands", [
        {"low": 0.6, "medium": 0.5},
        {"high": 1.2},
        {"low": 0.0},
        {"medium": 0.7, "high": 0.7},
    ])
    def test_invalid_bands_rejected_and_prior_kept(self, handle: ConfigurationHandle, bands: dict) -> None:
        before = handle.current
        with pytest.raises(ConfigurationError):
            handle.update({"alert_sensitivity": bands})
        assert handle.current is before

    def test_unordered_time_windows_rejected(self, handle: ConfigurationHandle) -> None:
        with pytest.raises(ConfigurationError):
            handle.update({"time_windows": {"recent_data_days": 30, "short_term_days": 14}})

    def test_non_positive_ttl_and_multiplier_rejected(self, handle: ConfigurationHandle) -> None:
        with pytest.raises(ConfigurationError):
            handle.update({"cache": {"ttl_seconds": 0}})
        with pytest.raises(ConfigurationError):
            handle.update({"alert_sensitivity": {"anomaly_multiplier": 0}})

    def test_unknown_field_rejected(self, handle: ConfigurationHandle) -> None:
        with pytest.raises(ConfigurationError):
            handle.update({"cache": {"ttl": 5}})

    def test_rejected_update_does_not_notify(self, handle: ConfigurationHandle) -> None:
        seen = []
        handle.subscribe(seen.append)
        with pytest.raises(ConfigurationError):
            handle.update({"alert_sensitivity": {"high": 2.0}})
        assert seen == []


class TestPresets:
    def test_sensitive_preset(self, handle: ConfigurationHandle) -> None:
        config = handle.apply_preset("sensitive")
        assert config.pattern_analysis.min_data_points == 2
        assert config.enhanced_analysis.anomaly_threshold == 1.0
        assert config.alert_sensitivity.level is SensitivityLevel.HIGH
        assert config.alert_sensitivity.anomaly_multiplier == 1.2

    def test_preset_applies_onto_defaults(self, handle: ConfigurationHandle) -> None:
        handle.update({"cache": {"max_size": 7}})
        config = handle.apply_preset("conservative")
        assert config.cache.max_size == 500
        assert config.pattern_analysis.min_data_points == 5

    def test_balanced_is_default(self, handle: ConfigurationHandle) -> None:
        handle.apply_preset("sensitive")
        assert handle.apply_preset("balanced") == AnalysisConfiguration()

    def test_unknown_preset(self, handle: ConfigurationHandle) -> None:
        with pytest.raises(ConfigurationError):
            handle.apply_preset("reckless")

    def test_every_preset_is_valid(self, handle: ConfigurationHandle) -> None:
        for name in PRESETS:
            handle.apply_preset(name)


class TestImportExport:
    def test_round_trip(self, handle: ConfigurationHandle) -> None:
        handle.apply_preset("sensitive")
        exported = handle.export_json()
        other = ConfigurationHandle()
        other.import_json(exported)
        assert other.current == handle.current

    def test_bad_json(self, handle: ConfigurationHandle) -> None:
        before = handle.current
        with pytest.raises(ConfigurationError):
            handle.import_json("{not json")
        with pytest.raises(ConfigurationError):
            handle.import_json(json.dumps([1, 2]))
        assert handle.current is before

    def test_reset(self, handle: ConfigurationHandle) -> None:
        handle.update({"pattern_analysis": {"min_data_points": 9}})
        assert handle.reset_to_defaults() == AnalysisConfiguration()


class TestSubscribers:
    def test_subscribers_receive_new_snapshot(self, handle: ConfigurationHandle) -> None:
        seen = []
        handle.subscribe(seen.append)
        published = handle.update({"cache": {"max_size": 10}})
        assert seen == [published]

    def test_failing_subscriber_does_not_block_others(self, handle: ConfigurationHandle) -> None:
        seen = []

        def broken(_config: AnalysisConfiguration) -> None:
            raise RuntimeError("boom")

        handle.subscribe(broken)
        handle.subscribe(seen.append)
        handle.update({"cache": {"max_size": 10}})
        assert len(seen) == 1
        assert handle.current.cache.max_size == 10

    def test_unsubscribe(self, handle: ConfigurationHandle) -> None:
        seen = []
        unsubscribe = handle.subscribe(seen.append)
        assert handle.subscriber_count == 1
        unsubscribe()
        unsubscribe()
        assert handle.subscriber_count == 0
        handle.update({"cache": {"max_size": 10}})
        assert seen == []

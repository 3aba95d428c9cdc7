"""Tests for triage decision configuration sources."""

import pytest

from helpdesk_triage.core import ConfigurationException
from helpdesk_triage.triage.application import CachedTriageConfigProvider, StaticTriageConfigProvider
from helpdesk_triage.triage.domain import TriageConfig
from helpdesk_triage.triage.infrastructure import TriageConfigManager


class FakeClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


class TestCachedTriageConfigProvider:
    """TTL cache in front of a config source."""

    @pytest.fixture
    def source(self):
        return StaticTriageConfigProvider(TriageConfig(confidence_threshold=0.8))

    def test_serves_cached_value_within_ttl(self, source):
        clock = FakeClock()
        cached = CachedTriageConfigProvider(source, ttl_seconds=10, clock=clock)

        assert cached.get_config().confidence_threshold == 0.8
        source.update(TriageConfig(confidence_threshold=0.6))
        clock.now += 9.9

        assert cached.get_config().confidence_threshold == 0.8

    def test_refreshes_after_ttl(self, source):
        clock = FakeClock()
        cached = CachedTriageConfigProvider(source, ttl_seconds=10, clock=clock)
        cached.get_config()

        source.update(TriageConfig(confidence_threshold=0.6))
        clock.now += 10

        assert cached.get_config().confidence_threshold == 0.6

    def test_zero_ttl_reads_through(self, source):
        cached = CachedTriageConfigProvider(source, ttl_seconds=0, clock=FakeClock())
        cached.get_config()

        source.update(TriageConfig(auto_close_enabled=False))

        assert cached.get_config().auto_close_enabled is False

    def test_invalidate_forces_reload(self, source):
        cached = CachedTriageConfigProvider(source, ttl_seconds=60, clock=FakeClock())
        cached.get_config()
        source.update(TriageConfig(confidence_threshold=0.5))

        cached.invalidate()

        assert cached.get_config().confidence_threshold == 0.5

    def test_negative_ttl_rejected(self, source):
        with pytest.raises(ValueError):
            CachedTriageConfigProvider(source, ttl_seconds=-1)


class TestTriageConfigManager:
    """YAML-backed config with reload."""

    @pytest.fixture
    def defaults(self):
        return TriageConfig(auto_close_enabled=True, confidence_threshold=0.8)

    def test_missing_file_uses_defaults(self, tmp_path, defaults):
        manager = TriageConfigManager(defaults)

        config = manager.load(tmp_path / "absent.yaml")

        assert config == defaults
        manager.start_watching()  # no file, nothing to watch
        manager.stop_watching()

    def test_loads_yaml(self, tmp_path, defaults):
        path = tmp_path / "triage_config.yaml"
        path.write_text("auto_close_enabled: false\nconfidence_threshold: 0.9\n")
        manager = TriageConfigManager(defaults)

        manager.load(path)

        assert manager.get_config() == TriageConfig(auto_close_enabled=False, confidence_threshold=0.9)

    def test_threshold_out_of_range_is_clamped(self, tmp_path, defaults):
        path = tmp_path / "triage_config.yaml"
        path.write_text("confidence_threshold: 1.5\n")

        config = TriageConfigManager(defaults).load(path)

        assert config.confidence_threshold == 1.0
        assert config.auto_close_enabled is True

    def test_non_numeric_threshold_rejected(self, tmp_path, defaults):
        path = tmp_path / "triage_config.yaml"
        path.write_text("confidence_threshold: high\n")

        with pytest.raises(ConfigurationException):
            TriageConfigManager(defaults).load(path)

    @pytest.mark.parametrize("value", ['"false"', '"no"', "1", "off-ish"])
    def test_non_boolean_auto_close_rejected(self, tmp_path, defaults, value):
        path = tmp_path / "triage_config.yaml"
        path.write_text(f"auto_close_enabled: {value}\n")

        with pytest.raises(ConfigurationException):
            TriageConfigManager(defaults).load(path)

    def test_quoted_false_reload_keeps_auto_close_setting(self, tmp_path, defaults):
        path = tmp_path / "triage_config.yaml"
        path.write_text("auto_close_enabled: false\n")
        manager = TriageConfigManager(defaults)
        manager.load(path)

        path.write_text('auto_close_enabled: "false"\n')

        assert manager.reload() is False
        assert manager.get_config().auto_close_enabled is False

    def test_reload_picks_up_changes(self, tmp_path, defaults):
        path = tmp_path / "triage_config.yaml"
        path.write_text("confidence_threshold: 0.7\n")
        manager = TriageConfigManager(defaults)
        manager.load(path)

        path.write_text("confidence_threshold: 0.65\n")

        assert manager.reload() is True
        assert manager.get_config().confidence_threshold == 0.65

    def test_broken_reload_keeps_last_good_config(self, tmp_path, defaults):
        path = tmp_path / "triage_config.yaml"
        path.write_text("confidence_threshold: 0.7\n")
        manager = TriageConfigManager(defaults)
        manager.load(path)

        path.write_text("confidence_threshold: [unclosed\n")

        assert manager.reload() is False
        assert manager.get_config().confidence_threshold == 0.7

    def test_get_config_before_load(self, defaults):
        with pytest.raises(RuntimeError):
            TriageConfigManager(defaults).get_config()

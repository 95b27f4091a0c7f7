"""Tests for runtime configuration."""

import json

from netconstellation.config import MonitorConfig


class TestMonitorConfig:
    def test_defaults(self):
        config = MonitorConfig()
        assert config.display.min_edge_strength == 10
        assert config.display.use_ascii is False
        assert config.display.max_display_devices == 15
        assert config.timeouts.gateway == 1800
        assert config.timeouts.remote == 600
        assert config.timeouts.cleanup_grace == 120
        assert config.analysis.ttl_refinement is False
        assert config.filters.filter_multicast is True
        assert config.filters.filter_non_local is False

    def test_from_dict_ignores_unknown(self):
        config = MonitorConfig.from_dict({
            "display": {"use_ascii": True, "bogus": 1},
            "unknown_section": {"x": 1},
        })
        assert config.display.use_ascii is True
        assert config.display.min_edge_strength == 10

    def test_save_and_load(self, tmp_path):
        path = tmp_path / "config.json"
        config = MonitorConfig()
        config.display.min_edge_strength = 25
        config.analysis.ttl_refinement = True
        config.save(str(path))

        data = json.loads(path.read_text())
        assert data["display"]["min_edge_strength"] == 25

        loaded = MonitorConfig.load(str(path))
        assert loaded.display.min_edge_strength == 25
        assert loaded.analysis.ttl_refinement is True

    def test_missing_file_gives_defaults(self, tmp_path):
        config = MonitorConfig.load(str(tmp_path / "absent.json"))
        assert config == MonitorConfig()
        assert MonitorConfig.load(None) == MonitorConfig()

    def test_corrupt_file_gives_defaults(self, tmp_path, caplog):
        path = tmp_path / "config.json"
        path.write_text("{not json")
        assert MonitorConfig.load(str(path)) == MonitorConfig()
        assert "using defaults" in caplog.text

    def test_wrong_shape_gives_defaults(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text("[1, 2, 3]")
        assert MonitorConfig.load(str(path)) == MonitorConfig()
        path.write_text('{"display": [1, 2]}')
        assert MonitorConfig.load(str(path)) == MonitorConfig()

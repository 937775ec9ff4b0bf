"""
Configuration Tests
===================
"""

import pytest
import yaml
from pydantic import ValidationError

from lane_blocker.config import BlockerConfig, Settings, load_config
from lane_blocker.models.output import Mitigation


class TestLoadConfig:
    """Tests for load_config()."""

    def test_defaults_without_file(self, tmp_path):
        config = load_config(str(tmp_path / "missing.yaml"))
        assert config.blocker.closure_threshold == 5
        assert config.blocker.reopen_threshold == 0
        assert config.blocker.mitigation == Mitigation.CLOSURE
        assert config.server.port == 8002

    def test_yaml_values(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(yaml.safe_dump({
            "blocker": {"closure_threshold": 3, "mitigation": "both"},
            "transforms": {"static": [
                {"parent_frame": "map", "child_frame": "lidar", "x": 1.5},
            ]},
            "graphs": {"paths": ["a.json"]},
        }))

        config = load_config(str(path))

        assert config.blocker.closure_threshold == 3
        assert config.blocker.mitigation == Mitigation.BOTH
        assert config.transforms.static[0].x == 1.5
        assert config.transforms.static[0].yaw == 0.0
        assert config.graphs.paths == ["a.json"]

    def test_env_overrides_yaml(self, tmp_path, monkeypatch):
        path = tmp_path / "config.yaml"
        path.write_text(yaml.safe_dump({"blocker": {"closure_threshold": 3}}))
        monkeypatch.setenv("LANE_BLOCKER_CLOSURE_THRESHOLD", "7")
        monkeypatch.setenv("LANE_BLOCKER_FEED_ENABLED", "false")
        monkeypatch.setenv("LANE_BLOCKER_RMF_FRAME", "L1")
        monkeypatch.delenv("PORT", raising=False)
        monkeypatch.setenv("LANE_BLOCKER_PORT", "9001")

        config = load_config(str(path))

        assert config.blocker.closure_threshold == 7
        assert config.feed.enabled is False
        assert config.blocker.rmf_frame == "L1"
        assert config.server.port == 9001

    def test_config_path_from_env(self, tmp_path, monkeypatch):
        path = tmp_path / "custom.yaml"
        path.write_text(yaml.safe_dump({"blocker": {"lane_width": 1.25}}))
        monkeypatch.setenv("LANE_BLOCKER_CONFIG", str(path))
        assert load_config().blocker.lane_width == 1.25


class TestBlockerConfig:
    """Validation of blocker parameters."""

    def test_reopen_must_be_below_closure(self):
        with pytest.raises(ValidationError):
            BlockerConfig(closure_threshold=2, reopen_threshold=2)

    def test_positive_ttl(self):
        with pytest.raises(ValidationError):
            BlockerConfig(obstacle_ttl_sec=0)

    def test_unknown_mitigation(self):
        with pytest.raises(ValidationError):
            Settings.model_validate({"blocker": {"mitigation": "reroute"}})

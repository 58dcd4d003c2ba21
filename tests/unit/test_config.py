"""Unit tests for configuration loading."""

import os
from pathlib import Path

import pytest
import yaml

from ntm_robot.alerts.models import AlertKind
from ntm_robot.cass.inject import InjectionFormat
from ntm_robot.config.loader import (
    ActivityConfig,
    AlertsConfig,
    InjectConfig,
    RobotConfig,
    WebhookConfig,
    deep_merge,
    find_config_file,
    load_config,
    load_config_file,
    load_env_vars,
    save_config,
)
from ntm_robot.utils.logging import ConfigurationError


@pytest.fixture
def isolated(tmp_path, monkeypatch):
    """Run with an empty cwd and home and no NTM_ROBOT_ variables."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path))
    for name in list(os.environ):
        if name.startswith("NTM_ROBOT_"):
            monkeypatch.delenv(name)
    return tmp_path


class TestModels:
    """Test configuration model validation."""

    def test_defaults(self):
        """Test default values."""
        config = RobotConfig()
        assert config.logging.level == "WARNING"
        assert config.output.format == "json"
        assert config.conflicts.min_confidence == 0.5
        assert config.alerts.desktop_enabled is False
        assert "degraded" not in config.alerts.alert_on

    def test_activity_thresholds_ordered(self):
        """Test a stalled threshold below the active one is pushed out."""
        config = ActivityConfig(active_threshold=200, stalled_threshold=100)
        assert config.stalled_threshold == 260

    def test_activity_poll_interval_minimum(self):
        """Test poll intervals below one second are rejected."""
        with pytest.raises(ValueError):
            ActivityConfig(poll_interval=0.5)

    def test_indicator_config(self):
        """Test conversion to the indicator runtime config."""
        indicator = ActivityConfig(panes=[1, 2]).to_indicator_config("proj")
        assert indicator.session == "proj"
        assert indicator.panes == [1, 2]

    def test_webhook_validation(self):
        """Test webhook urls and events are validated."""
        with pytest.raises(ValueError):
            WebhookConfig(url="ftp://example.com")
        with pytest.raises(ValueError):
            WebhookConfig(url="https://example.com", events=["exploded"])
        hook = WebhookConfig(url=" https://example.com/h ", events=["error"])
        assert hook.url == "https://example.com/h"

    def test_alerter_config(self):
        """Test conversion to the alerter runtime config."""
        alerts = AlertsConfig(
            alert_on=["error", "stalled"],
            webhooks=[{"url": "https://example.com/h", "events": ["error"]}],
        )
        runtime = alerts.to_alerter_config()
        assert runtime.alert_on == [AlertKind.ERROR, AlertKind.STALLED]
        assert runtime.webhooks[0].events == [AlertKind.ERROR]

    def test_alert_urgency(self):
        """Test desktop urgency must be a known value."""
        with pytest.raises(ValueError):
            AlertsConfig(desktop_urgency="extreme")

    def test_inject_config(self):
        """Test injection settings convert with overrides."""
        with pytest.raises(ValueError):
            InjectConfig(format="html")
        runtime = InjectConfig().to_runtime("minimal", context_pct=30)
        assert runtime.format is InjectionFormat.MINIMAL
        assert runtime.current_context_pct == 30

    def test_cass_runtime(self):
        """Test CASS and filter settings convert."""
        config = RobotConfig()
        assert config.cass.to_runtime().max_results == 5
        assert config.filter.to_runtime("/work/proj").current_workspace == "/work/proj"

    def test_tracker_max_age(self):
        """Test the tracker max age is optional."""
        config = RobotConfig(tracker={"max_age_seconds": 60})
        assert config.tracker.max_age.total_seconds() == 60
        assert RobotConfig().tracker.max_age is None

    def test_log_level_normalized(self):
        """Test log levels are upper-cased and validated."""
        assert RobotConfig(logging={"level": "debug"}).logging.level == "DEBUG"
        with pytest.raises(ValueError):
            RobotConfig(logging={"level": "chatty"})


class TestHelpers:
    """Test loader helpers."""

    def test_deep_merge(self):
        """Test nested mappings merge and scalars override."""
        base = {"a": {"x": 1, "y": 2}, "b": 1}
        merged = deep_merge(base, {"a": {"y": 3}, "c": 4})
        assert merged == {"a": {"x": 1, "y": 3}, "b": 1, "c": 4}
        assert base["a"]["y"] == 2

    def test_load_env_vars(self):
        """Test environment variables map to nested keys."""
        env = {
            "NTM_ROBOT_LOG_LEVEL": "INFO",
            "NTM_ROBOT_TOOL_TIMEOUT": "12.5",
            "NTM_ROBOT_ALERTS_ENABLED": "no",
            "NTM_ROBOT_DEBOUNCE_INTERVAL": "soon",
            "UNRELATED": "x",
        }
        assert load_env_vars(env) == {
            "logging": {"level": "INFO"},
            "tools": {"timeout": 12.5},
            "alerts": {"enabled": False},
        }

    def test_find_config_file(self, isolated):
        """Test the search order and explicit paths."""
        assert find_config_file() is None
        local = isolated / "ntm-robot.yaml"
        local.write_text("remote: host\n")
        assert find_config_file() == local
        with pytest.raises(ConfigurationError):
            find_config_file(str(isolated / "missing.yaml"))

    def test_load_config_file_errors(self, tmp_path):
        """Test invalid files raise ConfigurationError."""
        bad = tmp_path / "bad.yaml"
        bad.write_text("a: [unclosed\n")
        with pytest.raises(ConfigurationError, match="Invalid YAML"):
            load_config_file(bad)
        scalar = tmp_path / "scalar.yaml"
        scalar.write_text("just a string\n")
        with pytest.raises(ConfigurationError, match="must contain a mapping"):
            load_config_file(scalar)
        empty = tmp_path / "empty.yaml"
        empty.write_text("")
        assert load_config_file(empty) == {}


class TestLoadConfig:
    """Test layered configuration loading."""

    @pytest.fixture
    def config_file(self, isolated) -> Path:
        path = isolated / "robot.yaml"
        path.write_text(
            yaml.safe_dump(
                {
                    "remote": "file-host",
                    "logging": {"level": "ERROR"},
                    "output": {"format": "toon"},
                    "profiles": {"ci": {"logging": {"level": "INFO"}, "alerts": {"enabled": False}}},
                }
            )
        )
        return path

    def test_defaults(self, isolated):
        """Test defaults without a file."""
        assert load_config() == RobotConfig()

    def test_file_and_profile(self, config_file):
        """Test profile values override the file."""
        config = load_config(str(config_file), profile="ci")
        assert config.remote == "file-host"
        assert config.output.format == "toon"
        assert config.logging.level == "INFO"
        assert config.alerts.enabled is False

    def test_unknown_profile(self, config_file):
        """Test an unknown profile raises."""
        with pytest.raises(ConfigurationError, match="Unknown profile"):
            load_config(str(config_file), profile="prod")

    def test_precedence(self, config_file, monkeypatch):
        """Test CLI overrides beat the environment, which beats the file."""
        monkeypatch.setenv("NTM_ROBOT_REMOTE", "env-host")
        monkeypatch.setenv("NTM_ROBOT_LOG_LEVEL", "DEBUG")
        config = load_config(str(config_file), cli_overrides={"remote": "cli-host"})
        assert config.remote == "cli-host"
        assert config.logging.level == "DEBUG"

    def test_invalid_values(self, isolated):
        """Test validation failures become ConfigurationError."""
        with pytest.raises(ConfigurationError, match="Invalid configuration"):
            load_config(cli_overrides={"output": {"format": "xml"}})

    def test_save_round_trip(self, isolated):
        """Test a saved configuration loads back unchanged."""
        original = RobotConfig(remote="host", alerts={"alert_on": ["error"]})
        path = save_config(original, str(isolated / "saved.yaml"))
        assert load_config(str(path)) == original

    def test_save_default_location(self, isolated):
        """Test saving without a path writes under ~/.config/ntm."""
        path = save_config(RobotConfig())
        assert path == isolated / ".config" / "ntm" / "robot.yaml"
        assert find_config_file() == path

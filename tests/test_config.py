"""Tests for configuration loading."""

import os

import pytest

from todoee.config import Config, load_config
from todoee.errors import ConfigError


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    """Drop TODOEE_ variables and point the default path at nothing."""
    for key in list(os.environ):
        if key.startswith("TODOEE_"):
            monkeypatch.delenv(key)
    monkeypatch.setattr("todoee.config.DEFAULT_CONFIG_PATH", str(tmp_path / "absent.yaml"))


class TestLoadConfig:
    """Tests for YAML loading."""

    def test_defaults_without_file(self):
        """Test defaults when no config file exists."""
        config = load_config()

        assert config == Config()
        assert config.sync.configured is False
        assert config.ai.base_url == "http://localhost:11434"

    def test_yaml_sections(self, tmp_path):
        """Test values from a YAML file override defaults per key."""
        path = tmp_path / "config.yaml"
        path.write_text(
            "database:\n"
            "  path: /tmp/todos.db\n"
            "sync:\n"
            "  remote_url: http://token@llama:8765\n"
            "  batch_size: 25\n"
            "history:\n"
            "  retention_days: 7\n"
            "ai:\n"
            "  enabled: true\n"
            "  model: qwen2.5:3b\n"
        )

        config = load_config(path)

        assert config.database.path == "/tmp/todos.db"
        assert config.sync.configured is True
        assert config.sync.batch_size == 25
        assert config.sync.interval_minutes == 5
        assert config.history.retention_days == 7
        assert config.history.log_limit == 10
        assert config.ai.enabled is True
        assert config.ai.model == "qwen2.5:3b"

    def test_empty_file(self, tmp_path):
        """Test an empty file yields defaults."""
        path = tmp_path / "config.yaml"
        path.write_text("")
        assert load_config(path) == Config()

    def test_missing_explicit_file(self, tmp_path):
        """Test an explicit path must exist."""
        with pytest.raises(ConfigError):
            load_config(tmp_path / "nope.yaml")

    def test_invalid_yaml(self, tmp_path):
        """Test broken YAML raises ConfigError."""
        path = tmp_path / "config.yaml"
        path.write_text("sync: [unclosed\n")
        with pytest.raises(ConfigError):
            load_config(path)

    def test_non_mapping(self, tmp_path):
        """Test the top level must be a mapping."""
        path = tmp_path / "config.yaml"
        path.write_text("- just\n- a list\n")
        with pytest.raises(ConfigError):
            load_config(path)

    def test_bad_batch_size(self, tmp_path):
        """Test batch_size must be positive."""
        path = tmp_path / "config.yaml"
        path.write_text("sync:\n  batch_size: 0\n")
        with pytest.raises(ConfigError):
            load_config(path)


class TestEnvOverrides:
    """Tests for TODOEE_ environment variables."""

    def test_env_beats_file(self, tmp_path, monkeypatch):
        """Test environment values win over the file."""
        path = tmp_path / "config.yaml"
        path.write_text("sync:\n  remote_url: http://file-host:8765\n")
        monkeypatch.setenv("TODOEE_REMOTE_URL", "http://env-host:8765")
        monkeypatch.setenv("TODOEE_SYNC_INTERVAL", "15")
        monkeypatch.setenv("TODOEE_DB_PATH", "/tmp/env.db")

        config = load_config(path)

        assert config.sync.remote_url == "http://env-host:8765"
        assert config.sync.interval_minutes == 15
        assert config.database.path == "/tmp/env.db"

    def test_bool_and_int_overrides(self, monkeypatch):
        """Test boolean and integer parsing."""
        monkeypatch.setenv("TODOEE_NOTIFICATIONS_ENABLED", "false")
        monkeypatch.setenv("TODOEE_AI_ENABLED", "yes")
        monkeypatch.setenv("TODOEE_OLLAMA_PORT", "11500")
        monkeypatch.setenv("TODOEE_SERVER_TOKEN", "s3cret")

        config = load_config()

        assert config.notifications.enabled is False
        assert config.ai.enabled is True
        assert config.ai.port == 11500
        assert config.server.token == "s3cret"

    def test_invalid_int(self, monkeypatch):
        """Test a non-numeric integer override raises ConfigError."""
        monkeypatch.setenv("TODOEE_SYNC_BATCH_SIZE", "many")
        with pytest.raises(ConfigError):
            load_config()

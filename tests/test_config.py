"""
Tests for configuration and XDG directory helpers.
"""

from pathlib import Path

from taskchat.config import Settings, get_xdg_data_dir, get_xdg_state_dir


class TestXdgDirectories:
    """Tests for XDG directory resolution."""

    def test_data_dir_uses_xdg_data_home(self, monkeypatch):
        monkeypatch.setenv("XDG_DATA_HOME", "/tmp/xdg-data")
        assert get_xdg_data_dir() == str(Path("/tmp/xdg-data") / "taskchat")

    def test_data_dir_falls_back_to_home(self, monkeypatch):
        monkeypatch.delenv("XDG_DATA_HOME", raising=False)
        monkeypatch.setenv("HOME", "/home/tester")
        assert get_xdg_data_dir() == "/home/tester/.local/share/taskchat"

    def test_data_dir_without_home(self, monkeypatch):
        monkeypatch.delenv("XDG_DATA_HOME", raising=False)
        monkeypatch.delenv("HOME", raising=False)
        assert get_xdg_data_dir() == ".taskchat_data"

    def test_state_dir_uses_xdg_state_home(self, monkeypatch):
        monkeypatch.setenv("XDG_STATE_HOME", "/tmp/xdg-state")
        assert get_xdg_state_dir() == str(Path("/tmp/xdg-state") / "taskchat" / "logs")

    def test_state_dir_without_home(self, monkeypatch):
        monkeypatch.delenv("XDG_STATE_HOME", raising=False)
        monkeypatch.delenv("HOME", raising=False)
        assert get_xdg_state_dir() == "./logs"


class TestSettings:
    """Tests for Settings defaults and environment overrides."""

    def test_defaults(self):
        config = Settings(_env_file=None)

        assert config.reconnect_attempts == 3
        assert config.reconnect_wait == 2.0
        assert config.message_window_size == 50
        assert config.max_message_length == 1000
        assert config.current_user_id == ""
        assert config.is_sqlite

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("RECONNECT_ATTEMPTS", "5")
        monkeypatch.setenv("WEBSOCKET_URL", "wss://chat.example.com/socket")
        monkeypatch.setenv("DATABASE_URL", "postgresql://localhost/taskchat")

        config = Settings(_env_file=None)

        assert config.reconnect_attempts == 5
        assert config.websocket_url == "wss://chat.example.com/socket"
        assert not config.is_sqlite

    def test_unused_environment_variable_ignored(self, monkeypatch):
        monkeypatch.setenv("ENVIRONMENT", "production")

        config = Settings(_env_file=None)

        assert "environment" not in Settings.model_fields
        assert not hasattr(config, "environment")

    def test_log_directory_explicit(self, tmp_path):
        config = Settings(_env_file=None, log_dir=str(tmp_path))
        assert config.log_directory == tmp_path

    def test_log_directory_defaults_to_xdg_state(self, monkeypatch):
        monkeypatch.setenv("XDG_STATE_HOME", "/tmp/xdg-state")
        config = Settings(_env_file=None, log_dir="")
        assert config.log_directory == Path("/tmp/xdg-state/taskchat/logs")

"""
TaskChat Configuration.

Centralized configuration management using Pydantic Settings.
Loads configuration from environment variables.
"""

import os
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


def get_xdg_data_dir() -> str:
    """
    Get XDG-compliant data directory for the TaskChat local store.

    Follows XDG Base Directory Specification:
    - Uses $XDG_DATA_HOME/taskchat if XDG_DATA_HOME is set
    - Falls back to $HOME/.local/share/taskchat if not set
    - Returns relative path .taskchat_data if HOME not available (dev/testing)

    Returns:
        str: Path to data directory
    """
    xdg_data_home = os.getenv("XDG_DATA_HOME")
    if xdg_data_home:
        return str(Path(xdg_data_home) / "taskchat")

    home = os.getenv("HOME")
    if home:
        return str(Path(home) / ".local" / "share" / "taskchat")

    return ".taskchat_data"


def get_xdg_state_dir() -> str:
    """
    Get XDG-compliant state directory for TaskChat logs.

    Follows XDG Base Directory Specification:
    - Uses $XDG_STATE_HOME/taskchat if XDG_STATE_HOME is set
    - Falls back to $HOME/.local/state/taskchat if not set
    - Returns relative path ./logs if HOME not available (dev/testing)

    Returns:
        str: Path to state/logs directory
    """
    xdg_state_home = os.getenv("XDG_STATE_HOME")
    if xdg_state_home:
        return str(Path(xdg_state_home) / "taskchat" / "logs")

    home = os.getenv("HOME")
    if home:
        return str(Path(home) / ".local" / "state" / "taskchat" / "logs")

    return "./logs"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Local store
    database_url: str = f"sqlite:///{get_xdg_data_dir()}/taskchat.db"

    # Transport
    websocket_url: str = "wss://localhost:3001"
    reconnect_attempts: int = 3  # Reconnect tries after a drop before giving up
    reconnect_wait: float = 2.0  # Fixed wait between reconnect tries (seconds)
    open_timeout: float = 10.0  # WebSocket handshake timeout (seconds)

    # Messaging
    message_window_size: int = 50  # Messages loaded for the joined conversation
    max_message_length: int = 1000
    current_user_id: str = ""  # Signed-in user (empty = nobody signed in)

    # Logging
    log_level: str = "INFO"
    log_dir: str = ""  # XDG-compliant log directory (defaults to XDG state dir if empty)
    log_format: str = "standard"  # standard or json
    log_console_enabled: bool = True  # Enable console (stdout/stderr) logging
    log_file_enabled: bool = True  # Enable file-based logging
    log_max_bytes: int = 10_485_760  # 10MB per log file
    log_backup_count: int = 5  # Keep 5 backup files
    log_to_stdout: bool = True  # Log INFO/DEBUG to stdout
    log_to_stderr: bool = True  # Log WARNING/ERROR/CRITICAL to stderr

    @property
    def log_directory(self) -> Path:
        """Get the log directory path, using XDG default if not specified."""
        if self.log_dir:
            return Path(self.log_dir).expanduser()
        return Path(get_xdg_state_dir())

    @property
    def is_sqlite(self) -> bool:
        """Whether the local store is backed by SQLite."""
        return self.database_url.startswith("sqlite")


# Global settings instance
settings = Settings()

"""Configuration loading for todoee."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .errors import ConfigError

DEFAULT_CONFIG_PATH = "~/.config/todoee/config.yaml"


@dataclass
class DatabaseConfig:
    path: str = "~/.local/share/todoee/todoee.db"


@dataclass
class SyncConfig:
    """Configuration for the remote sync."""

    remote_url: str = ""  # Empty disables sync
    batch_size: int = 100
    retry_max_attempts: int = 3
    timeout_seconds: float = 30.0
    interval_minutes: int = 5  # Daemon sync interval

    @property
    def configured(self) -> bool:
        return bool(self.remote_url)


@dataclass
class HistoryConfig:
    retention_days: int = 30
    log_limit: int = 10


@dataclass
class NotificationsConfig:
    enabled: bool = True
    advance_minutes: int = 15
    check_interval_seconds: int = 60


@dataclass
class AiConfig:
    """Ollama model used by ``add --ai``."""

    enabled: bool = False
    host: str = "localhost"
    port: int = 11434
    model: str = "llama3.2:1b"

    @property
    def base_url(self) -> str:
        return f"http://{self.host}:{self.port}"


@dataclass
class ServerConfig:
    """Configuration for ``todoee serve``."""

    host: str = "127.0.0.1"
    port: int = 8765
    db_path: str = "~/.local/share/todoee/remote.db"
    token: str | None = None


@dataclass
class Config:
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    history: HistoryConfig = field(default_factory=HistoryConfig)
    notifications: NotificationsConfig = field(default_factory=NotificationsConfig)
    ai: AiConfig = field(default_factory=AiConfig)
    server: ServerConfig = field(default_factory=ServerConfig)


def _get_env(key: str, default: Any = None) -> Any:
    """Get environment variable with TODOEE_ prefix."""
    return os.environ.get(f"TODOEE_{key}", default)


def _as_bool(value: str) -> bool:
    return value.lower() in ("true", "1", "yes")


def _apply_env_overrides(config: Config) -> Config:
    """Apply environment variable overrides to config."""
    try:
        # Database overrides
        if db_path := _get_env("DB_PATH"):
            config.database.path = db_path

        # Sync overrides
        if remote_url := _get_env("REMOTE_URL"):
            config.sync.remote_url = remote_url
        if batch_size := _get_env("SYNC_BATCH_SIZE"):
            config.sync.batch_size = int(batch_size)
        if sync_interval := _get_env("SYNC_INTERVAL"):
            config.sync.interval_minutes = int(sync_interval)

        # History overrides
        if retention := _get_env("RETENTION_DAYS"):
            config.history.retention_days = int(retention)

        # Notification overrides
        if notify := _get_env("NOTIFICATIONS_ENABLED"):
            config.notifications.enabled = _as_bool(notify)

        # AI overrides
        if ai_enabled := _get_env("AI_ENABLED"):
            config.ai.enabled = _as_bool(ai_enabled)
        if host := _get_env("OLLAMA_HOST"):
            config.ai.host = host
        if port := _get_env("OLLAMA_PORT"):
            config.ai.port = int(port)
        if model := _get_env("OLLAMA_MODEL"):
            config.ai.model = model

        # Server overrides
        if server_db := _get_env("SERVER_DB_PATH"):
            config.server.db_path = server_db
        if token := _get_env("SERVER_TOKEN"):
            config.server.token = token
    except ValueError as e:
        raise ConfigError(f"Invalid environment override: {e}") from e

    return config


def _section(data: dict, name: str) -> dict:
    section = data.get(name) or {}
    if not isinstance(section, dict):
        raise ConfigError(f"Config section '{name}' must be a mapping")
    return section


def load_config(config_path: str | Path | None = None) -> Config:
    """Load configuration from YAML file with environment variable overrides.

    Args:
        config_path: Path to YAML config file. If None, the default path is
            used when it exists.

    Returns:
        Loaded Config object.

    Raises:
        ConfigError: The file is not valid YAML or has the wrong shape.
    """
    config = Config()

    path = Path(config_path or DEFAULT_CONFIG_PATH).expanduser()
    if path.exists():
        try:
            with open(path) as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid config file {path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError(f"Config file {path} must contain a mapping")

        # Parse database config
        if "database" in data:
            db_data = _section(data, "database")
            config.database = DatabaseConfig(
                path=db_data.get("path", config.database.path),
            )

        # Parse sync config
        if "sync" in data:
            sync_data = _section(data, "sync")
            config.sync = SyncConfig(
                remote_url=sync_data.get("remote_url", config.sync.remote_url) or "",
                batch_size=sync_data.get("batch_size", config.sync.batch_size),
                retry_max_attempts=sync_data.get(
                    "retry_max_attempts", config.sync.retry_max_attempts
                ),
                timeout_seconds=sync_data.get(
                    "timeout_seconds", config.sync.timeout_seconds
                ),
                interval_minutes=sync_data.get(
                    "interval_minutes", config.sync.interval_minutes
                ),
            )

        # Parse history config
        if "history" in data:
            history_data = _section(data, "history")
            config.history = HistoryConfig(
                retention_days=history_data.get(
                    "retention_days", config.history.retention_days
                ),
                log_limit=history_data.get("log_limit", config.history.log_limit),
            )

        # Parse notifications config
        if "notifications" in data:
            notify_data = _section(data, "notifications")
            config.notifications = NotificationsConfig(
                enabled=notify_data.get("enabled", config.notifications.enabled),
                advance_minutes=notify_data.get(
                    "advance_minutes", config.notifications.advance_minutes
                ),
                check_interval_seconds=notify_data.get(
                    "check_interval_seconds",
                    config.notifications.check_interval_seconds,
                ),
            )

        # Parse ai config
        if "ai" in data:
            ai_data = _section(data, "ai")
            config.ai = AiConfig(
                enabled=ai_data.get("enabled", config.ai.enabled),
                host=ai_data.get("host", config.ai.host),
                port=ai_data.get("port", config.ai.port),
                model=ai_data.get("model", config.ai.model),
            )

        # Parse server config
        if "server" in data:
            server_data = _section(data, "server")
            config.server = ServerConfig(
                host=server_data.get("host", config.server.host),
                port=server_data.get("port", config.server.port),
                db_path=server_data.get("db_path", config.server.db_path),
                token=server_data.get("token", config.server.token),
            )
    elif config_path:
        raise ConfigError(f"Config file not found: {path}")

    # Apply environment variable overrides
    config = _apply_env_overrides(config)

    if config.sync.batch_size < 1:
        raise ConfigError("sync.batch_size must be at least 1")

    return config

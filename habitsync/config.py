"""Configuration loading for habitsync."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml


@dataclass
class DeviceConfig:
    account_id: str = ""


@dataclass
class StorageConfig:
    """Configuration for device-local persistence."""

    db_path: str = "~/.habitsync/local.db"


@dataclass
class RemoteConfig:
    """Configuration for the remote event store client."""

    url: str = "http://localhost:8080"
    timeout_seconds: float = 30.0
    retry_max_attempts: int = 3
    retry_backoff_seconds: float = 1.0


@dataclass
class SyncConfig:
    """Configuration for the sync engine."""

    enabled: bool = True
    sync_interval_minutes: int = 5
    snapshot_enabled: bool = True
    snapshot_interval_hours: int = 24

    @property
    def snapshot_interval_ms(self) -> int:
        return self.snapshot_interval_hours * 60 * 60 * 1000


@dataclass
class ServerConfig:
    host: str = "0.0.0.0"
    port: int = 8080


@dataclass
class Config:
    device: DeviceConfig = field(default_factory=DeviceConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    remote: RemoteConfig = field(default_factory=RemoteConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    server: ServerConfig = field(default_factory=ServerConfig)


def _get_env(key: str, default: Any = None) -> Any:
    """Get environment variable with HABITSYNC_ prefix."""
    return os.environ.get(f"HABITSYNC_{key}", default)


def _is_true(value: str) -> bool:
    return value.lower() in ("true", "1", "yes")


def _apply_env_overrides(config: Config) -> Config:
    """Apply environment variable overrides to config."""
    if account_id := _get_env("ACCOUNT_ID"):
        config.device.account_id = account_id

    if db_path := _get_env("DB_PATH"):
        config.storage.db_path = db_path

    # Remote overrides
    if url := _get_env("REMOTE_URL"):
        config.remote.url = url
    if timeout := _get_env("REMOTE_TIMEOUT"):
        config.remote.timeout_seconds = float(timeout)
    if retries := _get_env("REMOTE_RETRIES"):
        config.remote.retry_max_attempts = int(retries)

    # Sync overrides
    if sync_enabled := _get_env("SYNC_ENABLED"):
        config.sync.enabled = _is_true(sync_enabled)
    if sync_interval := _get_env("SYNC_INTERVAL"):
        config.sync.sync_interval_minutes = int(sync_interval)
    if snapshot_enabled := _get_env("SNAPSHOT_ENABLED"):
        config.sync.snapshot_enabled = _is_true(snapshot_enabled)
    if snapshot_interval := _get_env("SNAPSHOT_INTERVAL_HOURS"):
        config.sync.snapshot_interval_hours = int(snapshot_interval)

    # Server overrides
    if host := _get_env("SERVER_HOST"):
        config.server.host = host
    if port := _get_env("SERVER_PORT"):
        config.server.port = int(port)

    return config


def load_config(config_path: str | Path | None = None) -> Config:
    """Load configuration from YAML file with environment variable overrides.

    Args:
        config_path: Path to YAML config file. If None, uses default config.

    Returns:
        Loaded Config object.
    """
    config = Config()

    if config_path:
        path = Path(config_path)
        if path.exists():
            with open(path) as f:
                data = yaml.safe_load(f) or {}

            if "device" in data:
                config.device = DeviceConfig(
                    account_id=str(data["device"].get("account_id", config.device.account_id)),
                )

            if "storage" in data:
                config.storage = StorageConfig(
                    db_path=data["storage"].get("db_path", config.storage.db_path),
                )

            # Parse remote config
            if "remote" in data:
                remote_data = data["remote"]
                config.remote = RemoteConfig(
                    url=remote_data.get("url", config.remote.url),
                    timeout_seconds=remote_data.get(
                        "timeout_seconds", config.remote.timeout_seconds
                    ),
                    retry_max_attempts=remote_data.get(
                        "retry_max_attempts", config.remote.retry_max_attempts
                    ),
                    retry_backoff_seconds=remote_data.get(
                        "retry_backoff_seconds", config.remote.retry_backoff_seconds
                    ),
                )

            # Parse sync config
            if "sync" in data:
                sync_data = data["sync"]
                config.sync = SyncConfig(
                    enabled=sync_data.get("enabled", config.sync.enabled),
                    sync_interval_minutes=sync_data.get(
                        "sync_interval_minutes", config.sync.sync_interval_minutes
                    ),
                    snapshot_enabled=sync_data.get(
                        "snapshot_enabled", config.sync.snapshot_enabled
                    ),
                    snapshot_interval_hours=sync_data.get(
                        "snapshot_interval_hours", config.sync.snapshot_interval_hours
                    ),
                )

            if "server" in data:
                server_data = data["server"]
                config.server = ServerConfig(
                    host=server_data.get("host", config.server.host),
                    port=server_data.get("port", config.server.port),
                )

    # Apply environment variable overrides
    return _apply_env_overrides(config)

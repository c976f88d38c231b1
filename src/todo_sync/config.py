"""Configuration management for the todo_sync engine."""

import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional

import yaml


logger = logging.getLogger(__name__)


# Environment variable -> (field name, converter)
ENV_OVERRIDES = {
    "API_BASE_URL": ("api_base_url", str),
    "SYNC_BATCH_SIZE": ("batch_size", int),
    "SYNC_RETRY_ATTEMPTS": ("max_retries", int),
    "SYNC_CONNECTIVITY_TIMEOUT": ("connectivity_timeout", float),
    "TODO_SYNC_DATA_DIR": ("data_dir", str),
}


@dataclass
class SyncSettings:
    """Settings consumed by the sync engine and its collaborators."""

    # Remote peer
    api_base_url: str = "http://localhost:3000/api"
    connectivity_timeout: float = 5.0  # seconds, health probe
    request_timeout: float = 30.0  # seconds, per batch call

    # Sync behaviour
    batch_size: int = 10
    max_retries: int = 3

    # Local storage
    data_dir: str = "~/.todo_sync"
    db_name: str = "tasks.db"

    log_level: str = "INFO"

    def __post_init__(self):
        self.data_dir = os.path.expanduser(str(self.data_dir))
        if not isinstance(self.api_base_url, str) or not self.api_base_url.strip():
            raise ValueError(f"api_base_url must be a non-empty string, got {self.api_base_url!r}")
        self.api_base_url = self.api_base_url.strip().rstrip("/")
        self.batch_size = int(self.batch_size)
        self.max_retries = int(self.max_retries)
        self.connectivity_timeout = float(self.connectivity_timeout)
        self.request_timeout = float(self.request_timeout)

        if self.batch_size < 1:
            raise ValueError(f"batch_size must be at least 1, got {self.batch_size}")
        if self.max_retries < 1:
            raise ValueError(f"max_retries must be at least 1, got {self.max_retries}")
        if self.connectivity_timeout <= 0 or self.request_timeout <= 0:
            raise ValueError("timeouts must be positive")

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    def to_yaml(self) -> str:
        """Serialize settings to YAML."""
        return yaml.safe_dump(self.to_dict(), default_flow_style=False, sort_keys=False)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "SyncSettings":
        known = {f.name for f in fields(cls)}
        data = dict(data or {})
        unknown = sorted(set(data) - known)
        if unknown:
            logger.warning(f"Ignoring unknown configuration keys: {', '.join(unknown)}")
        return cls(**{key: value for key, value in data.items() if key in known})

    @classmethod
    def from_yaml(cls, yaml_str: str) -> "SyncSettings":
        """Deserialize settings from YAML."""
        data = yaml.safe_load(yaml_str) or {}
        if not isinstance(data, dict):
            raise ValueError("configuration file must contain a mapping")
        return cls.from_dict(data)

    def with_env_overrides(self, environ: Optional[Dict[str, str]] = None) -> "SyncSettings":
        """Return a copy with environment variable overrides applied."""
        environ = os.environ if environ is None else environ
        data = self.to_dict()
        for env_name, (field_name, convert) in ENV_OVERRIDES.items():
            raw = environ.get(env_name)
            if raw is None or raw == "":
                continue
            try:
                data[field_name] = convert(raw)
            except ValueError:
                raise ValueError(f"Invalid value for {env_name}: {raw!r}")
        return SyncSettings(**data)

    def get_db_path(self) -> Path:
        """Get the SQLite database path, creating the data directory."""
        data_dir = Path(self.data_dir)
        data_dir.mkdir(parents=True, exist_ok=True)
        return data_dir / self.db_name

    def get_config_path(self) -> Path:
        return Path(self.data_dir) / "config.yaml"


def default_config_path() -> Path:
    data_dir = os.environ.get("TODO_SYNC_DATA_DIR") or SyncSettings.data_dir
    return Path(os.path.expanduser(data_dir)) / "config.yaml"


class Config:
    """Process-wide settings cache."""

    _instance: Optional[SyncSettings] = None

    @classmethod
    def load(cls, config_path: Optional[Path] = None) -> SyncSettings:
        """Load settings from file (if present) and the environment."""
        if cls._instance is not None and config_path is None:
            return cls._instance

        config_path = Path(config_path) if config_path else default_config_path()
        settings = SyncSettings()

        if config_path.exists():
            try:
                settings = SyncSettings.from_yaml(config_path.read_text())
                logger.debug(f"Loaded configuration from {config_path}")
            except (OSError, ValueError, TypeError, yaml.YAMLError) as e:
                logger.warning(f"Failed to load config from {config_path}: {e}; using defaults")
                settings = SyncSettings()

        cls._instance = settings.with_env_overrides()
        return cls._instance

    @classmethod
    def save(cls, settings: SyncSettings, config_path: Optional[Path] = None) -> Path:
        """Save settings to file."""
        config_path = Path(config_path) if config_path else settings.get_config_path()
        config_path.parent.mkdir(parents=True, exist_ok=True)
        config_path.write_text(settings.to_yaml())
        logger.info(f"Configuration saved to {config_path}")
        return config_path

    @classmethod
    def get(cls) -> SyncSettings:
        if cls._instance is None:
            cls._instance = cls.load()
        return cls._instance

    @classmethod
    def set(cls, settings: Optional[SyncSettings]) -> None:
        cls._instance = settings

    @classmethod
    def reload(cls) -> SyncSettings:
        cls._instance = None
        return cls.load()


def get_settings() -> SyncSettings:
    """Get the current settings."""
    return Config.get()


def load_settings(config_path: Optional[Path] = None) -> SyncSettings:
    return Config.load(config_path)


def save_settings(settings: SyncSettings, config_path: Optional[Path] = None) -> Path:
    return Config.save(settings, config_path)

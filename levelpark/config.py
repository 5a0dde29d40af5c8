# File: levelpark/config.py
"""
Application configuration for LevelPark

Settings come from the environment (AppConfig.from_env) or from a YAML
file (AppConfig.from_file). The service layer keeps its own tunables in
ParkingService.config; this module only covers process-level settings.
"""

from dataclasses import dataclass, fields, asdict
from typing import Optional, Dict, Any, Mapping
import logging
import os

import yaml

from .domain.strategies import FinePolicyType


class ConfigurationError(ValueError):
    """Raised for invalid or unknown configuration values"""
    pass


_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off", ""}


def _parse_bool(name: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE_VALUES:
        return True
    if text in _FALSE_VALUES:
        return False
    raise ConfigurationError(f"{name} must be a boolean, got: {value!r}")


@dataclass
class AppConfig:
    """Process-level settings"""
    database_url: str = "sqlite:///./levelpark.db"
    redis_url: Optional[str] = None
    events_channel: str = "levelpark.events"
    log_level: str = "INFO"
    log_dir: str = "logs"
    lot_name: str = "Main Parking Lot"
    fine_policy: str = "FIXED"
    memory_only: bool = False
    issue_reserved_fines_on_entry: bool = True

    ENV_VARS = {
        "database_url": "DATABASE_URL",
        "redis_url": "REDIS_URL",
        "events_channel": "LEVELPARK_EVENTS_CHANNEL",
        "log_level": "LOG_LEVEL",
        "log_dir": "LOG_DIR",
        "lot_name": "LEVELPARK_LOT_NAME",
        "fine_policy": "LEVELPARK_FINE_POLICY",
        "memory_only": "LEVELPARK_MEMORY_ONLY",
        "issue_reserved_fines_on_entry": "LEVELPARK_RESERVED_FINES",
    }

    def __post_init__(self):
        self.memory_only = _parse_bool("memory_only", self.memory_only)
        self.issue_reserved_fines_on_entry = _parse_bool(
            "issue_reserved_fines_on_entry", self.issue_reserved_fines_on_entry
        )
        self.log_level = str(self.log_level).strip().upper()
        self.fine_policy = str(self.fine_policy).strip().upper()
        if self.redis_url is not None and not str(self.redis_url).strip():
            self.redis_url = None

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> 'AppConfig':
        """Build a configuration from environment variables"""
        environ = os.environ if environ is None else environ
        values = {
            name: environ[var]
            for name, var in cls.ENV_VARS.items()
            if var in environ
        }
        config = cls(**values)
        config.validate()
        return config

    @classmethod
    def from_file(cls, path: str) -> 'AppConfig':
        """
        Build a configuration from a YAML mapping of field names
        Raises: ConfigurationError for unreadable files or unknown keys
        """
        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(f"Cannot read configuration file {path}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigurationError(f"Configuration file {path} must contain a mapping")

        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigurationError(f"Unknown configuration keys: {', '.join(unknown)}")

        config = cls(**data)
        config.validate()
        return config

    def validate(self) -> None:
        """Raises: ConfigurationError for unknown policies or log levels"""
        try:
            FinePolicyType.from_name(self.fine_policy)
        except ValueError as e:
            raise ConfigurationError(str(e)) from e

        if not isinstance(logging.getLevelName(self.log_level), int):
            raise ConfigurationError(f"Unknown log level: {self.log_level}")

        if not self.memory_only and not self.database_url:
            raise ConfigurationError("database_url is required unless memory_only is set")

    def service_config(self) -> Dict[str, Any]:
        """Tunables handed to ParkingService.config"""
        return {"issue_reserved_fines_on_entry": self.issue_reserved_fines_on_entry}

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
Configuration management for pg_timeout.

Loads configuration from a YAML file and environment variables.
Provides typed configuration classes with validation.
"""

import logging
import os
import yaml
from pathlib import Path
from typing import Dict, Any, Optional
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

INT_MAX = 2147483647

DEFAULT_NAPTIME = 10
DEFAULT_IDLE_SESSION_TIMEOUT = 60


class ConfigError(ValueError):
    """Raised when a configuration value is missing or out of bounds."""


def _check_bounds(name: str, value: Any, low: int = 1, high: int = INT_MAX) -> int:
    # bool is an int subclass, reject it explicitly
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"{name} must be an integer, got {value!r}")
    if value < low or value > high:
        raise ConfigError(f"{name}={value} is outside the valid range [{low}, {high}]")
    return value


# =============================================================================
# Configuration Data Classes
# =============================================================================

@dataclass
class TimeoutConfig:
    """Poll interval and idle threshold, both in seconds."""
    naptime: int = DEFAULT_NAPTIME
    idle_session_timeout: int = DEFAULT_IDLE_SESSION_TIMEOUT

    def __post_init__(self):
        _check_bounds("pg_timeout.naptime", self.naptime)
        _check_bounds("pg_timeout.idle_session_timeout", self.idle_session_timeout)


@dataclass
class DatabaseConfig:
    """PostgreSQL connection configuration."""
    host: Optional[str] = None
    port: int = 5432
    dbname: str = "postgres"
    user: Optional[str] = None
    password: Optional[str] = None
    connect_timeout: int = 5
    application_name: str = "pg_timeout_worker"

    def connect_kwargs(self) -> Dict[str, Any]:
        """Keyword arguments for psycopg.connect(), without unset values."""
        kwargs = {
            "host": self.host,
            "port": self.port,
            "dbname": self.dbname,
            "user": self.user,
            "password": self.password,
            "connect_timeout": self.connect_timeout,
            "application_name": self.application_name,
        }
        return {key: value for key, value in kwargs.items() if value is not None}


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str = "INFO"


@dataclass
class WorkerConfig:
    """Worker identity and registration settings."""
    name: str = "pg_timeout_worker"
    type: str = "pg_timeout"
    preload: bool = True  # idle_session_timeout is only defined when preloaded
    status_file: Optional[str] = None
    owner_pid: Optional[int] = None

    def __post_init__(self):
        if self.status_file:
            self.status_file = str(Path(self.status_file).expanduser())


# =============================================================================
# Main Configuration Class
# =============================================================================

@dataclass
class PgTimeoutConfig:
    """
    Main configuration class for pg_timeout.

    Aggregates all configuration sections and provides methods for
    loading from YAML files and environment variables.
    """
    timeouts: TimeoutConfig = field(default_factory=TimeoutConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    worker: WorkerConfig = field(default_factory=WorkerConfig)
    source: Optional[Path] = None

    @classmethod
    def load(cls, config_path: Optional[Path] = None) -> 'PgTimeoutConfig':
        """
        Load configuration from YAML file with environment variable overrides.

        Args:
            config_path: Path to configuration directory or file.
                        If None, searches standard locations.

        Returns:
            PgTimeoutConfig instance

        Raises:
            ConfigError: If a value is malformed or out of bounds
        """
        config_file = cls._resolve_config_file(config_path)

        if config_file is not None and config_file.exists():
            with open(config_file, 'r') as f:
                try:
                    config_data = yaml.safe_load(f) or {}
                except yaml.YAMLError as e:
                    raise ConfigError(f"Cannot parse {config_file}: {e}") from e
        else:
            config_data = {}

        if not isinstance(config_data, dict):
            raise ConfigError(f"{config_file} must contain a mapping at top level")

        config_data = cls._apply_env_overrides(config_data)
        config = cls._from_dict(config_data)
        config.source = config_file
        return config

    @classmethod
    def _resolve_config_file(cls, config_path: Optional[Path]) -> Optional[Path]:
        if config_path is None:
            return cls._find_config_dir() / "config.yaml"
        config_path = Path(config_path).expanduser()
        if config_path.is_dir():
            return config_path / "config.yaml"
        return config_path

    @classmethod
    def _find_config_dir(cls) -> Path:
        """Find configuration directory in standard locations."""
        possible_locations = [
            Path.cwd() / "config",
            Path.home() / ".pg_timeout",
            Path("/etc/pg_timeout"),
        ]

        for location in possible_locations:
            if (location / "config.yaml").exists():
                return location

        return Path.home() / ".pg_timeout"

    @classmethod
    def _apply_env_overrides(cls, config_data: Dict[str, Any]) -> Dict[str, Any]:
        """Apply environment variable overrides to configuration."""
        for section in ('pg_timeout', 'database', 'logging', 'worker'):
            if not isinstance(config_data.get(section), dict):
                config_data[section] = {}

        timeouts = config_data['pg_timeout']
        if 'PG_TIMEOUT_NAPTIME' in os.environ:
            timeouts['naptime'] = cls._env_int('PG_TIMEOUT_NAPTIME')
        if 'PG_TIMEOUT_IDLE_SESSION_TIMEOUT' in os.environ:
            timeouts['idle_session_timeout'] = cls._env_int('PG_TIMEOUT_IDLE_SESSION_TIMEOUT')

        database = config_data['database']
        for key, env_name in (('host', 'PGHOST'), ('dbname', 'PGDATABASE'),
                              ('user', 'PGUSER'), ('password', 'PGPASSWORD')):
            if env_name in os.environ:
                database[key] = os.environ[env_name]
        if 'PGPORT' in os.environ:
            database['port'] = cls._env_int('PGPORT')

        config_data['logging']['level'] = os.getenv(
            'PG_TIMEOUT_LOG_LEVEL',
            config_data['logging'].get('level', 'INFO')
        )

        return config_data

    @staticmethod
    def _env_int(name: str) -> int:
        raw = os.environ[name]
        try:
            return int(raw)
        except ValueError:
            raise ConfigError(f"{name} must be an integer, got {raw!r}") from None

    @classmethod
    def _from_dict(cls, data: Dict[str, Any]) -> 'PgTimeoutConfig':
        """Create PgTimeoutConfig from dictionary."""
        worker_data = data.get('worker', {})
        try:
            worker = WorkerConfig(**worker_data)
            timeout_data = dict(data.get('pg_timeout', {}))
            if not worker.preload:
                # Only naptime exists outside preload mode
                timeout_data.pop('idle_session_timeout', None)
            return cls(
                timeouts=TimeoutConfig(**timeout_data),
                database=DatabaseConfig(**data.get('database', {})),
                logging=LoggingConfig(**data.get('logging', {})),
                worker=worker,
            )
        except TypeError as e:
            # Unknown keys in one of the sections
            raise ConfigError(str(e)) from e


class ConfigStore:
    """
    Reloadable source of TimeoutConfig values.

    Holds the values that are active right now. reload() re-reads the
    configuration source; a reload that fails validation keeps the
    previous values.
    """

    def __init__(self, config: PgTimeoutConfig, config_path: Optional[Path] = None):
        self._config = config
        self._config_path = config_path if config_path is not None else config.source

    @property
    def config(self) -> PgTimeoutConfig:
        return self._config

    def current(self) -> TimeoutConfig:
        """Return the active timeout settings."""
        return self._config.timeouts

    def reload(self) -> TimeoutConfig:
        """
        Re-read configuration and return the active timeout settings.

        Returns:
            The new TimeoutConfig, or the previous one if the reload was rejected
        """
        try:
            fresh = PgTimeoutConfig.load(self._config_path)
        except (ConfigError, OSError) as e:
            logger.error(f"Configuration reload rejected, keeping previous values: {e}")
            return self._config.timeouts

        previous = self._config.timeouts
        self._config.timeouts = fresh.timeouts
        if fresh.timeouts != previous:
            logger.info(
                f"Configuration reloaded: naptime={fresh.timeouts.naptime}s, "
                f"idle_session_timeout={fresh.timeouts.idle_session_timeout}s"
            )
        return fresh.timeouts


# =============================================================================
# Convenience Functions
# =============================================================================

def load_config(config_path: Optional[Path] = None) -> PgTimeoutConfig:
    """
    Load pg_timeout configuration.

    Args:
        config_path: Path to configuration directory or file

    Returns:
        PgTimeoutConfig instance
    """
    if config_path is None and os.getenv('PG_TIMEOUT_CONFIG'):
        config_path = Path(os.environ['PG_TIMEOUT_CONFIG'])
    return PgTimeoutConfig.load(config_path)

# pyright: reportExplicitAny=false, reportAny=false
"""Configuration models.

This module defines the frozen Pydantic models for each configuration
section and the top-level Config container:
- LoggingConfig: log level, format and destination
- ServerConfig: HTTP/WebSocket bind address
- RegistryConfig: location of the instance registry file
- SupervisorConfig: process supervision and restart policy limits
"""

from enum import StrEnum
from pathlib import Path
from typing import Any, ClassVar, Self

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from proxyfleet.exceptions import ConfigLoadError

from ._defaults import DEFAULT_CONFIG, DEFAULT_CONFIG_FILENAME
from ._loader import deep_merge, parse_env_vars, read_toml_file


class LogLevel(StrEnum):
    """Log level threshold values."""

    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class LogFormat(StrEnum):
    """Log output format values."""

    JSON = "json"
    TEXT = "text"


class LoggingConfig(BaseModel):
    """Logging configuration section.

    Attributes:
        level: Log level threshold.
        format: Log output format.
        file: Path to log file (empty logs to stderr).
        max_bytes: Rotate the log file at this size (0 disables rotation).
        backup_count: Rotated files to keep.
    """

    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=True, extra="ignore")

    level: LogLevel = LogLevel.INFO
    format: LogFormat = LogFormat.TEXT
    file: str = ""
    max_bytes: int = Field(default=0, ge=0)
    backup_count: int = Field(default=0, ge=0)


class ServerConfig(BaseModel):
    """HTTP server configuration section."""

    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=True, extra="ignore")

    host: str = "127.0.0.1"
    port: int = Field(default=3000, ge=0, le=65535)
    echo_output: bool = False


class RegistryConfig(BaseModel):
    """Instance registry configuration section."""

    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=True, extra="ignore")

    path: Path = Path("services.json")


class SupervisorConfig(BaseModel):
    """Process supervision configuration section.

    Attributes:
        log_buffer_size: Log entries retained per instance.
        max_restart_attempts: Automatic respawns allowed inside one window.
        restart_window: Length in seconds of the attempt-counting window.
        backoff_step: Seconds added to the respawn delay per attempt.
        stop_poll_interval: Seconds between liveness checks during restart.
        stop_timeout: Seconds restart waits for a graceful stop.
        kill_grace: Seconds restart waits after escalating to SIGKILL.
        shutdown_timeout: Seconds to wait for children on shutdown.
        subscriber_buffer: Events buffered per observer before it is pruned.
    """

    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=True, extra="ignore")

    log_buffer_size: int = Field(default=1000, gt=0)
    max_restart_attempts: int = Field(default=5, ge=0)
    restart_window: float = Field(default=60.0, gt=0)
    backoff_step: float = Field(default=1.0, ge=0)
    stop_poll_interval: float = Field(default=0.1, gt=0)
    stop_timeout: float = Field(default=10.0, ge=0)
    kill_grace: float = Field(default=1.0, ge=0)
    shutdown_timeout: float = Field(default=5.0, ge=0)
    subscriber_buffer: int = Field(default=1024, gt=0)


class Config(BaseModel):
    """Configuration container with typed access.

    Use the factory methods rather than the constructor so that defaults,
    file values and environment overrides are merged consistently.
    """

    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=True)

    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    registry: RegistryConfig = Field(default_factory=RegistryConfig)
    supervisor: SupervisorConfig = Field(default_factory=SupervisorConfig)

    @classmethod
    def from_dict(
        cls,
        data: dict[str, Any],
        *,
        source: Path | None = None,
    ) -> Self:
        """Build a Config from a (partial) dictionary merged over defaults.

        Args:
            data: Configuration values.
            source: File the values came from, for error reporting.

        Returns:
            The validated configuration.

        Raises:
            ConfigLoadError: If the merged values fail validation.
        """
        merged = deep_merge(DEFAULT_CONFIG, data)
        try:
            return cls.model_validate(merged)
        except ValidationError as e:
            msg = f"Invalid configuration: {e}"
            raise ConfigLoadError(msg, path=source) from e

    @classmethod
    def from_file(cls, path: Path) -> Self:
        """Load configuration from a TOML file.

        Raises:
            FileNotFoundError: If the file does not exist.
            ConfigLoadError: If the file cannot be parsed or validated.
        """
        return cls.from_dict(read_toml_file(path), source=path)

    @classmethod
    def load(
        cls,
        *,
        config_path: Path | None = None,
        search_dir: Path | None = None,
        include_env: bool = True,
    ) -> Self:
        """Load configuration from all sources.

        Precedence, highest first: environment variables, the config file,
        built-in defaults. The config file is `config_path` when given,
        otherwise `proxyfleet.toml` in `search_dir` (default: cwd) if present.

        Args:
            config_path: Explicit configuration file.
            search_dir: Directory searched for the default config file.
            include_env: Whether to apply PROXYFLEET_* overrides.

        Returns:
            The validated configuration.
        """
        data: dict[str, Any] = {}
        source: Path | None = None

        if config_path is not None:
            source = config_path
        else:
            candidate = (search_dir or Path.cwd()) / DEFAULT_CONFIG_FILENAME
            if candidate.is_file():
                source = candidate

        if source is not None:
            data = read_toml_file(source)

        if include_env:
            data = deep_merge(data, parse_env_vars())

        return cls.from_dict(data, source=source)

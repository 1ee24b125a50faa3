"""proxyfleet configuration.

This module provides the public API for configuration management:
loading, merging and typed access to configuration values.

Example:
    >>> from proxyfleet.config import Config
    >>> config = Config.load()
    >>> config.supervisor.max_restart_attempts
    5
"""

from proxyfleet.exceptions import ConfigError, ConfigLoadError

from ._defaults import DEFAULT_CONFIG, DEFAULT_CONFIG_FILENAME
from ._load import safe_load_config
from ._loader import (
    deep_merge,
    parse_env_vars,
    parse_string_value,
    read_toml_file,
    set_nested_key,
)
from ._models import (
    Config,
    LogFormat,
    LoggingConfig,
    LogLevel,
    RegistryConfig,
    ServerConfig,
    SupervisorConfig,
)

__all__ = [
    "DEFAULT_CONFIG",
    "DEFAULT_CONFIG_FILENAME",
    "Config",
    "ConfigError",
    "ConfigLoadError",
    "LogFormat",
    "LogLevel",
    "LoggingConfig",
    "RegistryConfig",
    "ServerConfig",
    "SupervisorConfig",
    "deep_merge",
    "parse_env_vars",
    "parse_string_value",
    "read_toml_file",
    "safe_load_config",
    "set_nested_key",
]

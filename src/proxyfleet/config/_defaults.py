"""Default configuration values.

This module defines the built-in default configuration values that are used
when no other configuration sources provide values.

Note: DEFAULT_CONFIG is a plain dict so it can be passed straight to
deep_merge, which copies its inputs.
"""

from typing import Any

DEFAULT_CONFIG_FILENAME = "proxyfleet.toml"

DEFAULT_CONFIG: dict[str, Any] = {  # pyright: ignore[reportExplicitAny]
    "logging": {
        "level": "info",
        "format": "text",
        "file": "",
        "max_bytes": 0,
        "backup_count": 0,
    },
    "server": {
        "host": "127.0.0.1",
        "port": 3000,
        "echo_output": False,
    },
    "registry": {
        "path": "services.json",
    },
    "supervisor": {
        "log_buffer_size": 1000,
        "max_restart_attempts": 5,
        "restart_window": 60.0,
        "backoff_step": 1.0,
        "stop_poll_interval": 0.1,
        "stop_timeout": 10.0,
        "kill_grace": 1.0,
        "shutdown_timeout": 5.0,
        "subscriber_buffer": 1024,
    },
}

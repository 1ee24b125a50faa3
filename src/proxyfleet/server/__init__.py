"""HTTP and WebSocket control API for proxyfleet."""

from ._app import (
    create_app,
    handle_http_error,
    handle_proxyfleet_error,
    logger_from_config,
    status_for_error,
)

__all__ = [
    "create_app",
    "handle_http_error",
    "handle_proxyfleet_error",
    "logger_from_config",
    "status_for_error",
]

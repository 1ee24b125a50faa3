"""The proxyfleet command-line interface."""

from ._app import create_app, main
from ._context import CLIContext, activate, current_context

__all__ = ["CLIContext", "activate", "create_app", "current_context", "main"]

"""proxyfleet CLI commands."""
# pyright: reportUnusedCallResult=false

from __future__ import annotations

from typing import TYPE_CHECKING

from ._instances import app as instances_app
from ._serve import app as serve_app
from ._shared import ExitCode, fail, registry_errors

if TYPE_CHECKING:
    from cyclopts import App

__all__ = [
    "ExitCode",
    "fail",
    "instances_app",
    "register_commands",
    "registry_errors",
    "serve_app",
]


def register_commands(app: App) -> None:
    app.command(instances_app)
    app.command(serve_app)

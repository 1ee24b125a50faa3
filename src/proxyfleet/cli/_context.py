"""Options shared between the top-level command and its subcommands.

The meta command resolves the configuration once and activates a CLIContext
for the duration of the subcommand it dispatches to.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from rich.console import Console

from proxyfleet.config import Config

if TYPE_CHECKING:
    from pathlib import Path

_active: ContextVar[CLIContext | None] = ContextVar("proxyfleet_cli", default=None)


@dataclass(frozen=True, slots=True)
class CLIContext:
    """Resolved global options.

    Attributes:
        config: Effective configuration.
        config_path: File given with --config, if any.
        config_error: Why the configuration fell back to defaults, if it did.
        quiet: Suppress informational output.
    """

    config: Config = field(repr=False)
    config_path: Path | None = None
    config_error: str | None = None
    quiet: bool = False

    @property
    def registry_path(self) -> Path:
        return self.config.registry.path

    def console(self) -> Console:
        """Return a stdout console that honours --quiet."""
        return Console(quiet=self.quiet)


def current_context() -> CLIContext:
    """Return the active context, or one built from default settings."""
    ctx = _active.get()
    return ctx if ctx is not None else CLIContext(config=Config())


@contextmanager
def activate(ctx: CLIContext) -> Iterator[CLIContext]:
    """Make `ctx` the active context inside the block."""
    token = _active.set(ctx)
    try:
        yield ctx
    finally:
        _active.reset(token)

"""The command-line interface for proxyfleet."""
# ruff: noqa: TC003  # Path needed at runtime for cyclopts parameter parsing

from pathlib import Path
from typing import Annotated

from cyclopts import App, Parameter
from rich.console import Console
from rich.markup import escape

from proxyfleet import __version__
from proxyfleet.config import safe_load_config
from proxyfleet.exceptions import ConfigLoadError

from ._commands import ExitCode, fail, register_commands
from ._context import CLIContext, activate


def create_app(
    console: Console | None = None,
    error_console: Console | None = None,
    *,
    exit_on_error: bool = True,
) -> App:
    """Build the CLI application.

    Args:
        console: Console for regular output.
        error_console: Console for parse errors and warnings. Defaults to stderr.
        exit_on_error: Whether parse errors exit the process.
    """
    stderr = error_console or Console(stderr=True)
    app = App(
        name="proxyfleet",
        help="Supervise proxy instances and stream their events.",
        version=__version__,
        help_on_error=True,
        console=console or Console(),
        error_console=stderr,
        exit_on_error=exit_on_error,
    )

    @app.meta.default
    def _dispatch(  # pyright: ignore[reportUnusedFunction]
        *tokens: Annotated[str, Parameter(show=False, allow_leading_hyphen=True)],
        config: Annotated[
            Path | None, Parameter(name="--config", help="Path to config file")
        ] = None,
        quiet: Annotated[bool, Parameter(help="Suppress informational output")] = False,  # noqa: FBT002
    ) -> None:
        """Resolve global options, then run the requested command."""
        try:
            settings, error = safe_load_config(config_path=config)
        except ConfigLoadError as e:
            fail(str(e), ExitCode.LOAD_FAILED, console=stderr)
        if error and not quiet:
            stderr.print(
                f"[yellow]Warning:[/yellow] using default settings: {escape(error)}"
            )

        ctx = CLIContext(
            config=settings, config_path=config, config_error=error, quiet=quiet
        )
        with activate(ctx):
            app(tokens)

    register_commands(app)
    return app


def main() -> None:
    """Entry point of the ``proxyfleet`` script."""
    create_app().meta()


if __name__ == "__main__":
    main()

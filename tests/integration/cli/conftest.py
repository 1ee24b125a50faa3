from collections.abc import Callable
from pathlib import Path

import pytest
from rich.console import Console

from proxyfleet.cli import create_app


@pytest.fixture
def registry_path(tmp_path: Path) -> Path:
    return tmp_path / "state" / "services.json"


@pytest.fixture
def config_file(tmp_path: Path, registry_path: Path) -> Path:
    """Write a config file pointing the registry into tmp_path."""
    path = tmp_path / "proxyfleet.toml"
    _ = path.write_text(f'[registry]\npath = "{registry_path.as_posix()}"\n')
    return path


@pytest.fixture
def run_cli(console: Console) -> Callable[..., int]:
    """Run the CLI with raw arguments and return the exit code."""
    app = create_app(console=console, error_console=console, exit_on_error=True)

    def _run(*args: str) -> int:
        try:
            app.meta(list(args))
        except SystemExit as e:
            return e.code if isinstance(e.code, int) else 1
        else:
            return 0

    return _run


@pytest.fixture
def proxyfleet_cli(run_cli: Callable[..., int], config_file: Path) -> Callable[..., int]:
    """Run the CLI against the test config and return the exit code."""

    def _run(*args: str) -> int:
        return run_cli("--config", str(config_file), *args)

    return _run

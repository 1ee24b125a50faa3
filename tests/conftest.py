"""Shared test fixtures for proxyfleet tests."""

import stat
import sys
import textwrap
from collections.abc import Callable
from pathlib import Path

import pytest
from rich.console import Console

from proxyfleet.config import SupervisorConfig
from proxyfleet.registry import InMemoryInstanceRegistry

MakeBinary = Callable[[str, str], Path]

_TESTS_ROOT = Path(__file__).parent


def pytest_collection_modifyitems(items: list[pytest.Item]) -> None:
    """Mark each test with the name of its top-level suite directory."""
    for item in items:
        path = Path(item.path)
        if not path.is_relative_to(_TESTS_ROOT):
            continue
        suite = path.relative_to(_TESTS_ROOT).parts[0]
        if suite in {"unit", "integration"}:
            item.add_marker(getattr(pytest.mark, suite))


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def make_binary(tmp_path: Path) -> MakeBinary:
    """Return a function that writes an executable Python script.

    The script runs under the test interpreter, so it behaves like an opaque
    proxy binary from the supervisor's point of view.
    """

    def _make(name: str, body: str) -> Path:
        path = tmp_path / "bin" / name
        path.parent.mkdir(exist_ok=True)
        _ = path.write_text(f"#!{sys.executable}\n{textwrap.dedent(body)}")
        path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return path

    return _make


@pytest.fixture
def registry() -> InMemoryInstanceRegistry:
    return InMemoryInstanceRegistry()


@pytest.fixture
def fast_settings() -> SupervisorConfig:
    """Supervisor limits shrunk so lifecycle tests finish quickly."""
    return SupervisorConfig(
        backoff_step=0.01,
        stop_poll_interval=0.01,
        stop_timeout=1.0,
        kill_grace=0.5,
        shutdown_timeout=1.0,
    )


@pytest.fixture
def console() -> Console:
    return Console(
        width=100,
        force_terminal=True,
        highlight=False,
        color_system=None,
        legacy_windows=False,
    )

"""Exit codes and error reporting for CLI commands."""

from collections.abc import Iterator
from contextlib import contextmanager
from enum import IntEnum
from typing import Never

from rich.console import Console
from rich.markup import escape

from proxyfleet.exceptions import (
    DuplicateInstanceError,
    InstanceNotFoundError,
    RegistryError,
)

__all__ = ["ExitCode", "fail", "registry_errors"]


class ExitCode(IntEnum):
    """Process exit status of proxyfleet commands."""

    SUCCESS = 0
    LOAD_FAILED = 1
    INVALID_INPUT = 2
    NOT_FOUND = 3
    REGISTRY_WRITE_FAILED = 4
    INTERNAL_ERROR = 5


def fail(message: str, code: ExitCode, *, console: Console | None = None) -> Never:
    """Report `message` on stderr and exit with `code`.

    Raises:
        SystemExit: Always.
    """
    (console or Console(stderr=True)).print(f"[red]Error:[/red] {escape(message)}")
    raise SystemExit(code)


@contextmanager
def registry_errors() -> Iterator[None]:
    """Turn registry exceptions raised inside the block into CLI exits.

    An unknown id exits with NOT_FOUND, a duplicate id with INVALID_INPUT
    and any other registry failure with REGISTRY_WRITE_FAILED.
    """
    try:
        yield
    except InstanceNotFoundError as e:
        fail(str(e), ExitCode.NOT_FOUND)
    except DuplicateInstanceError as e:
        fail(str(e), ExitCode.INVALID_INPUT)
    except RegistryError as e:
        fail(str(e), ExitCode.REGISTRY_WRITE_FAILED)

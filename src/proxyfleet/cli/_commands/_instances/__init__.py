# pyright: reportUnusedCallResult=false, reportUnusedFunction=false
# ruff: noqa: FBT002, TC003  # Path needed at runtime for cyclopts parameter parsing
"""Offline instance registry commands.

These commands edit the registry file directly. A running server only
reads the file on startup, so stop it before editing.
"""

import uuid
from pathlib import Path
from typing import Annotated, Literal

import orjson
from cyclopts import App, Parameter
from rich.table import Table

from proxyfleet.cli._context import current_context
from proxyfleet.exceptions import RegistryError
from proxyfleet.registry import Instance, JsonInstanceRegistry

from .._shared import ExitCode, fail, registry_errors

app = App(name="instances", help="Manage registered instances", help_on_error=True)

__all__ = ["app"]

OutputFormat = Literal["table", "json"]


def _open_registry() -> JsonInstanceRegistry:
    """Load the registry file named by the active configuration.

    Raises:
        SystemExit: If the file exists but cannot be parsed.
    """
    registry = JsonInstanceRegistry(current_context().registry_path)
    try:
        registry.load()
    except RegistryError as e:
        fail(str(e), ExitCode.LOAD_FAILED)
    return registry


@app.command(name="list")
def _list(
    output_format: Annotated[
        OutputFormat,
        Parameter(name=["--format", "-f"], help="Output format"),
    ] = "table",
) -> None:
    """List registered instances."""
    ctx = current_context()
    instances = _open_registry().get_all()

    if output_format == "json":
        # Machine output ignores --quiet
        data = [instance.to_json_dict() for instance in instances]
        print(orjson.dumps(data, option=orjson.OPT_INDENT_2).decode())  # noqa: T201
        return

    console = ctx.console()
    if not instances:
        console.print("[dim]No instances registered[/dim]")
        return

    table = Table(title="Instances")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Name")
    table.add_column("Version", no_wrap=True)
    table.add_column("PID", justify="right", no_wrap=True)
    table.add_column("Auto-restart", justify="center", no_wrap=True)
    table.add_column("Binary", style="dim", overflow="fold")

    for instance in instances:
        table.add_row(
            instance.id,
            instance.name,
            instance.version or "-",
            str(instance.pid) if instance.pid is not None else "-",
            "[green]yes[/green]" if instance.auto_restart else "[dim]no[/dim]",
            instance.binary_path,
        )

    console.print(table)


@app.command(name="add")
def _add(
    *,
    name: Annotated[str, Parameter(help="Human-readable instance name")],
    binary: Annotated[Path, Parameter(help="Proxy executable to run")],
    data_dir: Annotated[Path, Parameter(help="Working directory for the process")],
    config_path: Annotated[
        Path | None,
        Parameter(help="YAML config file. Defaults to DATA_DIR/config.yml."),
    ] = None,
    version: Annotated[str, Parameter(help="Installed release")] = "",
    platform: Annotated[str, Parameter(help="Platform of the binary")] = "linux",
    auto_restart: Annotated[
        bool, Parameter(help="Respawn the instance when it crashes")
    ] = False,
    instance_id: Annotated[
        str | None,
        Parameter(name="--id", help="Instance id. A random UUID if omitted."),
    ] = None,
) -> None:
    """Register a new instance."""
    console = current_context().console()
    registry = _open_registry()

    instance = Instance(
        id=instance_id or str(uuid.uuid4()),
        name=name,
        version=version,
        platform=platform,
        binary_path=str(binary.absolute()),
        data_dir=str(data_dir.absolute()),
        config_path=str((config_path or data_dir / "config.yml").absolute()),
        auto_restart=auto_restart,
    )
    with registry_errors():
        registry.add(instance)

    if not binary.exists():
        console.print(f"[yellow]Warning:[/yellow] binary not found at {binary}")
    console.print(f"[green]Added instance[/green] {instance.name} ({instance.id})")


@app.command(name="remove")
def _remove(
    instance_id: Annotated[str, Parameter(help="Instance id")],
) -> None:
    """Remove an instance from the registry."""
    registry = _open_registry()
    with registry_errors():
        registry.remove(instance_id)

    current_context().console().print(f"[green]Removed instance[/green] {instance_id}")


@app.command(name="set")
def _set(
    instance_id: Annotated[str, Parameter(help="Instance id")],
    *,
    name: Annotated[str | None, Parameter(help="New instance name")] = None,
    auto_restart: Annotated[
        bool | None, Parameter(help="Respawn the instance when it crashes")
    ] = None,
) -> None:
    """Change the name or auto-restart flag of an instance."""
    changes: dict[str, object] = {}
    if name is not None:
        changes["name"] = name.strip()
    if auto_restart is not None:
        changes["auto_restart"] = auto_restart
    if not changes:
        fail("Nothing to change", ExitCode.INVALID_INPUT)

    registry = _open_registry()
    with registry_errors():
        instance = registry.update(instance_id, **changes)

    current_context().console().print(
        f"[green]Updated instance[/green] {instance.name} ({instance.id})"
        f" auto-restart={'on' if instance.auto_restart else 'off'}"
    )

"""Instance config file watcher using watchfiles.

This module watches each running instance's YAML config file and publishes
a ``configChange`` event with the parsed contents whenever it changes.
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Any, final

import anyio
import yaml

from proxyfleet.utils import get_logger

from ._models import Event, EventType

if TYPE_CHECKING:
    import anyio.abc
    from structlog.typing import FilteringBoundLogger
    from watchfiles import Change

    from ._bus import EventBus


def read_instance_config(path: Path) -> dict[str, Any] | None:
    """Parse an instance config file.

    Args:
        path: YAML file to read.

    Returns:
        The parsed mapping, ``{}`` when the file is missing or empty, or None
        when it cannot be parsed.
    """
    try:
        content = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return {}

    try:
        data = yaml.safe_load(content)
    except yaml.YAMLError:
        return None

    if data is None:
        return {}
    if not isinstance(data, dict):
        return None
    return data


@final
class ConfigWatcher:
    """Watches instance config files for changes.

    Each watched file runs in its own task inside the attached task group and
    is cancelled independently by ``unwatch``.
    """

    __slots__ = ("_bus", "_logger", "_scopes", "_task_group")

    def __init__(
        self,
        bus: EventBus,
        *,
        logger: FilteringBoundLogger | None = None,
    ) -> None:
        self._bus = bus
        self._logger: FilteringBoundLogger = logger or get_logger("config_watcher")
        self._scopes: dict[str, tuple[Path, anyio.CancelScope, anyio.Event]] = {}
        self._task_group: anyio.abc.TaskGroup | None = None

    def attach(self, task_group: anyio.abc.TaskGroup) -> None:
        """Set the task group that hosts watch tasks."""
        self._task_group = task_group

    @property
    def watched(self) -> dict[str, Path]:
        """Return the watched config path per instance id."""
        return {instance_id: entry[0] for instance_id, entry in self._scopes.items()}

    def watch(self, instance_id: str, path: str | Path) -> None:
        """Start watching an instance's config file.

        Watching an already watched instance is a no-op, as is an empty path.
        """
        if not str(path):
            return
        if instance_id in self._scopes:
            self._logger.debug("already_watching", instance_id=instance_id)
            return

        task_group = self._task_group
        if task_group is None:
            msg = "ConfigWatcher is not attached to a task group"
            raise RuntimeError(msg)

        config_path = Path(path).absolute()
        scope = anyio.CancelScope()
        stop = anyio.Event()
        self._scopes[instance_id] = (config_path, scope, stop)
        task_group.start_soon(
            self._run, instance_id, config_path, scope, stop, name=f"watch-{instance_id}"
        )
        self._logger.info("watching_config", instance_id=instance_id, path=str(config_path))

    def unwatch(self, instance_id: str) -> None:
        """Stop watching an instance's config file."""
        entry = self._scopes.pop(instance_id, None)
        if entry is None:
            return
        _, scope, stop = entry
        # The watch thread only returns once the stop event is set
        stop.set()
        scope.cancel()
        self._logger.info("unwatched_config", instance_id=instance_id)

    def unwatch_all(self) -> None:
        """Stop every watch."""
        for instance_id in tuple(self._scopes):
            self.unwatch(instance_id)

    async def _run(
        self,
        instance_id: str,
        path: Path,
        scope: anyio.CancelScope,
        stop: anyio.Event,
    ) -> None:
        from watchfiles import awatch  # noqa: PLC0415

        def is_target(_change: Change, changed_path: str) -> bool:
            return Path(changed_path) == path

        with scope:
            try:
                async for _changes in awatch(path.parent, watch_filter=is_target, stop_event=stop):
                    self._on_change(instance_id, path)
            except FileNotFoundError:
                self._logger.warning(
                    "config_dir_missing", instance_id=instance_id, path=str(path)
                )

        entry = self._scopes.get(instance_id)
        if entry is not None and entry[1] is scope:
            del self._scopes[instance_id]

    def _on_change(self, instance_id: str, path: Path) -> None:
        config = read_instance_config(path)
        if config is None:
            self._logger.warning("config_unparsable", instance_id=instance_id, path=str(path))
            return
        self._bus.publish(Event(EventType.CONFIG_CHANGE, instance_id, {"config": config}))

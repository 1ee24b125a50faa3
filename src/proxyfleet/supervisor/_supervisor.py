"""Main supervisor coordinator for managing proxy instances.

This module provides the InstanceSupervisor class that ties the registry,
the process supervisor, the restart policy engine and the config watcher
together using anyio for structured concurrency. It is the object the
control API calls.
"""

from __future__ import annotations

import math
import os
import time
from contextlib import AsyncExitStack, suppress
from pathlib import Path
from typing import TYPE_CHECKING, Any, Self, final

import anyio
import orjson

from proxyfleet.config import SupervisorConfig
from proxyfleet.exceptions import (
    InstanceNotFoundError,
    NotRunningError,
    RegistryError,
    SupervisorError,
)
from proxyfleet.utils import get_logger

from ._backoff import LinearBackoff, RestartPolicy
from ._bus import EventBus
from ._models import Event, EventType, LogChannel
from ._process import ProcessSupervisor
from ._restart import RestartPolicyEngine
from ._watcher import ConfigWatcher, read_instance_config

if TYPE_CHECKING:
    from collections.abc import Callable
    from types import TracebackType

    import anyio.abc
    from structlog.typing import FilteringBoundLogger

    from proxyfleet.registry import Instance, InstanceRegistry

    from ._bus import Subscription
    from ._models import LogEntry

# Written by the proxy into its data dir
PLAYER_IPS_FILENAME = "playerIP.json"


def pid_alive(pid: int) -> bool:
    """Return whether a process with this pid exists."""
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists but owned by another user
        return True
    return True


@final
class InstanceSupervisor:
    """Coordinates supervision of every registered instance.

    Pairs each process operation with its registry, watcher, restart window
    and event side effects. Use as an async context manager: entering clears
    stale pids and auto-starts instances, leaving cancels pending respawns,
    stops watching configs and stops every process.

    Attributes:
        registry: Source of instance metadata.
        bus: Bus carrying every supervisor event.
        processes: Owner of the child processes.
        restarts: Automatic respawn engine.
        watcher: Config file watcher.
        settings: Supervision limits in effect.
    """

    __slots__ = (
        "_exit_stack",
        "_logger",
        "_task_group",
        "bus",
        "processes",
        "registry",
        "restarts",
        "settings",
        "watcher",
    )

    def __init__(
        self,
        registry: InstanceRegistry,
        *,
        config: SupervisorConfig | None = None,
        bus: EventBus | None = None,
        watcher: ConfigWatcher | None = None,
        logger: FilteringBoundLogger | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the coordinator.

        Args:
            registry: Instance registry.
            config: Supervision limits. Uses defaults if None.
            bus: Event bus. Creates one sized from `config` if None.
            watcher: Config watcher. Creates one on `bus` if None.
            logger: Base logger; each component binds its own name.
            clock: Monotonic time source for restart windows.
        """
        settings = config or SupervisorConfig()
        base_logger = logger or get_logger("supervisor")

        self.settings: SupervisorConfig = settings
        self.registry = registry
        self.bus = bus or EventBus(
            settings.subscriber_buffer, logger=base_logger.bind(component="event_bus")
        )
        self.processes = ProcessSupervisor(
            self.bus,
            log_buffer_size=settings.log_buffer_size,
            stop_poll_interval=settings.stop_poll_interval,
            stop_timeout=settings.stop_timeout,
            kill_grace=settings.kill_grace,
            shutdown_timeout=settings.shutdown_timeout,
            logger=base_logger.bind(component="process_supervisor"),
        )
        self.restarts = RestartPolicyEngine(
            registry,
            self.bus,
            self._respawn,
            is_running=self.processes.is_running,
            policy=RestartPolicy(
                max_attempts=settings.max_restart_attempts,
                window=settings.restart_window,
                backoff=LinearBackoff(settings.backoff_step),
            ),
            clock=clock,
            logger=base_logger.bind(component="restart_engine"),
        )
        self.watcher = watcher or ConfigWatcher(
            self.bus, logger=base_logger.bind(component="config_watcher")
        )
        self._logger: FilteringBoundLogger = base_logger.bind(component="supervisor")
        self._task_group: anyio.abc.TaskGroup | None = None
        self._exit_stack: AsyncExitStack | None = None

    # -------------------------------------------------------------------------
    # Context management
    # -------------------------------------------------------------------------

    async def __aenter__(self) -> Self:
        async with AsyncExitStack() as stack:
            _ = await stack.enter_async_context(self.processes)
            task_group = await stack.enter_async_context(anyio.create_task_group())

            exits = self.bus.subscribe(math.inf)
            task_group.start_soon(self._consume_exits, exits, name="exit-consumer")
            self.restarts.attach(task_group)
            self.watcher.attach(task_group)
            self._task_group = task_group

            await self._boot()
            self._exit_stack = stack.pop_all()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> bool | None:
        stack = self._exit_stack
        task_group = self._task_group
        self._exit_stack = None
        self._task_group = None
        if stack is None or task_group is None:
            return None

        try:
            with anyio.CancelScope(shield=True):
                self.restarts.cancel_all()
                self.watcher.unwatch_all()
                await self.processes.shutdown()
                self._release_pids()
        finally:
            task_group.cancel_scope.cancel()
        return await stack.__aexit__(exc_type, exc_val, exc_tb)

    async def _boot(self) -> None:
        """Reconcile registry pids with reality and auto-start instances."""
        for instance in self.registry.get_all():
            if instance.pid is None:
                continue
            if pid_alive(instance.pid):
                self._logger.warning(
                    "orphan_process", instance_id=instance.id, pid=instance.pid
                )
                continue
            self._logger.info("clearing_stale_pid", instance_id=instance.id, pid=instance.pid)
            self.registry.set_pid(instance.id, None)

        for instance in self.registry.get_all():
            if not instance.auto_restart or instance.pid is not None:
                continue
            if not Path(instance.binary_path).exists():
                self._logger.warning(
                    "auto_start_skipped",
                    instance_id=instance.id,
                    reason="binary_not_found",
                    binary=instance.binary_path,
                )
                continue
            self._logger.info("auto_starting", instance_id=instance.id, name=instance.name)
            try:
                _ = await self.start_instance(instance.id)
            except (SupervisorError, RegistryError):
                self._logger.exception("auto_start_failed", instance_id=instance.id)

    def _release_pids(self) -> None:
        for instance in self.registry.get_all():
            if instance.pid is not None and not pid_alive(instance.pid):
                try:
                    self.registry.set_pid(instance.id, None)
                except RegistryError:
                    self._logger.exception("pid_release_failed", instance_id=instance.id)

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    def get_instance(self, instance_id: str) -> Instance:
        """Get an instance by id.

        Raises:
            InstanceNotFoundError: If no instance exists with that id.
        """
        instance = self.registry.get_by_id(instance_id)
        if instance is None:
            msg = f"Instance {instance_id} not found"
            raise InstanceNotFoundError(msg, instance_id=instance_id)
        return instance

    async def start_instance(self, instance_id: str) -> int:
        """Start an instance manually.

        Clears the instance's restart window.

        Returns:
            The pid of the new process.

        Raises:
            InstanceNotFoundError: If no instance exists with that id.
            AlreadyRunningError: If the instance is already running.
            SpawnError: If the process cannot be created.
        """
        instance = self.get_instance(instance_id)
        pid = await self._launch(instance)
        self.restarts.reset(instance_id)
        self._publish(Event(EventType.INSTANCE_STARTED, instance_id, {"pid": pid}))
        self.publish_snapshot()
        return pid

    def stop_instance(self, instance_id: str, *, force: bool = False) -> None:
        """Stop an instance.

        Cancels any pending respawn and clears the restart window. Does not
        wait for the process to exit. Nothing changes when the instance has
        no live process.

        Raises:
            InstanceNotFoundError: If no instance exists with that id.
            NotRunningError: If the instance has no live process.
        """
        _ = self.get_instance(instance_id)
        if not self.processes.is_running(instance_id):
            msg = f"Instance {instance_id} is not running"
            raise NotRunningError(msg, instance_id=instance_id)

        self.restarts.reset(instance_id)
        self.processes.stop(instance_id, force=force)
        self._clear_pid(instance_id)
        self.watcher.unwatch(instance_id)
        self._publish(Event(EventType.INSTANCE_STOPPED, instance_id))
        self.publish_snapshot()

    async def restart_instance(self, instance_id: str) -> int:
        """Stop the instance if running, then start it again.

        Returns:
            The pid of the new process.

        Raises:
            InstanceNotFoundError: If no instance exists with that id.
            AlreadyRunningError: If the old process could not be reaped.
            SpawnError: If the new process cannot be created.
        """
        instance = self.get_instance(instance_id)
        self.restarts.reset(instance_id)
        pid = await self.processes.restart(
            instance_id, instance.binary_path, instance.data_dir
        )
        await self._record_launch(instance, pid)
        self._publish(Event(EventType.INSTANCE_RESTARTED, instance_id, {"pid": pid}))
        self.publish_snapshot()
        return pid

    async def remove_instance(self, instance_id: str) -> None:
        """Force stop an instance and delete it from the registry.

        The instance's log buffer is destroyed.

        Raises:
            InstanceNotFoundError: If no instance exists with that id.
        """
        _ = self.get_instance(instance_id)
        self.restarts.reset(instance_id)
        if self.processes.is_running(instance_id):
            with suppress(NotRunningError):
                self.processes.stop(instance_id, force=True)
            _ = await self.processes.wait_stopped(
                instance_id, self.settings.shutdown_timeout
            )
        self.watcher.unwatch(instance_id)
        self.registry.remove(instance_id)
        self.processes.drop_logs(instance_id)
        self._publish(Event(EventType.INSTANCE_REMOVED, instance_id))
        self.publish_snapshot()

    def update_instance(
        self,
        instance_id: str,
        *,
        name: str | None = None,
        auto_restart: bool | None = None,
    ) -> Instance:
        """Update the editable fields of an instance.

        Turning ``auto_restart`` off cancels a pending respawn.

        Raises:
            InstanceNotFoundError: If no instance exists with that id.
            ValueError: If no field was given.
        """
        _ = self.get_instance(instance_id)
        updates: dict[str, Any] = {}
        if name is not None:
            updates["name"] = name.strip()
        if auto_restart is not None:
            updates["auto_restart"] = auto_restart
        if not updates:
            msg = "No valid fields to update"
            raise ValueError(msg)

        instance = self.registry.update(instance_id, **updates)
        if auto_restart is False:
            self.restarts.cancel(instance_id)
        wire: dict[str, object] = {"name": instance.name} if "name" in updates else {}
        if "auto_restart" in updates:
            wire["autoRestart"] = instance.auto_restart
        self._publish(Event(EventType.INSTANCE_UPDATED, instance_id, {"updates": wire}))
        self.publish_snapshot()
        return instance

    def read_config(self, instance_id: str) -> dict[str, Any]:
        """Return the parsed YAML config of an instance.

        Raises:
            InstanceNotFoundError: If no instance exists with that id.
            ValueError: If the config file cannot be parsed.
        """
        instance = self.get_instance(instance_id)
        if not instance.config_path:
            return {}
        config = read_instance_config(Path(instance.config_path))
        if config is None:
            msg = f"Config file for instance {instance_id} is not valid YAML"
            raise ValueError(msg)
        return config

    def read_player_ips(self, instance_id: str) -> Any:
        """Return the player IP records the proxy keeps in its data dir.

        The proxy writes ``playerIP.json`` itself when IP logging is enabled;
        an empty list is returned while the file does not exist.

        Raises:
            InstanceNotFoundError: If no instance exists with that id.
            ValueError: If the file is not valid JSON.
        """
        instance = self.get_instance(instance_id)
        path = Path(instance.data_dir) / PLAYER_IPS_FILENAME
        try:
            content = path.read_bytes()
        except FileNotFoundError:
            return []
        try:
            return orjson.loads(content)
        except orjson.JSONDecodeError as e:
            msg = f"{PLAYER_IPS_FILENAME} for instance {instance_id} is not valid JSON"
            raise ValueError(msg) from e

    def get_logs(self, instance_id: str, limit: int | None = None) -> list[LogEntry]:
        """Return the most recent log entries of an instance."""
        return self.processes.get_logs(instance_id, limit)

    def clear_logs(self, instance_id: str) -> None:
        """Empty an instance's log buffer."""
        self.processes.clear_logs(instance_id)

    def is_running(self, instance_id: str) -> bool:
        """Return whether an instance has a live process."""
        return self.processes.is_running(instance_id)

    def snapshot(self) -> list[dict[str, object]]:
        """Return every instance with its live ``running`` flag."""
        return [
            {**instance.to_json_dict(), "running": self.processes.is_running(instance.id)}
            for instance in self.registry.get_all()
        ]

    def publish_snapshot(self) -> None:
        """Publish the full instance list as an ``instances`` event."""
        self._publish(Event(EventType.INSTANCES, data={"data": self.snapshot()}))

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _publish(self, event: Event) -> None:
        self.bus.publish(event)

    async def _launch(self, instance: Instance) -> int:
        """Spawn an instance's process and record the pid."""
        pid = await self.processes.start(instance.id, instance.binary_path, instance.data_dir)
        await self._record_launch(instance, pid)
        return pid

    async def _record_launch(self, instance: Instance, pid: int) -> None:
        """Store the new pid and watch the config, or undo the spawn.

        A process whose pid cannot be written to the registry is killed and
        reaped before the error propagates.
        """
        try:
            self.registry.set_pid(instance.id, pid)
        except RegistryError:
            self._logger.exception("pid_record_failed", instance_id=instance.id, pid=pid)
            self.watcher.unwatch(instance.id)
            with suppress(NotRunningError):
                self.processes.stop(instance.id, force=True)
            _ = await self.processes.wait_stopped(
                instance.id, self.settings.shutdown_timeout
            )
            raise
        self.watcher.watch(instance.id, instance.config_path)

    def _clear_pid(self, instance_id: str) -> None:
        try:
            self.registry.set_pid(instance_id, None)
        except RegistryError:
            self._logger.exception("pid_clear_failed", instance_id=instance_id)

    async def _respawn(self, instance_id: str) -> int:
        """Start path used by the restart engine."""
        instance = self.get_instance(instance_id)
        pid = await self._launch(instance)
        self.processes.append_log(
            instance_id, LogChannel.SYSTEM, f"Automatically restarted (PID: {pid})"
        )
        self._publish(
            Event(EventType.INSTANCE_STARTED, instance_id, {"pid": pid, "automatic": True})
        )
        self.publish_snapshot()
        return pid

    async def _consume_exits(self, subscription: Subscription) -> None:
        with subscription:
            async for event in subscription:
                if event.type == EventType.PROCESS_EXIT and event.instance_id is not None:
                    self._on_exit(event.instance_id, event)

    def _on_exit(self, instance_id: str, event: Event) -> None:
        instance = self.registry.get_by_id(instance_id)
        if instance is not None and instance.pid == event.data.get("pid"):
            self._clear_pid(instance_id)
        self.publish_snapshot()
        _ = self.restarts.handle_exit(
            instance_id, requested=bool(event.data.get("requested"))
        )

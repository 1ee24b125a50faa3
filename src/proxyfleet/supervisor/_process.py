"""Child process lifecycle management.

This module provides the ProcessSupervisor class that spawns, stops and
monitors one child process per instance id, captures its output into
per-instance ring buffers and publishes lifecycle events on the bus.
"""

from __future__ import annotations

import os
import signal
import subprocess
from contextlib import suppress
from typing import TYPE_CHECKING, Self, final

import anyio
import anyio.abc
from anyio.streams.text import TextReceiveStream

from proxyfleet.exceptions import AlreadyRunningError, NotRunningError, SpawnError
from proxyfleet.utils import get_logger, utc_timestamp

from ._models import Event, EventType, InstanceHandle, LogChannel, LogEntry
from ._ring import DEFAULT_CAPACITY, LogRingBuffer

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence
    from pathlib import Path
    from types import TracebackType

    from anyio.abc import ByteReceiveStream
    from structlog.typing import FilteringBoundLogger

    from ._bus import EventBus

# Longest partial line held before it is flushed as an entry
_MAX_LINE_LENGTH = 64 * 1024

# Seconds readers may keep draining output after the process exits
_DRAIN_TIMEOUT = 0.5


def split_returncode(returncode: int) -> tuple[int | None, str | None]:
    """Split a returncode into an exit code and a signal name.

    On POSIX a negative returncode means the process was killed by a signal.

    Returns:
        Tuple of (code, signal); exactly one of them is None.
    """
    if returncode >= 0:
        return returncode, None
    try:
        return None, signal.Signals(-returncode).name
    except ValueError:
        return None, str(-returncode)


@final
class ProcessSupervisor:
    """Owns the child processes of all instances.

    At most one live process exists per instance id. Use as an async context
    manager: entering opens the task group that hosts output readers, leaving
    stops every child and cancels the readers.
    """

    __slots__ = (
        "_buffers",
        "_bus",
        "_handles",
        "_kill_grace",
        "_log_buffer_size",
        "_logger",
        "_shutdown_timeout",
        "_start_lock",
        "_stop_poll_interval",
        "_stop_timeout",
        "_task_group",
    )

    def __init__(
        self,
        bus: EventBus,
        *,
        log_buffer_size: int = DEFAULT_CAPACITY,
        stop_poll_interval: float = 0.1,
        stop_timeout: float = 10.0,
        kill_grace: float = 1.0,
        shutdown_timeout: float = 5.0,
        logger: FilteringBoundLogger | None = None,
    ) -> None:
        """Initialize the process supervisor.

        Args:
            bus: Bus that receives log and lifecycle events.
            log_buffer_size: Entries retained per instance.
            stop_poll_interval: Seconds between liveness checks in restart.
            stop_timeout: Seconds restart waits for a graceful stop.
            kill_grace: Seconds to wait after escalating to SIGKILL.
            shutdown_timeout: Seconds shutdown waits before killing children.
            logger: Logger for supervisor activity.
        """
        self._bus = bus
        self._log_buffer_size = log_buffer_size
        self._stop_poll_interval = stop_poll_interval
        self._stop_timeout = stop_timeout
        self._kill_grace = kill_grace
        self._shutdown_timeout = shutdown_timeout
        self._logger: FilteringBoundLogger = logger or get_logger("process_supervisor")
        self._handles: dict[str, InstanceHandle] = {}
        self._buffers: dict[str, LogRingBuffer] = {}
        self._start_lock = anyio.Lock()
        self._task_group: anyio.abc.TaskGroup | None = None

    async def __aenter__(self) -> Self:
        task_group = anyio.create_task_group()
        _ = await task_group.__aenter__()
        self._task_group = task_group
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> bool | None:
        task_group = self._task_group
        if task_group is None:
            return None
        try:
            with anyio.CancelScope(shield=True):
                await self.shutdown()
        finally:
            self._task_group = None
            task_group.cancel_scope.cancel()
        return await task_group.__aexit__(exc_type, exc_val, exc_tb)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def start(
        self,
        instance_id: str,
        binary_path: str | Path,
        working_directory: str | Path,
        *,
        env: Mapping[str, str] | None = None,
        args: Sequence[str] = (),
    ) -> int:
        """Spawn the process for an instance.

        Args:
            instance_id: Instance to start.
            binary_path: Executable to run.
            working_directory: Directory the child runs in.
            env: Variables overlaid on the parent environment.
            args: Extra command line arguments.

        Returns:
            The pid of the new process.

        Raises:
            AlreadyRunningError: If the instance already has a live process.
            SpawnError: If the OS refuses to create the process.
            RuntimeError: If the supervisor context has not been entered.
        """
        async with self._start_lock:
            if instance_id in self._handles:
                msg = f"Instance {instance_id} is already running"
                raise AlreadyRunningError(msg, instance_id=instance_id)

            task_group = self._task_group
            if task_group is None:
                msg = "ProcessSupervisor must be used as an async context manager"
                raise RuntimeError(msg)

            command = [str(binary_path), *args]
            full_env = {**os.environ, **env} if env else None

            try:
                process = await anyio.open_process(
                    command,
                    cwd=working_directory,
                    env=full_env,
                    stdin=subprocess.DEVNULL,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.PIPE,
                )
            except OSError as e:
                self.append_log(instance_id, LogChannel.SYSTEM, f"Process error: {e}")
                self._bus.publish(
                    Event(EventType.PROCESS_ERROR, instance_id, {"error": str(e)})
                )
                self._logger.exception(
                    "spawn_failed", instance_id=instance_id, binary=str(binary_path)
                )
                msg = f"Failed to start instance {instance_id}: {e}"
                raise SpawnError(msg, instance_id=instance_id, cause=e) from e

            pid = process.pid
            if not pid:
                with anyio.CancelScope(shield=True):
                    await process.aclose()
                msg = f"Failed to start instance {instance_id}: no pid obtained"
                raise SpawnError(msg, instance_id=instance_id)

            handle = InstanceHandle(
                instance_id=instance_id,
                process=process,
                pid=pid,
                started_at=utc_timestamp(),
            )
            self._handles[instance_id] = handle
            self.append_log(instance_id, LogChannel.SYSTEM, f"Process started (PID: {pid})")
            self._logger.info("process_started", instance_id=instance_id, pid=pid)
            task_group.start_soon(self._supervise, handle, name=f"supervise-{instance_id}")

        return pid

    def stop(self, instance_id: str, *, force: bool = False) -> None:
        """Request termination of an instance's process.

        Sends SIGTERM, or SIGKILL when `force` is set, and returns without
        waiting for the exit.

        Raises:
            NotRunningError: If the instance has no live process.
        """
        handle = self._handles.get(instance_id)
        if handle is None:
            msg = f"Instance {instance_id} is not running"
            raise NotRunningError(msg, instance_id=instance_id)

        self.append_log(
            instance_id, LogChannel.SYSTEM, f"Stopping process (force: {str(force).lower()})"
        )
        handle.stop_requested = True
        self._logger.info(
            "process_stopping", instance_id=instance_id, pid=handle.pid, force=force
        )
        try:
            if force:
                handle.process.kill()
            else:
                handle.process.terminate()
        except ProcessLookupError:
            # Already exited; the reader task will observe the exit
            self._logger.debug("process_already_exited", instance_id=instance_id)

    async def restart(
        self,
        instance_id: str,
        binary_path: str | Path,
        working_directory: str | Path,
        *,
        env: Mapping[str, str] | None = None,
        args: Sequence[str] = (),
    ) -> int:
        """Stop the instance if running, wait for it to exit, then start it.

        A process still alive after the stop timeout is killed. If even that
        fails to clear it within the kill grace period, start raises
        AlreadyRunningError.

        Returns:
            The pid of the new process.

        Raises:
            AlreadyRunningError: If the old process could not be reaped.
            SpawnError: If the OS refuses to create the new process.
        """
        if self.is_running(instance_id):
            self.stop(instance_id)
            if not await self.wait_stopped(instance_id, self._stop_timeout):
                self._logger.warning(
                    "stop_timeout", instance_id=instance_id, timeout=self._stop_timeout
                )
                handle = self._handles.get(instance_id)
                if handle is not None:
                    self.append_log(
                        instance_id,
                        LogChannel.SYSTEM,
                        "Process did not stop in time, killing",
                    )
                    with suppress(ProcessLookupError):
                        handle.process.kill()
                    _ = await self.wait_stopped(instance_id, self._kill_grace)

        return await self.start(
            instance_id, binary_path, working_directory, env=env, args=args
        )

    async def wait_stopped(self, instance_id: str, timeout: float) -> bool:
        """Poll until the instance has no live process or `timeout` elapses.

        Returns:
            True if the instance is no longer running.
        """
        with anyio.move_on_after(timeout):
            while instance_id in self._handles:
                await anyio.sleep(self._stop_poll_interval)
        return instance_id not in self._handles

    def stop_all(self) -> None:
        """Request termination of every live process.

        Failures are logged and never propagated.
        """
        for instance_id in tuple(self._handles):
            try:
                self.stop(instance_id)
            except (NotRunningError, OSError):
                self._logger.exception("stop_failed", instance_id=instance_id)

    async def shutdown(self) -> None:
        """Stop every child, killing those that outlive the shutdown timeout."""
        if not self._handles:
            return

        self._logger.info("shutting_down", running=len(self._handles))
        self.stop_all()

        with anyio.move_on_after(self._shutdown_timeout):
            while self._handles:
                await anyio.sleep(self._stop_poll_interval)

        for handle in tuple(self._handles.values()):
            self._logger.warning(
                "killing_process", instance_id=handle.instance_id, pid=handle.pid
            )
            with suppress(ProcessLookupError):
                handle.process.kill()

        with anyio.move_on_after(self._kill_grace):
            while self._handles:
                await anyio.sleep(self._stop_poll_interval)

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def is_running(self, instance_id: str) -> bool:
        """Return whether the instance has a live process."""
        return instance_id in self._handles

    def get_pid(self, instance_id: str) -> int | None:
        """Return the pid of the instance's live process, if any."""
        handle = self._handles.get(instance_id)
        return handle.pid if handle is not None else None

    def running_ids(self) -> list[str]:
        """Return the ids of all instances with a live process."""
        return list(self._handles)

    def get_logs(self, instance_id: str, limit: int | None = None) -> list[LogEntry]:
        """Return the most recent `limit` log entries (all when None)."""
        buffer = self._buffers.get(instance_id)
        if buffer is None:
            return []
        return buffer.get(limit)

    def clear_logs(self, instance_id: str) -> None:
        """Empty the instance's log buffer."""
        buffer = self._buffers.get(instance_id)
        if buffer is not None:
            buffer.clear()

    def drop_logs(self, instance_id: str) -> None:
        """Destroy the instance's log buffer."""
        _ = self._buffers.pop(instance_id, None)

    def append_log(self, instance_id: str, channel: LogChannel, message: str) -> None:
        """Record a log entry and publish it as a ``log`` event."""
        entry = LogEntry(timestamp=utc_timestamp(), channel=channel, message=message)
        buffer = self._buffers.get(instance_id)
        if buffer is None:
            buffer = self._buffers[instance_id] = LogRingBuffer(self._log_buffer_size)
        buffer.append(entry)
        self._bus.publish(
            Event(
                EventType.LOG,
                instance_id,
                {"logType": channel.value, "message": message},
                timestamp=entry.timestamp,
            )
        )

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    async def _supervise(self, handle: InstanceHandle) -> None:
        """Pump output until the process exits, then publish the exit."""
        process = handle.process
        try:
            async with anyio.create_task_group() as tg:
                if process.stdout is not None:
                    tg.start_soon(self._pump, handle, process.stdout, LogChannel.STDOUT)
                if process.stderr is not None:
                    tg.start_soon(self._pump, handle, process.stderr, LogChannel.STDERR)

                returncode = await process.wait()

                # A grandchild holding the pipes open must not delay the exit
                tg.cancel_scope.deadline = anyio.current_time() + _DRAIN_TIMEOUT
        finally:
            with anyio.CancelScope(shield=True):
                if process.returncode is None:
                    with suppress(ProcessLookupError):
                        process.kill()
                await process.aclose()

        self._on_exit(handle, returncode)

    def _on_exit(self, handle: InstanceHandle, returncode: int) -> None:
        instance_id = handle.instance_id
        if self._handles.get(instance_id) is handle:
            del self._handles[instance_id]

        code, sig = split_returncode(returncode)
        self.append_log(
            instance_id,
            LogChannel.SYSTEM,
            f"Process exited with code {code}, signal {sig}",
        )
        self._logger.info(
            "process_exited",
            instance_id=instance_id,
            pid=handle.pid,
            code=code,
            signal=sig,
            requested=handle.stop_requested,
        )
        self._bus.publish(
            Event(
                EventType.PROCESS_EXIT,
                instance_id,
                {
                    "code": code,
                    "signal": sig,
                    "pid": handle.pid,
                    "requested": handle.stop_requested,
                },
            )
        )

    async def _pump(
        self,
        handle: InstanceHandle,
        stream: ByteReceiveStream,
        channel: LogChannel,
    ) -> None:
        """Split a byte stream into lines and record each one."""
        pending = ""
        try:
            async for chunk in TextReceiveStream(stream, errors="replace"):
                pending += chunk
                *lines, pending = pending.split("\n")
                if len(pending) > _MAX_LINE_LENGTH:
                    lines.append(pending)
                    pending = ""
                for line in lines:
                    self._capture(handle, channel, line)
        except (anyio.ClosedResourceError, anyio.BrokenResourceError):
            # Pipe closed under the reader on exit
            pass
        finally:
            if pending:
                self._capture(handle, channel, pending)

    def _capture(self, handle: InstanceHandle, channel: LogChannel, line: str) -> None:
        message = line.strip()
        if message:
            self.append_log(handle.instance_id, channel, message)

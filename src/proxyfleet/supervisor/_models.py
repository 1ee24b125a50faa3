"""Data models for the supervisor system.

This module defines the core data types for instance supervision:
- LogChannel: Where a captured log line came from
- LogEntry: Immutable captured output or system notice
- EventType: Discriminators of the broadcast event stream
- Event: Immutable event record published on the bus
- InstanceHandle: Live-process record for one instance
- RestartWindow: Per-instance automatic respawn counters
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING

from proxyfleet.utils import utc_timestamp

if TYPE_CHECKING:
    import anyio.abc


class LogChannel(StrEnum):
    """Origin of a log entry.

    - STDOUT: Captured from the child's standard output
    - STDERR: Captured from the child's standard error
    - SYSTEM: Notice written by the supervisor itself
    """

    STDOUT = "stdout"
    STDERR = "stderr"
    SYSTEM = "system"


@dataclass(frozen=True, slots=True)
class LogEntry:
    """One retained line of instance output.

    Attributes:
        timestamp: ISO 8601 formatted capture time.
        channel: Stream the line came from.
        message: Line text with trailing whitespace removed.
    """

    timestamp: str
    channel: LogChannel
    message: str

    def to_dict(self) -> dict[str, str]:
        """Return the wire representation of this entry."""
        return {
            "timestamp": self.timestamp,
            "channel": self.channel.value,
            "message": self.message,
        }


class EventType(StrEnum):
    """Types of events published on the bus.

    Values double as the ``type`` discriminator sent to observers.
    """

    LOG = "log"
    PROCESS_EXIT = "processExit"
    PROCESS_ERROR = "processError"
    INSTANCE_STARTED = "instanceStarted"
    INSTANCE_STOPPED = "instanceStopped"
    INSTANCE_RESTARTED = "instanceRestarted"
    INSTANCE_REMOVED = "instanceRemoved"
    INSTANCE_UPDATED = "instanceUpdated"
    INSTANCES = "instances"
    AUTO_RESTART_SCHEDULED = "autoRestartScheduled"
    AUTO_RESTART_FAILED = "autoRestartFailed"
    AUTO_RESTART_ERROR = "autoRestartError"
    CONFIG_CHANGE = "configChange"


@dataclass(frozen=True, slots=True)
class Event:
    """Immutable bus event.

    The ``type`` is a plain string so collaborators can relay event kinds
    the core does not know about (download progress, rate-limit notices).

    Attributes:
        type: Event discriminator.
        instance_id: Instance the event concerns, if any.
        data: Event payload, flattened into the wire message.
        timestamp: ISO 8601 formatted emission time.
    """

    type: str
    instance_id: str | None = None
    data: Mapping[str, object] = field(default_factory=dict)
    timestamp: str = field(default_factory=utc_timestamp)

    def to_message(self) -> dict[str, object]:
        """Return the flat wire message for this event."""
        message: dict[str, object] = {"type": str(self.type)}
        if self.instance_id is not None:
            message["instanceId"] = self.instance_id
        message.update(self.data)
        _ = message.setdefault("timestamp", self.timestamp)
        return message


@dataclass(slots=True, eq=False)
class InstanceHandle:
    """Live-process record binding an instance id to its OS process.

    Attributes:
        instance_id: Instance the process belongs to.
        process: The child process; owned exclusively by the supervisor.
        pid: Process id at spawn time.
        started_at: ISO 8601 timestamp of the successful spawn.
        stop_requested: Set once a stop was requested for this process.
    """

    instance_id: str
    process: anyio.abc.Process
    pid: int
    started_at: str
    stop_requested: bool = False


@dataclass(slots=True)
class RestartWindow:
    """Automatic respawn counters for one instance.

    Attributes:
        attempt_count: Respawns attempted inside the current window.
        window_started_at: Monotonic time the current window opened.
        gave_up: Whether the give-up notice was sent for this window.
    """

    attempt_count: int = 0
    window_started_at: float = 0.0
    gave_up: bool = False

    def reset(self, now: float) -> None:
        """Open a fresh window at `now`."""
        self.attempt_count = 0
        self.window_started_at = now
        self.gave_up = False

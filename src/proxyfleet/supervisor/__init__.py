"""Process supervision for proxy instances.

This module provides the supervision core: per-instance child processes
with captured output, automatic respawn with linear backoff, and an event
bus relayed to connected observers.

Example:
    >>> from pathlib import Path
    >>> from proxyfleet.registry import JsonInstanceRegistry
    >>> from proxyfleet.supervisor import InstanceSupervisor
    >>> async def main():
    ...     registry = JsonInstanceRegistry(Path("services.json"))
    ...     registry.load()
    ...     async with InstanceSupervisor(registry) as supervisor:
    ...         pid = await supervisor.start_instance("proxy-1")
"""

from ._backoff import LinearBackoff, RestartDecision, RestartPolicy
from ._broadcaster import EventBroadcaster, encode_event
from ._bus import EventBus, Subscription
from ._models import (
    Event,
    EventType,
    InstanceHandle,
    LogChannel,
    LogEntry,
    RestartWindow,
)
from ._output import ConsoleEventSink
from ._process import ProcessSupervisor, split_returncode
from ._protocol import Observer
from ._restart import RestartPolicyEngine
from ._ring import LogRingBuffer
from ._supervisor import InstanceSupervisor, pid_alive
from ._watcher import ConfigWatcher, read_instance_config

__all__ = [
    "ConfigWatcher",
    "ConsoleEventSink",
    "Event",
    "EventBroadcaster",
    "EventBus",
    "EventType",
    "InstanceHandle",
    "InstanceSupervisor",
    "LinearBackoff",
    "LogChannel",
    "LogEntry",
    "LogRingBuffer",
    "Observer",
    "ProcessSupervisor",
    "RestartDecision",
    "RestartPolicy",
    "RestartPolicyEngine",
    "RestartWindow",
    "Subscription",
    "encode_event",
    "pid_alive",
    "read_instance_config",
    "split_returncode",
]

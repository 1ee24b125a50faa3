"""Automatic respawn of crashed instances.

This module provides the RestartPolicyEngine, which consumes unsolicited
process exits, consults the RestartPolicy for each instance's attempt
window and schedules cancellable respawns with linear backoff.
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING, final

import anyio

from proxyfleet.exceptions import ProxyFleetError
from proxyfleet.utils import get_logger

from ._backoff import RestartDecision, RestartPolicy
from ._models import Event, EventType, RestartWindow

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    import anyio.abc
    from structlog.typing import FilteringBoundLogger

    from proxyfleet.registry import InstanceRegistry

    from ._bus import EventBus


@final
class RestartPolicyEngine:
    """Decides whether and when crashed instances are respawned.

    Per instance the engine moves through idle, scheduled (waiting out the
    backoff) and respawning. Once the attempt cap is reached inside a window
    it stays given up until the window goes stale or is reset by a manual
    start or stop.

    The engine never spawns processes itself: ``respawn`` is called with the
    instance id and must start it through the normal start path.
    """

    __slots__ = (
        "_bus",
        "_clock",
        "_is_running",
        "_logger",
        "_policy",
        "_registry",
        "_respawn",
        "_scheduled",
        "_stability",
        "_task_group",
        "_windows",
    )

    def __init__(
        self,
        registry: InstanceRegistry,
        bus: EventBus,
        respawn: Callable[[str], Awaitable[int]],
        *,
        is_running: Callable[[str], bool],
        policy: RestartPolicy | None = None,
        clock: Callable[[], float] = time.monotonic,
        logger: FilteringBoundLogger | None = None,
    ) -> None:
        """Initialize the engine.

        Args:
            registry: Source of the ``auto_restart`` flag.
            bus: Bus that receives scheduling and give-up events.
            respawn: Coroutine function starting an instance, returning its pid.
            is_running: Liveness check for an instance id.
            policy: Attempt cap, window and backoff. Defaults to 5 per 60s
                with a 1s step.
            clock: Monotonic time source in seconds.
            logger: Logger for restart activity.
        """
        self._registry = registry
        self._bus = bus
        self._respawn = respawn
        self._is_running = is_running
        self._policy: RestartPolicy = policy or RestartPolicy()
        self._clock = clock
        self._logger: FilteringBoundLogger = logger or get_logger("restart_engine")
        self._windows: dict[str, RestartWindow] = {}
        self._scheduled: dict[str, anyio.CancelScope] = {}
        self._stability: dict[str, anyio.CancelScope] = {}
        self._task_group: anyio.abc.TaskGroup | None = None

    @property
    def policy(self) -> RestartPolicy:
        """Return the active restart policy."""
        return self._policy

    def attach(self, task_group: anyio.abc.TaskGroup) -> None:
        """Set the task group that hosts scheduled respawns."""
        self._task_group = task_group

    def attempts(self, instance_id: str) -> int:
        """Return the attempt count of the instance's current window."""
        window = self._windows.get(instance_id)
        return window.attempt_count if window is not None else 0

    def is_scheduled(self, instance_id: str) -> bool:
        """Return whether a respawn is waiting out its backoff."""
        return instance_id in self._scheduled

    def handle_exit(
        self, instance_id: str, *, requested: bool = False
    ) -> RestartDecision | None:
        """Evaluate a process exit.

        Args:
            instance_id: Instance whose process exited.
            requested: Whether the exit followed a stop request.

        Returns:
            The policy decision, or None when the exit is not eligible for
            automatic restart.
        """
        self._cancel_scope(self._stability, instance_id)
        if requested:
            return None

        instance = self._registry.get_by_id(instance_id)
        if instance is None or not instance.auto_restart:
            return None

        window = self._windows.setdefault(instance_id, RestartWindow())
        decision = self._policy.register_exit(window, self._clock())

        if decision.delay is None:
            if decision.notify:
                self._logger.warning(
                    "auto_restart_given_up",
                    instance_id=instance_id,
                    attempts=decision.attempt,
                )
                self._bus.publish(
                    Event(
                        EventType.AUTO_RESTART_FAILED,
                        instance_id,
                        {"attempts": decision.attempt},
                    )
                )
            return decision

        self._logger.info(
            "auto_restart_scheduled",
            instance_id=instance_id,
            attempt=decision.attempt,
            delay=decision.delay,
        )
        self._bus.publish(
            Event(
                EventType.AUTO_RESTART_SCHEDULED,
                instance_id,
                {"attempt": decision.attempt, "delayMs": round(decision.delay * 1000)},
            )
        )
        self._schedule(instance_id, decision.delay)
        return decision

    def cancel(self, instance_id: str) -> None:
        """Cancel a pending respawn, keeping the attempt window."""
        self._cancel_scope(self._scheduled, instance_id)

    def reset(self, instance_id: str) -> None:
        """Cancel pending work and discard the instance's attempt window."""
        self._cancel_scope(self._scheduled, instance_id)
        self._cancel_scope(self._stability, instance_id)
        _ = self._windows.pop(instance_id, None)

    def cancel_all(self) -> None:
        """Cancel every pending respawn and stability timer."""
        for scopes in (self._scheduled, self._stability):
            for scope in scopes.values():
                scope.cancel()
            scopes.clear()
        self._windows.clear()

    def _schedule(self, instance_id: str, delay: float) -> None:
        task_group = self._task_group
        if task_group is None:
            msg = "RestartPolicyEngine is not attached to a task group"
            raise RuntimeError(msg)

        self._cancel_scope(self._scheduled, instance_id)
        scope = anyio.CancelScope()
        self._scheduled[instance_id] = scope
        task_group.start_soon(
            self._fire, instance_id, delay, scope, name=f"respawn-{instance_id}"
        )

    async def _fire(self, instance_id: str, delay: float, scope: anyio.CancelScope) -> None:
        with scope:
            await anyio.sleep(delay)
        if self._scheduled.get(instance_id) is scope:
            del self._scheduled[instance_id]
        if scope.cancel_called:
            return

        if self._registry.get_by_id(instance_id) is None or self._is_running(instance_id):
            _ = self._windows.pop(instance_id, None)
            return

        try:
            pid = await self._respawn(instance_id)
        except (ProxyFleetError, OSError) as e:
            self._logger.exception("auto_restart_error", instance_id=instance_id)
            self._bus.publish(
                Event(EventType.AUTO_RESTART_ERROR, instance_id, {"message": str(e)})
            )
            return

        self._logger.info("auto_restarted", instance_id=instance_id, pid=pid)
        self._arm_stability(instance_id)

    def _arm_stability(self, instance_id: str) -> None:
        task_group = self._task_group
        if task_group is None:
            return
        self._cancel_scope(self._stability, instance_id)
        scope = anyio.CancelScope()
        self._stability[instance_id] = scope
        task_group.start_soon(self._stabilise, instance_id, scope)

    async def _stabilise(self, instance_id: str, scope: anyio.CancelScope) -> None:
        """Clear the window once a respawned process has stayed up."""
        with scope:
            await anyio.sleep(self._policy.window)
            if self._is_running(instance_id):
                self._logger.debug("auto_restart_stable", instance_id=instance_id)
                _ = self._windows.pop(instance_id, None)
        if self._stability.get(instance_id) is scope:
            del self._stability[instance_id]

    @staticmethod
    def _cancel_scope(scopes: dict[str, anyio.CancelScope], instance_id: str) -> None:
        scope = scopes.pop(instance_id, None)
        if scope is not None:
            scope.cancel()

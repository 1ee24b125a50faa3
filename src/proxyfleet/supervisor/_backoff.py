"""Restart policy arithmetic.

This module provides the pure decision logic behind automatic respawns:
a linear backoff calculator and a windowed attempt policy. It has no I/O
and no clock of its own, so callers pass the current time in.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ._models import RestartWindow


@dataclass(frozen=True, slots=True)
class LinearBackoff:
    """Linear backoff calculator.

    The delay formula is:
        delay = step * attempt

    Attributes:
        step: Seconds added per attempt.
    """

    step: float = 1.0

    def delay(self, attempt: int) -> float:
        """Calculate the delay for a given attempt number.

        Args:
            attempt: The attempt number (1-indexed, where 1 is the first respawn).

        Returns:
            The delay in seconds before the respawn.
        """
        return self.step * max(attempt, 0)


@dataclass(frozen=True, slots=True)
class RestartDecision:
    """Outcome of evaluating one unsolicited exit.

    Attributes:
        attempt: Attempt count inside the current window after evaluation.
        delay: Seconds to wait before respawning, or None to give up.
        notify: Whether the give-up notice should be sent now.
    """

    attempt: int
    delay: float | None
    notify: bool = False

    @property
    def should_respawn(self) -> bool:
        """Return whether a respawn should be scheduled."""
        return self.delay is not None


@dataclass(frozen=True, slots=True)
class RestartPolicy:
    """Windowed restart cap with linear backoff.

    At most ``max_attempts`` respawns are attempted inside a window of
    ``window`` seconds. A window older than that is discarded before the
    next exit is evaluated.

    Attributes:
        max_attempts: Respawns allowed per window.
        window: Window length in seconds.
        backoff: Delay calculator for attempts inside the window.
    """

    max_attempts: int = 5
    window: float = 60.0
    backoff: LinearBackoff = LinearBackoff()

    def is_stale(self, state: RestartWindow, now: float) -> bool:
        """Return whether the window opened more than ``window`` seconds ago."""
        return now - state.window_started_at > self.window

    def register_exit(self, state: RestartWindow, now: float) -> RestartDecision:
        """Evaluate an unsolicited exit and update `state` in place.

        Args:
            state: The instance's window; a fresh window has attempt_count 0.
            now: Current monotonic time in seconds.

        Returns:
            The decision for this exit.
        """
        fresh = state.attempt_count == 0 and not state.gave_up
        if fresh or self.is_stale(state, now):
            state.reset(now)

        if state.attempt_count >= self.max_attempts:
            notify = not state.gave_up
            state.gave_up = True
            return RestartDecision(attempt=state.attempt_count, delay=None, notify=notify)

        state.attempt_count += 1
        return RestartDecision(
            attempt=state.attempt_count,
            delay=self.backoff.delay(state.attempt_count),
        )

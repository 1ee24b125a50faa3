"""Console rendering of supervisor events.

This module provides a rich console sink that echoes bus events to the
terminal for operators running the server in the foreground.
"""

from __future__ import annotations

import math
from typing import TYPE_CHECKING, final

from rich.console import Console
from rich.style import Style
from rich.text import Text

from ._models import Event, EventType, LogChannel

if TYPE_CHECKING:
    from ._bus import EventBus

_PREFIX_STYLE = Style(color="blue", bold=True)
_DETAIL_STYLE = Style(dim=True)


@final
class ConsoleEventSink:
    """Prints bus events with ``[instance:pid]`` style prefixes.

    Lifecycle events are always shown, colour coded by type. Output lines
    (``log`` events) are shown only when ``show_output`` is set, stderr in
    dim red. Snapshot events are never shown.
    """

    __slots__ = ("_console", "_event_styles", "_pids", "_show_output", "_stderr_style")

    def __init__(self, console: Console | None = None, *, show_output: bool = False) -> None:
        """Initialize the console sink.

        Args:
            console: Rich Console instance for output. If None, creates a new one.
            show_output: Whether to echo captured output lines.
        """
        self._console = console or Console()
        self._show_output = show_output
        self._stderr_style = Style(color="red", dim=True)
        self._pids: dict[str, int] = {}
        self._event_styles: dict[str, Style] = {
            EventType.INSTANCE_STARTED: Style(color="green", bold=True),
            EventType.INSTANCE_RESTARTED: Style(color="green"),
            EventType.INSTANCE_STOPPED: Style(color="yellow"),
            EventType.INSTANCE_REMOVED: Style(color="magenta", dim=True),
            EventType.PROCESS_EXIT: Style(color="yellow"),
            EventType.PROCESS_ERROR: Style(color="red", bold=True),
            EventType.AUTO_RESTART_SCHEDULED: Style(color="cyan"),
            EventType.AUTO_RESTART_FAILED: Style(color="red", bold=True),
            EventType.AUTO_RESTART_ERROR: Style(color="red"),
            EventType.CONFIG_CHANGE: Style(color="cyan", dim=True),
        }

    def _prefix(self, instance_id: str | None) -> str:
        if instance_id is None:
            return "[proxyfleet]"
        pid = self._pids.get(instance_id)
        return f"[{instance_id}:{pid}]" if pid is not None else f"[{instance_id}]"

    def render(self, event: Event) -> Text | None:
        """Build the console line for an event.

        Returns:
            The styled line, or None if the event is not echoed.
        """
        if event.type == EventType.INSTANCES:
            return None

        data = event.data
        pid = data.get("pid")
        if event.instance_id is not None and isinstance(pid, int):
            if event.type == EventType.PROCESS_EXIT:
                _ = self._pids.pop(event.instance_id, None)
            else:
                self._pids[event.instance_id] = pid

        text = Text()
        _ = text.append(self._prefix(event.instance_id), style=_PREFIX_STYLE)
        _ = text.append(" ")

        if event.type == EventType.LOG:
            if not self._show_output:
                return None
            channel = data.get("logType")
            if channel == LogChannel.SYSTEM:
                style = _DETAIL_STYLE
            elif channel == LogChannel.STDERR:
                style = self._stderr_style
            else:
                style = Style()
            _ = text.append(str(data.get("message", "")), style=style)
            return text

        style = self._event_styles.get(event.type, Style())
        _ = text.append(str(event.type).upper(), style=style)

        details = " ".join(
            f"{key}={value}"
            for key, value in data.items()
            if key != "config" and value is not None
        )
        if details:
            _ = text.append(f" {details}", style=_DETAIL_STYLE)
        return text

    def write(self, event: Event) -> None:
        """Print an event if it renders to a line."""
        text = self.render(event)
        if text is not None:
            self._console.print(text)

    async def run(self, bus: EventBus) -> None:
        """Echo every bus event until the subscription ends."""
        with bus.subscribe(math.inf) as subscription:
            async for event in subscription:
                self.write(event)

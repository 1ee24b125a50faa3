"""Relay of bus events to connected observers.

Each observer gets its own bus subscription, so a slow or broken observer
only ever loses its own stream. A new observer first receives the snapshot
of all instances, then every event published after it connected.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, final

import anyio
import orjson
from starlette.websockets import WebSocketDisconnect

from proxyfleet.utils import get_logger

from ._models import Event, EventType

if TYPE_CHECKING:
    from collections.abc import Callable

    from structlog.typing import FilteringBoundLogger

    from ._bus import EventBus
    from ._protocol import Observer

# Errors meaning the observer can no longer be written to
_SEND_ERRORS = (
    WebSocketDisconnect,
    RuntimeError,
    OSError,
    anyio.BrokenResourceError,
    anyio.ClosedResourceError,
)


def encode_event(event: Event) -> str:
    """Serialise an event to its JSON wire form."""
    return orjson.dumps(event.to_message()).decode()


@final
class EventBroadcaster:
    """Fans bus events out to observers."""

    __slots__ = ("_bus", "_logger", "_observers", "_snapshot")

    def __init__(
        self,
        bus: EventBus,
        snapshot: Callable[[], list[dict[str, object]]],
        *,
        logger: FilteringBoundLogger | None = None,
    ) -> None:
        """Initialize the broadcaster.

        Args:
            bus: Bus whose events are relayed.
            snapshot: Returns the current instance list for new observers.
            logger: Logger for connect and prune notices.
        """
        self._bus = bus
        self._snapshot = snapshot
        self._logger: FilteringBoundLogger = logger or get_logger("broadcaster")
        self._observers: set[int] = set()

    @property
    def observer_count(self) -> int:
        """Return the number of observers currently being served."""
        return len(self._observers)

    async def serve(self, observer: Observer) -> None:
        """Relay events to `observer` until it fails or the bus closes.

        Subscribes before taking the snapshot so no event emitted between
        the two is lost.
        """
        key = id(observer)
        self._observers.add(key)
        self._logger.info("observer_connected", observers=len(self._observers))
        try:
            with self._bus.subscribe() as subscription:
                snapshot = Event(EventType.INSTANCES, data={"data": self._snapshot()})
                await observer.send_text(encode_event(snapshot))
                async for event in subscription:
                    await observer.send_text(encode_event(event))
        except _SEND_ERRORS as e:
            self._logger.info("observer_pruned", reason=type(e).__name__)
        finally:
            self._observers.discard(key)
            self._logger.info("observer_disconnected", observers=len(self._observers))

"""In-process publish/subscribe event bus.

The bus is the single sequencing point for supervisor events: ``publish`` is
synchronous, so every subscriber sees events in emission order. Each
subscriber owns a bounded memory object stream; a subscriber whose buffer
overflows or whose receiving end has gone away is pruned on the next publish
without affecting the others.
"""

from __future__ import annotations

import math
from typing import TYPE_CHECKING, Self, final

import anyio

from proxyfleet.utils import get_logger

from ._models import Event

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from types import TracebackType

    from anyio.streams.memory import (
        MemoryObjectReceiveStream,
        MemoryObjectSendStream,
    )
    from structlog.typing import FilteringBoundLogger

DEFAULT_SUBSCRIBER_BUFFER = 1024


@final
class Subscription:
    """Receiving end of one bus subscription.

    Iterate asynchronously to receive events. Iteration ends once the bus
    prunes the subscription or is closed. Use as a context manager (or call
    ``close``) to unsubscribe.
    """

    __slots__ = ("_receive",)

    def __init__(self, receive: MemoryObjectReceiveStream[Event]) -> None:
        self._receive = receive

    async def receive(self) -> Event:
        """Wait for the next event.

        Raises:
            anyio.EndOfStream: If the subscription was pruned or the bus closed.
        """
        return await self._receive.receive()

    def receive_nowait(self) -> Event:
        """Return a buffered event without waiting.

        Raises:
            anyio.WouldBlock: If no event is buffered.
            anyio.EndOfStream: If the subscription was pruned or the bus closed.
        """
        return self._receive.receive_nowait()

    def close(self) -> None:
        """Unsubscribe; the bus prunes this subscription on its next publish."""
        self._receive.close()

    def __aiter__(self) -> AsyncIterator[Event]:
        return self._receive.__aiter__()

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close()


@final
class EventBus:
    """Fan-out event bus built on anyio memory object streams.

    Attributes:
        buffer_size: Default number of undelivered events a subscriber may
            accumulate before it is pruned.
    """

    __slots__ = ("_closed", "_logger", "_subscribers", "buffer_size")

    def __init__(
        self,
        buffer_size: int = DEFAULT_SUBSCRIBER_BUFFER,
        *,
        logger: FilteringBoundLogger | None = None,
    ) -> None:
        """Initialize the bus.

        Args:
            buffer_size: Default per-subscriber buffer size.
            logger: Logger for pruning notices. Defaults to a stderr logger.
        """
        self.buffer_size: int = buffer_size
        self._subscribers: list[MemoryObjectSendStream[Event]] = []
        self._closed = False
        self._logger: FilteringBoundLogger = logger or get_logger("event_bus")

    @property
    def subscriber_count(self) -> int:
        """Return the number of live subscriptions."""
        return len(self._subscribers)

    def subscribe(self, buffer_size: float | None = None) -> Subscription:
        """Register a new subscriber.

        Only events published after this call are delivered.

        Args:
            buffer_size: Per-subscriber buffer. ``math.inf`` makes the
                subscription unbounded (used by internal consumers that must
                never miss an event). Defaults to ``self.buffer_size``.

        Returns:
            The new subscription.

        Raises:
            anyio.ClosedResourceError: If the bus has been closed.
        """
        if self._closed:
            msg = "Event bus is closed"
            raise anyio.ClosedResourceError(msg)

        size = self.buffer_size if buffer_size is None else buffer_size
        send, receive = anyio.create_memory_object_stream[Event](
            size if math.isinf(size) else int(size)
        )
        self._subscribers.append(send)
        return Subscription(receive)

    def publish(self, event: Event) -> None:
        """Deliver an event to every subscriber without waiting.

        Subscribers that cannot accept the event are closed and removed.
        """
        if self._closed:
            return

        for send in tuple(self._subscribers):
            try:
                send.send_nowait(event)
            except anyio.WouldBlock:
                self._logger.warning(
                    "subscriber_pruned", reason="buffer_full", event_type=event.type
                )
                self._prune(send)
            except (anyio.BrokenResourceError, anyio.ClosedResourceError):
                self._logger.debug("subscriber_pruned", reason="closed")
                self._prune(send)

    def close(self) -> None:
        """Close every subscription; pending events remain receivable."""
        self._closed = True
        for send in self._subscribers:
            send.close()
        self._subscribers.clear()

    def _prune(self, send: MemoryObjectSendStream[Event]) -> None:
        send.close()
        if send in self._subscribers:
            self._subscribers.remove(send)

"""Protocol definitions for the supervisor system.

This module defines the interfaces that decouple the supervisor core from
its transports:
- Observer: Protocol for a connected client receiving broadcast events
"""

from typing import Protocol, runtime_checkable


@runtime_checkable
class Observer(Protocol):
    """Protocol for a connected event observer.

    FastAPI's ``WebSocket`` satisfies this protocol. Implementations raise
    when the peer has gone away; the broadcaster prunes the observer then.
    """

    async def send_text(self, data: str) -> None:
        """Send one serialised event to the peer.

        Args:
            data: JSON-encoded event message.
        """
        ...

"""Bounded per-instance log storage."""

from __future__ import annotations

from collections import deque
from itertools import islice
from typing import TYPE_CHECKING, final

if TYPE_CHECKING:
    from collections.abc import Iterator

    from ._models import LogEntry

DEFAULT_CAPACITY = 1000


@final
class LogRingBuffer:
    """Fixed-capacity sequence of log entries in append order.

    Appending to a full buffer evicts the oldest entry.
    """

    __slots__ = ("_entries",)

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity <= 0:
            msg = f"capacity must be positive, got {capacity}"
            raise ValueError(msg)
        self._entries: deque[LogEntry] = deque(maxlen=capacity)

    @property
    def capacity(self) -> int:
        """Return the maximum number of retained entries."""
        # maxlen is always set by __init__
        return self._entries.maxlen or 0

    def append(self, entry: LogEntry) -> None:
        """Append an entry, evicting the oldest when full."""
        self._entries.append(entry)

    def get(self, limit: int | None = None) -> list[LogEntry]:
        """Return the most recent `limit` entries, oldest first.

        Args:
            limit: Number of entries to return. None returns the whole
                buffer; zero or a negative value returns nothing.

        Returns:
            A new list; later appends do not affect it.
        """
        if limit is None:
            return list(self._entries)
        if limit <= 0:
            return []
        start = max(len(self._entries) - limit, 0)
        return list(islice(self._entries, start, None))

    def clear(self) -> None:
        """Discard every entry."""
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[LogEntry]:
        return iter(tuple(self._entries))

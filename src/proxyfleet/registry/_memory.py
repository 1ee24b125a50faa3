"""In-memory registry.

Keeps instances in process memory only. Used by tests and by callers that
manage instance metadata themselves.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from ._base import BaseInstanceRegistry

if TYPE_CHECKING:
    from ._models import Instance


class InMemoryInstanceRegistry(BaseInstanceRegistry):
    """Registry that never touches disk.

    Example:
        >>> registry = InMemoryInstanceRegistry()
        >>> registry.add(Instance(id="i1", name="edge", binary_path="/bin/true", data_dir="/tmp"))
        >>> registry.set_pid("i1", 4242)
        >>> registry.get_by_id("i1").pid
        4242
    """

    def __init__(self, instances: list[Instance] | None = None) -> None:
        super().__init__(instances)
        self.save_count: int = 0

    def _persist(self) -> None:
        self.save_count += 1

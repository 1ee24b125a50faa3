"""Registry protocol for type-safe dependency injection.

The supervisor core depends only on this protocol, so the file-backed
registry and the in-memory registry are interchangeable.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from ._models import Instance


@runtime_checkable
class InstanceRegistry(Protocol):
    """Durable store of instance metadata.

    The supervisor reads instances through `get_by_id`/`get_all` and only
    ever writes the pid through `set_pid`. The remaining methods serve the
    CLI and the delete endpoint.
    """

    def get_all(self) -> list[Instance]:
        """Return every registered instance in registration order."""
        ...

    def get_by_id(self, instance_id: str) -> Instance | None:
        """Return the instance with this id, or None."""
        ...

    def add(self, instance: Instance) -> None:
        """Register a new instance.

        Raises:
            DuplicateInstanceError: If the id is already registered.
        """
        ...

    def update(self, instance_id: str, **changes: object) -> Instance:
        """Apply field changes to an instance and persist them.

        Raises:
            InstanceNotFoundError: If the id is not registered.
        """
        ...

    def remove(self, instance_id: str) -> None:
        """Remove an instance.

        Raises:
            InstanceNotFoundError: If the id is not registered.
        """
        ...

    def set_pid(self, instance_id: str, pid: int | None) -> None:
        """Record the live pid (or its absence) and the matching start time.

        Raises:
            InstanceNotFoundError: If the id is not registered.
        """
        ...

"""Shared registry behaviour.

BaseInstanceRegistry implements the InstanceRegistry operations over an
in-memory list; subclasses decide how the list is persisted.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

from proxyfleet.exceptions import DuplicateInstanceError, InstanceNotFoundError
from proxyfleet.utils import utc_timestamp

if TYPE_CHECKING:
    from ._models import Instance


class BaseInstanceRegistry(ABC):
    """Instance registry operations over a list, with a persistence hook.

    Every mutation is applied to a new list that only replaces the current
    one once ``_persist`` succeeds, so a failed write leaves the registry as
    it was.
    """

    def __init__(self, instances: list[Instance] | None = None) -> None:
        self._instances: list[Instance] = list(instances or [])

    @abstractmethod
    def _persist(self) -> None:
        """Write the current instance list to durable storage."""

    def _commit(self, instances: list[Instance]) -> None:
        previous = self._instances
        self._instances = instances
        try:
            self._persist()
        except Exception:
            self._instances = previous
            raise

    def _index_of(self, instance_id: str) -> int:
        for index, instance in enumerate(self._instances):
            if instance.id == instance_id:
                return index
        msg = f"Instance with ID {instance_id} not found"
        raise InstanceNotFoundError(msg, instance_id=instance_id)

    def get_all(self) -> list[Instance]:
        return list(self._instances)

    def get_by_id(self, instance_id: str) -> Instance | None:
        return next((i for i in self._instances if i.id == instance_id), None)

    def add(self, instance: Instance) -> None:
        if self.get_by_id(instance.id) is not None:
            msg = f"Instance with ID {instance.id} already exists"
            raise DuplicateInstanceError(msg)
        self._commit([*self._instances, instance])

    def update(self, instance_id: str, **changes: object) -> Instance:
        index = self._index_of(instance_id)
        updated = self._instances[index].model_copy(update=changes)
        instances = list(self._instances)
        instances[index] = updated
        self._commit(instances)
        return updated

    def remove(self, instance_id: str) -> None:
        index = self._index_of(instance_id)
        self._commit([*self._instances[:index], *self._instances[index + 1 :]])

    def set_pid(self, instance_id: str, pid: int | None) -> None:
        _ = self.update(
            instance_id,
            pid=pid,
            last_started=utc_timestamp() if pid is not None else None,
        )

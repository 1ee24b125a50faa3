"""Instance registry.

Durable store of instance metadata (id, binary path, working directory,
auto-restart flag, last known pid) consumed by the supervisor.
"""

from ._base import BaseInstanceRegistry
from ._memory import InMemoryInstanceRegistry
from ._models import DownloadSource, Instance
from ._protocol import InstanceRegistry
from ._store import JsonInstanceRegistry

__all__ = [
    "BaseInstanceRegistry",
    "DownloadSource",
    "InMemoryInstanceRegistry",
    "Instance",
    "InstanceRegistry",
    "JsonInstanceRegistry",
]

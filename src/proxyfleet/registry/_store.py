"""JSON file-backed instance registry.

The file holds ``{"instances": [...], "lastUpdated": "<iso8601>"}``.
Unknown top-level keys (for example stored credentials) are preserved on
every save.
"""

from __future__ import annotations

import os
from typing import TYPE_CHECKING, cast

import orjson
from pydantic import ValidationError

from proxyfleet.exceptions import RegistryError
from proxyfleet.utils import utc_timestamp

from ._base import BaseInstanceRegistry
from ._models import Instance

if TYPE_CHECKING:
    from pathlib import Path


class JsonInstanceRegistry(BaseInstanceRegistry):
    """Registry persisted to a JSON file after every change."""

    def __init__(self, path: Path) -> None:
        super().__init__()
        self.path: Path = path
        self._extra: dict[str, object] = {}

    def load(self) -> None:
        """Read the registry file, creating it when missing.

        Raises:
            RegistryError: If the file exists but cannot be parsed.
        """
        try:
            raw = self.path.read_bytes()
        except FileNotFoundError:
            self._instances = []
            self._persist()
            return

        try:
            data = cast("dict[str, object]", orjson.loads(raw))
            entries = cast("list[dict[str, object]]", data.get("instances", []))
            instances = [Instance.model_validate(entry) for entry in entries]
        except (orjson.JSONDecodeError, ValidationError, AttributeError) as e:
            msg = f"Failed to read registry file {self.path}: {e}"
            raise RegistryError(msg, path=self.path) from e

        self._instances = instances
        self._extra = {
            key: value
            for key, value in data.items()
            if key not in ("instances", "lastUpdated")
        }

    def save(self) -> None:
        """Write the registry file."""
        self._persist()

    def _persist(self) -> None:
        payload: dict[str, object] = {
            **self._extra,
            "instances": [instance.to_json_dict() for instance in self._instances],
            "lastUpdated": utc_timestamp(),
        }
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_name(f".{self.path.name}.tmp")
        try:
            _ = tmp_path.write_bytes(orjson.dumps(payload, option=orjson.OPT_INDENT_2))
            os.replace(tmp_path, self.path)
        except OSError as e:
            msg = f"Failed to write registry file {self.path}: {e}"
            raise RegistryError(msg, path=self.path) from e

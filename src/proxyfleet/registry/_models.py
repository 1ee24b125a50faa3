"""Data models for the instance registry.

Field names are snake_case in Python and camelCase on disk and over the
wire, matching the registry file written by earlier releases.
"""

from typing import ClassVar

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class DownloadSource(BaseModel):
    """Where an instance's binary was fetched from."""

    model_config: ClassVar[ConfigDict] = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    url: str
    sha256: str | None = None


class Instance(BaseModel):
    """Registry record for one supervised proxy installation.

    Attributes:
        id: Opaque unique identifier, stable across service restarts.
        name: Human-readable name.
        version: Installed release of the proxy binary.
        platform: Platform the binary was built for.
        binary_path: Executable to spawn.
        data_dir: Working directory for the process.
        config_path: YAML config file watched while the instance runs.
        pid: Process id of the live process, if any.
        last_started: ISO 8601 timestamp of the last recorded start.
        auto_restart: Whether unsolicited exits trigger a respawn.
        download_source: Origin of the binary, if known.
    """

    model_config: ClassVar[ConfigDict] = ConfigDict(
        frozen=True,
        extra="ignore",
        alias_generator=to_camel,
        populate_by_name=True,
    )

    id: str
    name: str
    version: str = ""
    platform: str = "linux"
    binary_path: str
    data_dir: str
    config_path: str = ""
    pid: int | None = None
    last_started: str | None = None
    auto_restart: bool = False
    download_source: DownloadSource | None = None

    def to_json_dict(self) -> dict[str, object]:
        """Return the camelCase representation used on disk and over the wire."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

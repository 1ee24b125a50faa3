"""proxyfleet exceptions."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pathlib import Path


class ProxyFleetError(Exception):
    """Base exception for proxyfleet errors."""


class ConfigError(ProxyFleetError):
    """Base exception for configuration errors."""


class ConfigLoadError(ConfigError):
    """Raised when configuration cannot be loaded or parsed."""

    def __init__(
        self,
        message: str,
        *,
        path: Path | None = None,
        line: int | None = None,
        column: int | None = None,
    ) -> None:
        """Initialize with error message and optional location context."""
        super().__init__(message)
        self.path: Path | None = path
        self.line: int | None = line
        self.column: int | None = column


# =============================================================================
# Registry Exceptions
# =============================================================================


class RegistryError(ProxyFleetError):
    """Raised when the instance registry cannot be read or written.

    Attributes:
        path: The registry file involved, if any.
    """

    def __init__(self, message: str, *, path: Path | None = None) -> None:
        """Initialize with error message and path context.

        Args:
            message: Human-readable error message.
            path: The registry file involved, if any.
        """
        super().__init__(message)
        self.path: Path | None = path


class DuplicateInstanceError(RegistryError):
    """Raised when adding an instance whose id is already registered."""


# =============================================================================
# Supervisor Exceptions
# =============================================================================


class SupervisorError(ProxyFleetError):
    """Base exception for supervisor errors.

    Attributes:
        instance_id: The instance the failed operation referred to.
    """

    def __init__(self, message: str, *, instance_id: str | None = None) -> None:
        """Initialize with error message and instance context.

        Args:
            message: Human-readable error message.
            instance_id: The instance the failed operation referred to.
        """
        super().__init__(message)
        self.instance_id: str | None = instance_id


class InstanceNotFoundError(SupervisorError, KeyError):
    """Raised when an instance id is absent from the registry."""

    def __str__(self) -> str:
        # KeyError.__str__ would repr() the message
        return str(self.args[0]) if self.args else ""


class AlreadyRunningError(SupervisorError):
    """Raised when starting an instance that already has a live process."""


class NotRunningError(SupervisorError):
    """Raised when stopping an instance that has no live process."""


class SpawnError(SupervisorError):
    """Raised when the OS fails to create the child process.

    Attributes:
        instance_id: The instance that failed to start.
        cause: The underlying exception that caused the failure.
    """

    def __init__(
        self,
        message: str,
        *,
        instance_id: str | None = None,
        cause: Exception | None = None,
    ) -> None:
        """Initialize with error message and spawn context.

        Args:
            message: Human-readable error message.
            instance_id: The instance that failed to start.
            cause: The underlying exception that caused the failure.
        """
        super().__init__(message, instance_id=instance_id)
        self.cause: Exception | None = cause

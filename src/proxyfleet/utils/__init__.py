"""Shared utilities for proxyfleet."""

from ._logging import LogFormatType, create_logger, get_logger
from ._time import utc_timestamp

__all__ = [
    "LogFormatType",
    "create_logger",
    "get_logger",
    "utc_timestamp",
]

from __future__ import annotations

import os
from typing import TYPE_CHECKING

from proxyfleet.exceptions import ConfigError, ConfigLoadError

from ._models import Config

if TYPE_CHECKING:
    from pathlib import Path

STRICT_ENV_VAR = "PROXYFLEET_STRICT_CONFIG"


def safe_load_config(
    *,
    config_path: Path | None = None,
    search_dir: Path | None = None,
    strict: bool | None = None,
) -> tuple[Config, str | None]:
    """Load settings, falling back to defaults when they cannot be read.

    Strict mode turns the fallback into an error. It is on when `strict` is
    True, or when `strict` is None and PROXYFLEET_STRICT_CONFIG is "1". A
    `config_path` that does not exist is always an error.

    Args:
        config_path: File named with --config.
        search_dir: Directory searched for proxyfleet.toml.
        strict: Override for the environment switch.

    Returns:
        The settings and, if they are the defaults because loading failed,
        the reason.

    Raises:
        ConfigLoadError: If the explicit file is missing, or loading fails
            in strict mode.
    """
    if strict is None:
        strict = os.environ.get(STRICT_ENV_VAR, "0") == "1"

    if config_path is not None and not config_path.exists():
        msg = f"Config file not found: {config_path}"
        raise ConfigLoadError(msg, path=config_path)

    try:
        return Config.load(config_path=config_path, search_dir=search_dir), None
    except (ConfigError, OSError) as e:
        if not strict:
            return Config(), str(e)
        if isinstance(e, ConfigLoadError):
            raise
        raise ConfigLoadError(str(e), path=config_path) from e

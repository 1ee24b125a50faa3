# pyright: reportAny=false, reportExplicitAny=false
"""Raw configuration sources: the TOML file and PROXYFLEET_* variables.

Both sources produce plain nested dictionaries. ``Config.load`` merges them
over the built-in defaults before validation.
"""

from __future__ import annotations

import copy
import os
import tomllib
from typing import TYPE_CHECKING, Any

import orjson

from proxyfleet.exceptions import ConfigLoadError

if TYPE_CHECKING:
    from collections.abc import Mapping
    from pathlib import Path

ENV_PREFIX = "PROXYFLEET_"
# Separates the section from the key: PROXYFLEET_SERVER__PORT
ENV_SECTION_SEPARATOR = "__"


def read_toml_file(path: Path) -> dict[str, Any]:
    """Parse a TOML file.

    Raises:
        FileNotFoundError: If the file does not exist.
        ConfigLoadError: If the content is not valid TOML.
    """
    with path.open("rb") as f:
        try:
            return tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ConfigLoadError(
                f"Invalid TOML in {path}: {e}",
                path=path,
                line=getattr(e, "lineno", None),
                column=getattr(e, "colno", None),
            ) from e


def deep_merge(base: Mapping[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    """Return `base` with `override` layered on top.

    Tables merge key by key; any other override value replaces the base
    value outright. The result shares no containers with either input.
    """
    merged = copy.deepcopy(dict(base))
    for key, value in override.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            merged[key] = deep_merge(current, value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def parse_string_value(value: str) -> Any:
    """Infer the type of an environment variable value.

    Tried in order: true/false, int, float (only with a decimal point), a
    JSON array or object, and finally the string itself.

    Examples:
        >>> parse_string_value("8080")
        8080
        >>> parse_string_value("0.5")
        0.5
        >>> parse_string_value("127.0.0.1")
        '127.0.0.1'
    """
    if value.lower() in {"true", "false"}:
        return value.lower() == "true"

    number = float if "." in value else int
    try:
        return number(value)
    except ValueError:
        pass

    if value[:1] + value[-1:] in {"[]", "{}"}:
        try:
            return orjson.loads(value)
        except orjson.JSONDecodeError:
            pass
    return value


def set_nested_key(d: dict[str, Any], key_path: str, value: Any) -> None:
    """Assign `value` at a dotted path, replacing non-table intermediates."""
    *parents, leaf = key_path.split(".")
    node = d
    for part in parents:
        child = node.get(part)
        if not isinstance(child, dict):
            child = node[part] = {}
        node = child
    node[leaf] = value


def parse_env_vars(prefix: str = ENV_PREFIX) -> dict[str, Any]:
    """Collect ``PREFIX_SECTION__KEY`` variables into nested settings.

    ``PROXYFLEET_SUPERVISOR__STOP_TIMEOUT=5`` becomes
    ``{"supervisor": {"stop_timeout": 5}}``. Variables without the section
    separator, such as PROXYFLEET_DEBUG, are process switches and are
    skipped.
    """
    settings: dict[str, Any] = {}
    for name, raw in os.environ.items():
        if not name.startswith(prefix):
            continue
        key = name.removeprefix(prefix)
        if ENV_SECTION_SEPARATOR not in key:
            continue
        dotted = key.lower().replace(ENV_SECTION_SEPARATOR, ".")
        set_nested_key(settings, dotted, parse_string_value(raw))
    return settings

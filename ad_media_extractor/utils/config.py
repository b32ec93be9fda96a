"""Configuration: one TOML file, then AD_MEDIA_ environment overrides.

Sections map onto the components that read them: ``browser``, ``network``,
``probe``, ``sequencer`` and ``resolver`` drive an extraction attempt;
``batch``, ``cache``, ``search``, ``storage``, ``server`` and ``logging``
configure everything around it. Components read their section with
``config.get(section, {})`` and fall back on built-in defaults.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

try:
    import tomllib
except ImportError:
    import tomli as tomllib


DEFAULT_CONFIG_PATH = Path(__file__).parent.parent.parent / "config" / "default.toml"
ENV_PREFIX = "AD_MEDIA_"
# Points at an alternative config file; not a key override
CONFIG_PATH_ENV = "AD_MEDIA_CONFIG"


def load_config(config_path: Path | None = None) -> dict[str, Any]:
    """Load the TOML config, then apply environment overrides.

    The file is ``config_path`` if given, else ``$AD_MEDIA_CONFIG``, else the
    repository's ``config/default.toml``.
    """
    path = config_path or Path(os.environ.get(CONFIG_PATH_ENV, DEFAULT_CONFIG_PATH))
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(path, "rb") as f:
        config = tomllib.load(f)

    _apply_env_overrides(config)
    return config


def _apply_env_overrides(config: dict[str, Any]) -> None:
    """Override config values with AD_MEDIA_ prefixed environment variables.

    Example: AD_MEDIA_BROWSER_NAVIGATION_TIMEOUT_MS=45000 overrides
    config["browser"]["navigation_timeout_ms"], and
    AD_MEDIA_NETWORK_MEDIA_HOSTS=fbcdn.net,cdninstagram.com replaces a list.
    Variables that match no existing key are ignored.
    """
    for key, value in os.environ.items():
        if not key.startswith(ENV_PREFIX) or key == CONFIG_PATH_ENV:
            continue
        remainder = key[len(ENV_PREFIX) :].lower()
        _set_nested_greedy(config, remainder, value)


def _set_nested_greedy(d: dict, remainder: str, value: str) -> None:
    """Set a value in a nested dict, greedily matching keys that contain underscores."""
    if not remainder:
        return

    # Longest key first so "idle_timeout_ms" wins over "idle"
    for config_key in sorted(d.keys(), key=len, reverse=True):
        prefix = config_key.lower()
        if remainder == prefix:
            existing = d[config_key]
            if isinstance(existing, dict):
                continue  # Can't override a section with a scalar
            d[config_key] = _cast_value(value, type(existing))
            return
        elif remainder.startswith(prefix + "_"):
            child = d[config_key]
            if isinstance(child, dict):
                _set_nested_greedy(child, remainder[len(prefix) + 1 :], value)
                return


def _cast_value(value: str, target_type: type) -> Any:
    if target_type is bool:
        return value.lower() in ("true", "1", "yes")
    if target_type is int:
        return int(value)
    if target_type is float:
        return float(value)
    if target_type is list:
        return [item.strip() for item in value.split(",") if item.strip()]
    return value


def log_file_from(config: dict[str, Any]) -> Path | None:
    """The configured log file, or None when file logging is off."""
    path = config.get("logging", {}).get("file", "")
    return Path(path) if path else None

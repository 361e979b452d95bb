"""Utility functions for locating and reading strata configuration files."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict

import yaml

# Constants
CONFIG_FILE = "strata.yaml"
MISSING_MESSAGE = "Missing required environment variable: {}"
NOT_GIVEN = object()


# ---------------------------------------------------------------------------
# Path helpers
# ---------------------------------------------------------------------------


def get_system_file_path(filename: str) -> Path:
    """Return the path to the configuration file for the current OS."""
    import platform

    os_name = platform.system()
    if os_name in {"Linux", "Darwin"}:
        return Path.home() / ".config" / "strata" / filename
    elif os_name == "Windows":
        appdata = os.getenv("APPDATA")
        if appdata is not None:
            return Path(appdata) / "strata" / filename
        return Path("data") / filename
    return Path("data") / filename


def find_config_file(explicit: str | Path | None = None) -> Path | None:
    """Locate the configuration file.

    Lookup order: explicit path, ``STRATA_CONFIG``, ``./strata.yaml``, then the
    per-user configuration directory. Returns None when nothing exists; an
    explicit or ``STRATA_CONFIG`` path that does not exist raises
    FileNotFoundError.
    """
    if explicit is None:
        explicit = os.environ.get("STRATA_CONFIG") or None

    if explicit is not None:
        path = Path(explicit).expanduser()
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")
        return path

    for candidate in (Path.cwd() / CONFIG_FILE, get_system_file_path(CONFIG_FILE)):
        if candidate.exists():
            return candidate
    return None


# ---------------------------------------------------------------------------
# Settings helpers
# ---------------------------------------------------------------------------


def load_settings(path: Path | None) -> Dict[str, Any]:
    """Load settings from a YAML file, returning an empty dict if absent."""
    if path is None or not path.exists():
        return {}

    with open(path, "r") as f:
        data = yaml.safe_load(f) or {}

    if not isinstance(data, dict):
        raise ValueError(f"Configuration file {path} must contain a mapping, got {type(data).__name__}")
    return data


def get_value(
    key: str,
    settings: Dict[str, Any],
    default_env: Dict[str, Any],
    default: Any = NOT_GIVEN,
) -> Any:
    """Retrieve a configuration value from settings, environment, or defaults."""
    value = settings.get(key)
    if value is None or str(value) == "":
        value = os.environ.get(key)

    if value is None:
        value = default_env.get(key, default)

    if value is not NOT_GIVEN:
        return value
    raise Exception(MISSING_MESSAGE.format(key))

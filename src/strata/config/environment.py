"""
Environment Configuration Management Module

Central access to process-level configuration for strata. Values are resolved
from, in order of precedence:

- The top-level ``environment`` mapping of the settings file
- Environment variables (after loading ``.env`` files)
- Default values

Migration-specific configuration (namespaces, groups, tracking table) lives in
:mod:`strata.config.migrations_config`; this module only covers the ambient
settings shared by logging and the CLI.
"""

import os
from pathlib import Path
from typing import Any, Dict, Optional

from strata.config.settings import NOT_GIVEN, find_config_file, get_value, load_settings

DEFAULT_ENV = {
    "ENV": "development",
    "STRATA_LOG_LEVEL": "INFO",
    "STRATA_CONFIG": None,
    "STRATA_MIGRATIONS_ENABLED": None,
    "STRATA_MIGRATIONS_PATH": None,
    "STRATA_MIGRATIONS_TABLE": None,
    "STRATA_DATABASE_URL": None,
}


def load_dotenv_files(base_dir: Path | None = None) -> None:
    """Load environment variables from .env files based on current environment."""
    from dotenv import load_dotenv

    base_dir = base_dir or Path.cwd()
    env_name = os.environ.get("ENV", "development")

    # Later files do not override earlier ones or the real environment
    env_files = [
        base_dir / ".env",
        base_dir / f".env.{env_name}",
        base_dir / f".env.{env_name}.local",
    ]

    for env_file in env_files:
        if env_file.exists():
            load_dotenv(env_file, override=False)


class Environment(object):
    """
    Manages environment variables and provides default values and type conversions.

    Settings are loaded lazily on first access. Tests can call
    :meth:`reset` to drop the cached settings.
    """

    settings: Optional[Dict[str, Any]] = None

    @classmethod
    def load_settings(cls, config_path: str | Path | None = None):
        load_dotenv_files()
        path = find_config_file(config_path)
        data = load_settings(path)
        env_section = data.get("environment") or {}
        cls.settings = {str(k): v for k, v in env_section.items()}

    @classmethod
    def get_settings(cls) -> Dict[str, Any]:
        if cls.settings is None:
            try:
                cls.load_settings()
            except FileNotFoundError:
                cls.settings = {}
        assert cls.settings is not None
        return cls.settings

    @classmethod
    def reset(cls) -> None:
        cls.settings = None

    @classmethod
    def get(cls, key: str, default: Any = NOT_GIVEN):
        """
        Retrieve an environment variable value.
        """
        return get_value(key, cls.get_settings(), DEFAULT_ENV, default)

    @classmethod
    def get_log_level(cls) -> str:
        return str(cls.get("STRATA_LOG_LEVEL")).upper()

    @classmethod
    def get_bool(cls, key: str) -> Optional[bool]:
        """Parse a boolean-ish variable; None when unset."""
        value = cls.get(key, None)
        if value is None or value == "":
            return None
        if isinstance(value, bool):
            return value
        return str(value).strip().lower() in {"1", "true", "yes", "on"}

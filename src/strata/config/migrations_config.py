"""
Migration configuration for strata.

The configuration surface is a single ``strata.yaml`` file validated with
pydantic. It declares the namespaces that own migration directories, the
database groups migrations run against, and the tracking table settings.
"""

from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from strata.config.environment import Environment
from strata.config.settings import find_config_file, load_settings


class DatabaseGroupConfig(BaseModel):
    """Connection settings for one database group."""

    url: str = Field(..., description="Connection URL (sqlite:///path.db or postgresql://...)")
    min_size: int = Field(1, description="Minimum pool size (PostgreSQL only)")
    max_size: int = Field(5, description="Maximum pool size (PostgreSQL only)")

    @field_validator("url")
    @classmethod
    def strip_url(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Database group url must not be empty")
        return v


class MigrationsConfig(BaseModel):
    """Main migrations configuration."""

    enabled: bool = Field(True, description="Gate for every migration run")
    path: str = Field("Database/Migrations/", description="Migration directory relative to each namespace root")
    table: str = Field("migrations", description="Tracking table name")
    timestamp_format: str = Field(
        "%Y-%m-%d-%H%M%S_",
        description="strftime pattern used when scaffolding new migration files",
    )
    default_namespace: str = "App"
    default_group: str = "default"
    namespaces: Dict[str, str] = Field(default_factory=lambda: {"App": "app"})
    groups: Dict[str, DatabaseGroupConfig] = Field(
        default_factory=lambda: {"default": DatabaseGroupConfig(url="sqlite:///strata.sqlite3")}
    )
    base_dir: Path = Field(default_factory=Path.cwd, description="Directory relative paths resolve against")

    @field_validator("table")
    @classmethod
    def validate_table(cls, v: str) -> str:
        if not v.replace("_", "").isalnum():
            raise ValueError(f"Invalid tracking table name: {v!r}")
        return v

    @model_validator(mode="after")
    def _check_defaults(self) -> "MigrationsConfig":
        if self.default_namespace not in self.namespaces:
            raise ValueError(f"default_namespace '{self.default_namespace}' is not listed under namespaces")
        if self.default_group not in self.groups:
            raise ValueError(f"default_group '{self.default_group}' is not listed under groups")
        return self

    def namespace_root(self, namespace: str) -> Path:
        """Return the absolute root directory of a namespace."""
        root = Path(self.namespaces[namespace]).expanduser()
        if not root.is_absolute():
            root = self.base_dir / root
        return root

    def migrations_dir(self, namespace: str) -> Path:
        """Return the migration directory of a namespace."""
        return self.namespace_root(namespace) / self.path


def _env_overrides() -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    enabled = Environment.get_bool("STRATA_MIGRATIONS_ENABLED")
    if enabled is not None:
        overrides["enabled"] = enabled
    path = Environment.get("STRATA_MIGRATIONS_PATH", None)
    if path:
        overrides["path"] = path
    table = Environment.get("STRATA_MIGRATIONS_TABLE", None)
    if table:
        overrides["table"] = table
    return overrides


def load_migrations_config(path: str | Path | None = None) -> MigrationsConfig:
    """
    Load the migrations configuration.

    Reads the file found by :func:`find_config_file`, applies environment
    overrides and validates the result. Without any file the defaults apply.

    Raises:
        FileNotFoundError: If an explicit path does not exist.
        yaml.YAMLError: If the YAML is invalid.
        ValidationError: If the configuration is invalid.
    """
    config_path = find_config_file(path)
    data = load_settings(config_path)
    data.pop("environment", None)

    data.update(_env_overrides())

    database_url = Environment.get("STRATA_DATABASE_URL", None)
    if database_url:
        groups = dict(data.get("groups") or {})
        default_group = data.get("default_group", "default")
        groups[default_group] = {**(groups.get(default_group) or {}), "url": database_url}
        data["groups"] = groups

    if "base_dir" not in data:
        data["base_dir"] = config_path.parent if config_path is not None else Path.cwd()
    else:
        base_dir = Path(data["base_dir"]).expanduser()
        if not base_dir.is_absolute() and config_path is not None:
            base_dir = config_path.parent / base_dir
        data["base_dir"] = base_dir

    return MigrationsConfig.model_validate(data)


def default_config(base_dir: Optional[Path] = None, **overrides: Any) -> MigrationsConfig:
    """Build a configuration from defaults plus keyword overrides."""
    data: Dict[str, Any] = {"base_dir": base_dir or Path.cwd()}
    data.update(overrides)
    return MigrationsConfig.model_validate(data)

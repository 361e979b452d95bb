"""
Scaffolding for new migration scripts.
"""

import re
from datetime import UTC, datetime
from pathlib import Path

from strata.config.logging_config import get_logger
from strata.config.migrations_config import MigrationsConfig
from strata.migrations.discovery import parse_migration_filename, unit_name_for
from strata.migrations.exceptions import ConfigurationError

log = get_logger(__name__)

TEMPLATE = '''"""
Migration: {title}
Version: {version}
"""

from strata.migrations import Migration


class {unit_name}(Migration):
{pin}    async def up(self) -> None:
        """Apply the migration.

        Use self.db.execute() for SQL statements and self.db.column_exists()
        or self.db.table_exists() to guard against partial earlier runs.
        """
        pass

    async def down(self) -> None:
        """Revert the migration."""
        pass
'''


def safe_migration_name(name: str) -> str:
    """Normalise a user-supplied name to ``lower_snake_case``."""
    safe = re.sub(r"[^0-9a-zA-Z]+", "_", name.strip()).strip("_")
    safe = re.sub(r"(?<=[a-z0-9])(?=[A-Z])", "_", safe).lower()
    if not safe or not safe[0].isalpha():
        raise ValueError(f"Migration name must start with a letter: {name!r}")
    return safe


def create_migration(
    config: MigrationsConfig,
    name: str,
    namespace: str | None = None,
    now: datetime | None = None,
    group: str | None = None,
) -> Path:
    """Write a new, empty migration script and return its path.

    When ``group`` is given the generated unit is pinned to that database
    group through its ``db_group`` attribute.

    Raises:
        ConfigurationError: If the namespace or group is unknown, or the
            configured timestamp format produces names discovery cannot parse.
        FileExistsError: If the target file already exists.
    """
    namespace = namespace or config.default_namespace
    if namespace not in config.namespaces:
        raise ConfigurationError(f"Unknown namespace '{namespace}'", namespace=namespace)
    if group is not None and group not in config.groups:
        raise ConfigurationError(f"Unknown database group '{group}'", namespace=namespace, group=group)

    safe_name = safe_migration_name(name)
    now = now or datetime.now(UTC)
    filename = f"{now.strftime(config.timestamp_format)}{safe_name}.py"

    parsed = parse_migration_filename(filename)
    if parsed is None or parsed[1] != safe_name:
        raise ConfigurationError(
            f"timestamp_format {config.timestamp_format!r} produces unparseable migration file name {filename!r}",
            namespace=namespace,
        )
    version, _ = parsed

    directory = config.migrations_dir(namespace)
    filepath = directory / filename
    if filepath.exists():
        raise FileExistsError(f"Migration file already exists: {filepath}")

    directory.mkdir(parents=True, exist_ok=True)
    filepath.write_text(
        TEMPLATE.format(
            title=safe_name.replace("_", " ").capitalize(),
            version=version,
            unit_name=unit_name_for(safe_name),
            pin=f"    db_group = {group!r}\n\n" if group else "",
        )
    )
    log.info(f"Created migration {filepath}")
    return filepath

"""
Database connections per group.

A :class:`ConnectionProvider` hands the runner one adapter per database group.
Connections are opened lazily and reused for every namespace migrated on the
same group within one provider's lifetime.
"""

import asyncio
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Mapping

from strata.config.logging_config import get_logger
from strata.config.migrations_config import DatabaseGroupConfig, MigrationsConfig
from strata.migrations.db_adapter import (
    MigrationDBAdapter,
    PostgresMigrationAdapter,
    SQLiteMigrationAdapter,
    create_migration_adapter,
)
from strata.migrations.exceptions import ConfigurationError

log = get_logger(__name__)


class ConnectionProvider(ABC):
    """Capability mapping a group name to its database adapter."""

    @abstractmethod
    async def adapter_for(self, group: str) -> MigrationDBAdapter:
        """Return the adapter for ``group``, opening it if needed."""

    async def close(self) -> None:
        """Release every connection opened by this provider."""

    async def __aenter__(self) -> "ConnectionProvider":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()


class StaticConnectionProvider(ConnectionProvider):
    """Serves pre-built adapters or raw connections.

    The caller keeps ownership of the wrapped connections.
    """

    def __init__(self, connections: Mapping[str, Any]):
        self._adapters = {group: create_migration_adapter(conn) for group, conn in connections.items()}

    async def adapter_for(self, group: str) -> MigrationDBAdapter:
        try:
            return self._adapters[group]
        except KeyError:
            raise ConfigurationError(f"No connection configured for group '{group}'", group=group) from None


def sqlite_path_from_url(url: str, base_dir: Path) -> str:
    """Return the database path of a ``sqlite://`` URL.

    ``sqlite:///app.db`` is relative to ``base_dir``, ``sqlite:////var/app.db``
    is absolute and ``sqlite://:memory:`` (or ``sqlite:///:memory:``) is an
    in-memory database.
    """
    rest = url[len("sqlite://") :]
    if rest in (":memory:", "/:memory:"):
        return ":memory:"
    if not rest.startswith("/"):
        raise ValueError(f"Invalid sqlite URL: {url}")
    rest = rest[1:]
    path = Path(rest).expanduser()
    if not path.is_absolute():
        path = base_dir / path
    return str(path)


class ConfiguredConnectionProvider(ConnectionProvider):
    """Opens connections from the ``groups`` section of the configuration."""

    def __init__(self, config: MigrationsConfig):
        self._config = config
        self._adapters: dict[str, MigrationDBAdapter] = {}
        self._open_lock = asyncio.Lock()

    async def adapter_for(self, group: str) -> MigrationDBAdapter:
        async with self._open_lock:
            adapter = self._adapters.get(group)
            if adapter is None:
                group_config = self._config.groups.get(group)
                if group_config is None:
                    raise ConfigurationError(f"Unknown database group '{group}'", group=group)
                try:
                    adapter = await self._open(group, group_config)
                except ConfigurationError:
                    raise
                except Exception as e:
                    raise ConfigurationError(f"Cannot open database group '{group}': {e}", group=group) from e
                self._adapters[group] = adapter
            return adapter

    async def _open(self, group: str, group_config: DatabaseGroupConfig) -> MigrationDBAdapter:
        url = group_config.url

        if url.startswith("sqlite://"):
            import aiosqlite

            try:
                db_path = sqlite_path_from_url(url, self._config.base_dir)
            except ValueError as e:
                raise ConfigurationError(str(e), group=group) from e
            if db_path != ":memory:":
                Path(db_path).parent.mkdir(parents=True, exist_ok=True)
            log.info(f"Using SQLite database for group {group}: {db_path}")
            conn = await aiosqlite.connect(db_path)
            return SQLiteMigrationAdapter(conn, owns_connection=True)

        if url.startswith(("postgresql://", "postgres://")):
            try:
                from psycopg_pool import AsyncConnectionPool
            except ImportError as e:
                raise ConfigurationError(
                    "psycopg-pool is required for PostgreSQL groups. Install it with: pip install 'strata-migrations[postgres]'",
                    group=group,
                ) from e

            pool = AsyncConnectionPool(
                url,
                min_size=group_config.min_size,
                max_size=group_config.max_size,
                open=False,
            )
            await pool.open()
            log.info(f"Using PostgreSQL database for group {group}")
            return PostgresMigrationAdapter(pool, owns_pool=True)

        raise ConfigurationError(f"Unsupported database URL for group '{group}': {url}", group=group)

    async def close(self) -> None:
        adapters = list(self._adapters.values())
        self._adapters.clear()
        for adapter in adapters:
            await adapter.close()

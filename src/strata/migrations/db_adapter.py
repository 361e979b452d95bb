"""
Database adapter interface for migrations.

The adapter is the only way the runner, the state store and migration units
touch a database group. It hides driver differences (placeholder style, row
shape, catalog queries, integrity error types) so the same migration scripts
and tracking SQL run on SQLite and PostgreSQL.
"""

import sqlite3
from abc import ABC, abstractmethod
from typing import Any


class MigrationDBAdapter(ABC):
    """Abstract database adapter interface for migrations.

    Implementations wrap a driver connection and provide:
    - Executing SQL statements with '?' placeholders
    - Transaction management (commit/rollback)
    - Schema introspection (table/column/index existence)
    - Recognition of integrity (unique constraint) violations
    """

    @abstractmethod
    async def execute(self, sql: str, params: tuple[Any, ...] | None = None) -> Any:
        """Execute a SQL statement.

        Args:
            sql: SQL statement to execute. Use '?' for parameter placeholders.
            params: Optional tuple of parameters to bind.

        Returns:
            Database-specific cursor or result object.
        """

    @abstractmethod
    async def executemany(self, sql: str, params_list: list[tuple[Any, ...]]) -> None:
        """Execute a SQL statement once per parameter tuple."""

    @abstractmethod
    async def fetchone(self, sql: str, params: tuple[Any, ...] | None = None) -> dict[str, Any] | None:
        """Execute a query and fetch one row as a column -> value dict, or None."""

    @abstractmethod
    async def fetchall(self, sql: str, params: tuple[Any, ...] | None = None) -> list[dict[str, Any]]:
        """Execute a query and fetch all rows as column -> value dicts."""

    @abstractmethod
    async def commit(self) -> None:
        """Commit the current transaction."""

    @abstractmethod
    async def rollback(self) -> None:
        """Rollback the current transaction."""

    @abstractmethod
    async def table_exists(self, table_name: str) -> bool:
        """Check if a table exists in the database."""

    @abstractmethod
    async def get_columns(self, table_name: str) -> list[str]:
        """Get list of column names in a table."""

    async def column_exists(self, table_name: str, column_name: str) -> bool:
        """Check if a column exists in a table."""
        return column_name in await self.get_columns(table_name)

    @abstractmethod
    async def index_exists(self, index_name: str) -> bool:
        """Check if an index exists."""

    @abstractmethod
    def get_rowcount(self) -> int:
        """Get the number of rows affected by the last statement."""

    @abstractmethod
    def is_integrity_error(self, exc: BaseException) -> bool:
        """Return True if ``exc`` is a constraint violation raised by the driver."""

    async def close(self) -> None:
        """Release driver resources held by the adapter."""

    @property
    @abstractmethod
    def db_type(self) -> str:
        """Database type identifier ('sqlite' or 'postgres')."""


class SQLiteMigrationAdapter(MigrationDBAdapter):
    """SQLite implementation of the migration database adapter."""

    def __init__(self, connection: Any, owns_connection: bool = False):
        """Initialize with an aiosqlite connection.

        Args:
            connection: aiosqlite.Connection object.
            owns_connection: Close the connection in :meth:`close`.
        """
        self._conn = connection
        self._owns_connection = owns_connection
        self._last_cursor = None

    @property
    def connection(self) -> Any:
        return self._conn

    async def execute(self, sql: str, params: tuple[Any, ...] | None = None) -> Any:
        if params:
            self._last_cursor = await self._conn.execute(sql, params)
        else:
            self._last_cursor = await self._conn.execute(sql)
        return self._last_cursor

    async def executemany(self, sql: str, params_list: list[tuple[Any, ...]]) -> None:
        self._last_cursor = await self._conn.executemany(sql, params_list)

    async def fetchone(self, sql: str, params: tuple[Any, ...] | None = None) -> dict[str, Any] | None:
        cursor = await self._conn.execute(sql, params or ())
        row = await cursor.fetchone()
        if row is None:
            return None
        columns = [desc[0] for desc in cursor.description]
        return dict(zip(columns, row))

    async def fetchall(self, sql: str, params: tuple[Any, ...] | None = None) -> list[dict[str, Any]]:
        cursor = await self._conn.execute(sql, params or ())
        rows = await cursor.fetchall()
        if not rows:
            return []
        columns = [desc[0] for desc in cursor.description]
        return [dict(zip(columns, row)) for row in rows]

    async def commit(self) -> None:
        await self._conn.commit()

    async def rollback(self) -> None:
        await self._conn.rollback()

    async def table_exists(self, table_name: str) -> bool:
        result = await self.fetchone(
            "SELECT name FROM sqlite_master WHERE type='table' AND name=?",
            (table_name,),
        )
        return result is not None

    async def get_columns(self, table_name: str) -> list[str]:
        rows = await self.fetchall(f"PRAGMA table_info({table_name})")
        return [row["name"] for row in rows]

    async def index_exists(self, index_name: str) -> bool:
        result = await self.fetchone(
            "SELECT name FROM sqlite_master WHERE type='index' AND name=?",
            (index_name,),
        )
        return result is not None

    def get_rowcount(self) -> int:
        if self._last_cursor is None:
            return 0
        return self._last_cursor.rowcount

    def is_integrity_error(self, exc: BaseException) -> bool:
        return isinstance(exc, sqlite3.IntegrityError)

    async def close(self) -> None:
        if self._owns_connection:
            await self._conn.close()

    @property
    def db_type(self) -> str:
        return "sqlite"


class PostgresMigrationAdapter(MigrationDBAdapter):
    """PostgreSQL implementation of the migration database adapter.

    Holds a single pooled connection for its whole lifetime so that the
    tracking writes and the migration statements share one session.
    """

    def __init__(self, pool: Any, owns_pool: bool = False):
        """Initialize with a psycopg pool.

        Args:
            pool: AsyncConnectionPool from psycopg_pool.
            owns_pool: Close the pool in :meth:`close`.
        """
        self._pool = pool
        self._owns_pool = owns_pool
        self._conn = None
        self._rowcount = 0

    async def _ensure_connection(self):
        if self._conn is None:
            self._conn = await self._pool.getconn()

    async def execute(self, sql: str, params: tuple[Any, ...] | None = None) -> Any:
        await self._ensure_connection()
        sql = sql.replace("?", "%s")
        async with self._conn.cursor() as cursor:
            if params:
                await cursor.execute(sql, params)
            else:
                await cursor.execute(sql)
            self._rowcount = cursor.rowcount
            return cursor

    async def executemany(self, sql: str, params_list: list[tuple[Any, ...]]) -> None:
        await self._ensure_connection()
        sql = sql.replace("?", "%s")
        async with self._conn.cursor() as cursor:
            await cursor.executemany(sql, params_list)
            self._rowcount = cursor.rowcount

    async def fetchone(self, sql: str, params: tuple[Any, ...] | None = None) -> dict[str, Any] | None:
        from psycopg.rows import dict_row

        await self._ensure_connection()
        sql = sql.replace("?", "%s")
        async with self._conn.cursor(row_factory=dict_row) as cursor:
            await cursor.execute(sql, params or None)
            return await cursor.fetchone()

    async def fetchall(self, sql: str, params: tuple[Any, ...] | None = None) -> list[dict[str, Any]]:
        from psycopg.rows import dict_row

        await self._ensure_connection()
        sql = sql.replace("?", "%s")
        async with self._conn.cursor(row_factory=dict_row) as cursor:
            await cursor.execute(sql, params or None)
            return await cursor.fetchall()

    async def commit(self) -> None:
        if self._conn:
            await self._conn.commit()

    async def rollback(self) -> None:
        if self._conn:
            await self._conn.rollback()

    async def table_exists(self, table_name: str) -> bool:
        result = await self.fetchone(
            "SELECT EXISTS (SELECT FROM information_schema.tables WHERE table_name = ?)",
            (table_name,),
        )
        return result["exists"] if result else False

    async def column_exists(self, table_name: str, column_name: str) -> bool:
        result = await self.fetchone(
            """
            SELECT EXISTS (
                SELECT FROM information_schema.columns
                WHERE table_name = ? AND column_name = ?
            )
            """,
            (table_name, column_name),
        )
        return result["exists"] if result else False

    async def get_columns(self, table_name: str) -> list[str]:
        rows = await self.fetchall(
            """
            SELECT column_name
            FROM information_schema.columns
            WHERE table_name = ?
            ORDER BY ordinal_position
            """,
            (table_name,),
        )
        return [row["column_name"] for row in rows]

    async def index_exists(self, index_name: str) -> bool:
        result = await self.fetchone(
            "SELECT EXISTS (SELECT FROM pg_indexes WHERE indexname = ?)",
            (index_name,),
        )
        return result["exists"] if result else False

    def get_rowcount(self) -> int:
        return self._rowcount

    def is_integrity_error(self, exc: BaseException) -> bool:
        import psycopg

        return isinstance(exc, psycopg.errors.IntegrityError)

    async def close(self) -> None:
        """Return the connection to the pool, closing the pool if owned."""
        if self._conn:
            await self._pool.putconn(self._conn)
            self._conn = None
        if self._owns_pool:
            await self._pool.close()

    @property
    def db_type(self) -> str:
        return "postgres"


def create_migration_adapter(connection: Any) -> MigrationDBAdapter:
    """Wrap a raw driver connection in the matching adapter.

    Args:
        connection: aiosqlite.Connection or psycopg_pool.AsyncConnectionPool.

    Raises:
        TypeError: If the connection type is not supported.
    """
    if isinstance(connection, MigrationDBAdapter):
        return connection

    if hasattr(connection, "getconn") and hasattr(connection, "putconn"):
        return PostgresMigrationAdapter(connection)

    module_name = type(connection).__module__.lower()
    if "sqlite" in module_name:
        return SQLiteMigrationAdapter(connection)
    if "psycopg" in module_name or "postgres" in module_name:
        return PostgresMigrationAdapter(connection)

    raise TypeError(
        f"Unsupported database connection type: {type(connection)}. "
        "Expected aiosqlite.Connection or psycopg_pool.AsyncConnectionPool."
    )

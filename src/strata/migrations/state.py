"""
Applied-migration state for the migration system.

The :class:`StateStore` owns the tracking table of one database group. Each
row records that a (namespace, group, version) was applied and when. The
store also owns a lock table with one row per (namespace, group) so that two
runners targeting the same pair serialise, while different pairs never
contend.
"""

import asyncio
import socket
import time
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import AsyncIterator

from strata.config.logging_config import get_logger
from strata.migrations.db_adapter import MigrationDBAdapter
from strata.migrations.exceptions import (
    DuplicateVersionError,
    LockError,
    RecordNotFoundError,
)
from strata.migrations.version import Version

log = get_logger(__name__)

DEFAULT_TRACKING_TABLE = "migrations"
STALE_LOCK_SECONDS = 300


@dataclass
class AppliedMigration:
    """A migration recorded as applied.

    Attributes:
        namespace: Namespace of the migration
        group: Database group it was applied to
        version: Migration version
        unit_name: Class name of the executed unit
        applied_at: When the migration was applied (UTC)
    """

    namespace: str
    group: str
    version: Version
    unit_name: str
    applied_at: datetime


class StateStore:
    """Persistent record of applied migrations for one database group.

    The tracking table is created on first use. Uniqueness of
    (namespace, db_group, version) is enforced by the database, so a second
    writer racing on the same version gets a DuplicateVersionError.
    """

    def __init__(self, adapter: MigrationDBAdapter, table: str = DEFAULT_TRACKING_TABLE):
        self._adapter = adapter
        self._table = table
        self._lock_table = f"{table}_lock"
        self._bootstrapped = False

    @property
    def table(self) -> str:
        return self._table

    @property
    def lock_table(self) -> str:
        return self._lock_table

    # -------------------------------------------------------------------------
    # Schema bootstrap
    # -------------------------------------------------------------------------

    async def ensure_schema(self) -> None:
        """Create the tracking and lock tables if they don't exist."""
        if self._bootstrapped:
            return

        if self._adapter.db_type == "sqlite":
            id_column = "id INTEGER PRIMARY KEY AUTOINCREMENT"
        else:
            id_column = "id BIGSERIAL PRIMARY KEY"

        await self._adapter.execute(f"""
            CREATE TABLE IF NOT EXISTS {self._table} (
                {id_column},
                version TEXT NOT NULL,
                unit_name TEXT NOT NULL,
                namespace TEXT NOT NULL,
                db_group TEXT NOT NULL,
                applied_at TEXT NOT NULL,
                UNIQUE (namespace, db_group, version)
            )
        """)
        await self._adapter.execute(f"""
            CREATE TABLE IF NOT EXISTS {self._lock_table} (
                namespace TEXT NOT NULL,
                db_group TEXT NOT NULL,
                locked_at TEXT,
                locked_by TEXT,
                PRIMARY KEY (namespace, db_group)
            )
        """)
        await self._adapter.commit()
        self._bootstrapped = True

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    async def applied_records(self, namespace: str, group: str) -> list[AppliedMigration]:
        """Return the applied migrations of a (namespace, group), ascending by version."""
        await self.ensure_schema()
        rows = await self._adapter.fetchall(
            f"""
            SELECT version, unit_name, applied_at
            FROM {self._table}
            WHERE namespace = ? AND db_group = ?
            """,
            (namespace, group),
        )
        records = [
            AppliedMigration(
                namespace=namespace,
                group=group,
                version=Version.parse(row["version"]),
                unit_name=row["unit_name"],
                applied_at=datetime.fromisoformat(row["applied_at"]),
            )
            for row in rows
        ]
        records.sort(key=lambda r: r.version)
        return records

    async def applied_versions(self, namespace: str, group: str) -> set[Version]:
        """Return every applied version of a (namespace, group)."""
        return {r.version for r in await self.applied_records(namespace, group)}

    async def current_version(self, namespace: str, group: str) -> Version | None:
        """Return the highest applied version, or None when nothing is applied."""
        applied = await self.applied_versions(namespace, group)
        return max(applied) if applied else None

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    async def record_applied(
        self,
        namespace: str,
        group: str,
        version: Version,
        unit_name: str = "",
    ) -> AppliedMigration:
        """Record ``version`` as applied.

        Raises:
            DuplicateVersionError: If the version is already recorded.
        """
        await self.ensure_schema()

        existing = await self._adapter.fetchone(
            f"SELECT id FROM {self._table} WHERE namespace = ? AND db_group = ? AND version = ?",
            (namespace, group, str(version)),
        )
        if existing is not None:
            raise DuplicateVersionError(
                f"Migration {version} is already recorded for namespace {namespace} on group {group}",
                migration_version=str(version),
                namespace=namespace,
                group=group,
            )

        applied_at = datetime.now(UTC)
        try:
            await self._adapter.execute(
                f"""
                INSERT INTO {self._table} (version, unit_name, namespace, db_group, applied_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (str(version), unit_name, namespace, group, applied_at.isoformat()),
            )
            await self._adapter.commit()
        except Exception as e:
            if not self._adapter.is_integrity_error(e):
                raise
            await self._adapter.rollback()
            raise DuplicateVersionError(
                f"Migration {version} was recorded concurrently for namespace {namespace} on group {group}",
                migration_version=str(version),
                namespace=namespace,
                group=group,
            ) from e

        return AppliedMigration(
            namespace=namespace,
            group=group,
            version=version,
            unit_name=unit_name,
            applied_at=applied_at,
        )

    async def record_reverted(self, namespace: str, group: str, version: Version) -> None:
        """Remove the record of ``version``.

        Raises:
            RecordNotFoundError: If no record exists.
        """
        await self.ensure_schema()
        await self._adapter.execute(
            f"DELETE FROM {self._table} WHERE namespace = ? AND db_group = ? AND version = ?",
            (namespace, group, str(version)),
        )
        deleted = self._adapter.get_rowcount()
        await self._adapter.commit()

        if deleted == 0:
            raise RecordNotFoundError(
                f"Migration {version} is not recorded for namespace {namespace} on group {group}",
                migration_version=str(version),
                namespace=namespace,
                group=group,
            )

    # -------------------------------------------------------------------------
    # Locking mechanism
    # -------------------------------------------------------------------------

    async def _acquire_lock(self, namespace: str, group: str, timeout: float) -> str:
        """Acquire the (namespace, group) lock, returning the lock owner id.

        Raises:
            LockError: If the lock cannot be acquired within ``timeout`` seconds
        """
        await self.ensure_schema()

        if self._adapter.db_type == "sqlite":
            seed = f"INSERT OR IGNORE INTO {self._lock_table} (namespace, db_group) VALUES (?, ?)"
        else:
            seed = (
                f"INSERT INTO {self._lock_table} (namespace, db_group) VALUES (?, ?) "
                "ON CONFLICT (namespace, db_group) DO NOTHING"
            )
        await self._adapter.execute(seed, (namespace, group))
        await self._adapter.commit()

        lock_id = f"{socket.gethostname()}:{uuid.uuid4().hex[:8]}"
        start_time = time.time()

        while True:
            await self._adapter.execute(
                f"""
                UPDATE {self._lock_table}
                SET locked_at = ?, locked_by = ?
                WHERE namespace = ? AND db_group = ? AND locked_at IS NULL
                """,
                (datetime.now(UTC).isoformat(), lock_id, namespace, group),
            )
            acquired = self._adapter.get_rowcount() > 0
            await self._adapter.commit()

            if acquired:
                log.debug(f"Migration lock {namespace}/{group} acquired by {lock_id}")
                return lock_id

            row = await self._adapter.fetchone(
                f"SELECT locked_at, locked_by FROM {self._lock_table} WHERE namespace = ? AND db_group = ?",
                (namespace, group),
            )
            if row and row["locked_at"]:
                locked_at = datetime.fromisoformat(row["locked_at"])
                if (datetime.now(UTC) - locked_at).total_seconds() > STALE_LOCK_SECONDS:
                    log.warning(f"Taking over stale migration lock {namespace}/{group} from {row['locked_by']}")
                    await self._adapter.execute(
                        f"""
                        UPDATE {self._lock_table}
                        SET locked_at = ?, locked_by = ?
                        WHERE namespace = ? AND db_group = ? AND locked_at = ?
                        """,
                        (datetime.now(UTC).isoformat(), lock_id, namespace, group, row["locked_at"]),
                    )
                    taken = self._adapter.get_rowcount() > 0
                    await self._adapter.commit()
                    if taken:
                        return lock_id

            if time.time() - start_time >= timeout:
                raise LockError(
                    f"Could not acquire migration lock for {namespace}/{group} within {timeout}s. "
                    "Another migration may be in progress.",
                    namespace=namespace,
                    group=group,
                )
            await asyncio.sleep(0.5)

    async def _release_lock(self, namespace: str, group: str, lock_id: str) -> None:
        await self._adapter.execute(
            f"""
            UPDATE {self._lock_table}
            SET locked_at = NULL, locked_by = NULL
            WHERE namespace = ? AND db_group = ? AND locked_by = ?
            """,
            (namespace, group, lock_id),
        )
        await self._adapter.commit()
        log.debug(f"Migration lock {namespace}/{group} released")

    @asynccontextmanager
    async def lock(self, namespace: str, group: str, timeout: float = 30.0) -> AsyncIterator[None]:
        """Hold the (namespace, group) migration lock for the duration of the block."""
        lock_id = await self._acquire_lock(namespace, group, timeout)
        try:
            yield
        finally:
            await self._release_lock(namespace, group, lock_id)

"""
Base class for migration units.

Each migration script defines one subclass of :class:`Migration` whose class
name is the CapWords form of the script's descriptive name, e.g.
``2012-10-31-100537_add_blog.py`` defines ``AddBlog``::

    from strata.migrations import Migration


    class AddBlog(Migration):
        async def up(self) -> None:
            await self.db.execute("CREATE TABLE blog (id INTEGER PRIMARY KEY, title TEXT)")

        async def down(self) -> None:
            await self.db.execute("DROP TABLE blog")
"""

from abc import ABC, abstractmethod
from typing import ClassVar

from strata.migrations.db_adapter import MigrationDBAdapter


class Migration(ABC):
    """A single executable schema change.

    Attributes:
        db_group: Optional group this unit is pinned to. When set, runs
            against any other group skip the unit.
        db: Adapter for the database group the unit runs against.
        namespace: Namespace the unit was discovered in.
        group: Name of the group the unit runs against.
    """

    db_group: ClassVar[str | None] = None

    def __init__(self, db: MigrationDBAdapter, namespace: str, group: str):
        self.db = db
        self.namespace = namespace
        self.group = group

    @abstractmethod
    async def up(self) -> None:
        """Apply the schema change."""

    @abstractmethod
    async def down(self) -> None:
        """Revert the schema change."""

    @classmethod
    def runs_on(cls, group: str) -> bool:
        """Return True if this unit should execute against ``group``."""
        return cls.db_group is None or cls.db_group == group

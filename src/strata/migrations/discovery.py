"""
Migration discovery for strata.

Turns the script files of a namespace into ordered
:class:`MigrationDescriptor` values and resolves descriptors to their
executable :class:`~strata.migrations.base.Migration` subclasses.

File names look like ``<version>_<descriptive_name>.py`` where the version is
a run of digits optionally split by dashes or underscores::

    2012-10-31-100537_add_blog.py     -> version 20121031100537, unit AddBlog
    20250428_212009_create_users.py   -> version 20250428212009, unit CreateUsers

Files that do not match are ignored.
"""

import importlib.util
import re
import sys
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path

from strata.config.logging_config import get_logger
from strata.config.migrations_config import MigrationsConfig
from strata.migrations.base import Migration
from strata.migrations.exceptions import DiscoveryError
from strata.migrations.version import Version

log = get_logger(__name__)

MIGRATION_FILE_PATTERN = re.compile(r"^(\d+(?:[-_]\d+)*)_([A-Za-z][A-Za-z0-9_]*)\.py$")


@dataclass(frozen=True)
class MigrationDescriptor:
    """Metadata for one discovered migration script.

    Attributes:
        version: Version parsed from the file name prefix
        namespace: Namespace the script belongs to
        name: Descriptive part of the file name (e.g. add_blog)
        unit_name: Class name the script must define (e.g. AddBlog)
        source: Path to the script
    """

    version: Version
    namespace: str
    name: str
    unit_name: str
    source: Path

    @property
    def label(self) -> str:
        return f"{self.version} ({self.name})"


def unit_name_for(name: str) -> str:
    """Convert a descriptive name to the CapWords class name it must define.

    >>> unit_name_for("add_blog")
    'AddBlog'
    >>> unit_name_for("create-users_table")
    'CreateUsersTable'
    """
    parts = [p for p in re.split(r"[-_\s]+", name) if p]
    return "".join(p[:1].upper() + p[1:] for p in parts)


def parse_migration_filename(filename: str) -> tuple[Version, str] | None:
    """Split a script file name into (version, descriptive name), or None."""
    match = MIGRATION_FILE_PATTERN.match(filename)
    if match is None:
        return None
    return Version.parse(match.group(1)), match.group(2)


class ScriptLocator(ABC):
    """Capability returning candidate script locations for a namespace."""

    @abstractmethod
    def locate(self, namespace: str) -> list[Path]:
        """Return candidate script paths for ``namespace``."""


class DirectoryLocator(ScriptLocator):
    """Lists ``*.py`` files in each namespace's configured migration directory."""

    def __init__(self, config: MigrationsConfig):
        self._config = config

    def locate(self, namespace: str) -> list[Path]:
        directory = self._config.migrations_dir(namespace)
        if not directory.is_dir():
            log.debug(f"No migration directory for namespace {namespace}: {directory}")
            return []
        return sorted(p for p in directory.glob("*.py") if not p.name.startswith("__"))


class DiscoveryService:
    """Builds ordered migration descriptors for a namespace.

    Results are recomputed on every call; scripts may change between runs.
    """

    def __init__(self, locator: ScriptLocator):
        self._locator = locator

    def find_migrations(self, namespace: str) -> list[MigrationDescriptor]:
        """Return the namespace's migrations in ascending version order.

        Raises:
            DiscoveryError: If two scripts share a version, or a script
                uses version 0, which is reserved for the empty state.
        """
        by_version: dict[Version, MigrationDescriptor] = {}

        for path in self._locator.locate(namespace):
            parsed = parse_migration_filename(path.name)
            if parsed is None:
                log.debug(f"Ignoring non-migration file: {path}")
                continue

            version, name = parsed
            if version.is_zero:
                raise DiscoveryError(
                    f"Migration version 0 is reserved for the empty state: {path.name}",
                    migration_version=str(version),
                    namespace=namespace,
                )
            descriptor = MigrationDescriptor(
                version=version,
                namespace=namespace,
                name=name,
                unit_name=unit_name_for(name),
                source=path,
            )

            existing = by_version.get(version)
            if existing is not None:
                raise DiscoveryError(
                    f"Duplicate migration version {version} in namespace {namespace}: "
                    f"{existing.source.name} and {path.name}",
                    migration_version=str(version),
                    namespace=namespace,
                )
            by_version[version] = descriptor

        migrations = sorted(by_version.values(), key=lambda d: d.version)
        log.debug(f"Discovered {len(migrations)} migrations in namespace {namespace}")
        return migrations


class UnitRegistry:
    """Resolves descriptors to their Migration subclasses.

    Explicit registrations win. Otherwise the descriptor's source file is
    imported and must define a Migration subclass named ``unit_name``.
    """

    def __init__(self):
        self._units: dict[tuple[str, str], type[Migration]] = {}

    def register(
        self,
        namespace: str,
        unit: type[Migration],
        unit_name: str | None = None,
    ) -> type[Migration]:
        """Register ``unit`` for ``namespace`` under ``unit_name`` (default: class name)."""
        if not (isinstance(unit, type) and issubclass(unit, Migration)):
            raise TypeError(f"{unit!r} is not a Migration subclass")
        self._units[(namespace, unit_name or unit.__name__)] = unit
        return unit

    def resolve(self, descriptor: MigrationDescriptor) -> type[Migration]:
        """Return the Migration subclass for ``descriptor``.

        Raises:
            DiscoveryError: If the unit cannot be loaded or is not a Migration.
        """
        registered = self._units.get((descriptor.namespace, descriptor.unit_name))
        if registered is not None:
            return registered
        return self._load_from_source(descriptor)

    def _load_from_source(self, descriptor: MigrationDescriptor) -> type[Migration]:
        file_path = descriptor.source
        module_name = f"strata_migration_{descriptor.namespace.lower()}_{descriptor.version}"

        try:
            spec = importlib.util.spec_from_file_location(module_name, file_path)
            if spec is None or spec.loader is None:
                raise DiscoveryError(
                    f"Cannot load migration: {file_path}",
                    migration_version=str(descriptor.version),
                    namespace=descriptor.namespace,
                )
            module = importlib.util.module_from_spec(spec)
            sys.modules[module_name] = module
            try:
                spec.loader.exec_module(module)
            except Exception:
                sys.modules.pop(module_name, None)
                raise
        except DiscoveryError:
            raise
        except Exception as e:
            raise DiscoveryError(
                f"Failed to load migration {file_path}: {e}",
                migration_version=str(descriptor.version),
                namespace=descriptor.namespace,
            ) from e

        unit = getattr(module, descriptor.unit_name, None)
        if unit is None:
            raise DiscoveryError(
                f"Migration {file_path} does not define class {descriptor.unit_name}",
                migration_version=str(descriptor.version),
                namespace=descriptor.namespace,
            )
        if not (isinstance(unit, type) and issubclass(unit, Migration)):
            raise DiscoveryError(
                f"{descriptor.unit_name} in {file_path} is not a Migration subclass",
                migration_version=str(descriptor.version),
                namespace=descriptor.namespace,
            )
        return unit

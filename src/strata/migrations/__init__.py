"""
Database schema migrations with namespace and group isolation.

Migration scripts live in each namespace's migration directory, are ordered by
their timestamp version and are applied or reverted per database group.
"""

from strata.migrations.base import Migration
from strata.migrations.connections import (
    ConfiguredConnectionProvider,
    ConnectionProvider,
    StaticConnectionProvider,
)
from strata.migrations.discovery import (
    DirectoryLocator,
    DiscoveryService,
    MigrationDescriptor,
    ScriptLocator,
    UnitRegistry,
)
from strata.migrations.exceptions import (
    AggregateMigrationError,
    ConfigurationError,
    DiscoveryError,
    DuplicateVersionError,
    ExecutionError,
    LockError,
    MigrationError,
    RecordNotFoundError,
    UnknownVersionError,
)
from strata.migrations.runner import Direction, MigrationRunner, NamespaceOutcome, RunResult, RunState
from strata.migrations.scope import NamespaceGroupSelector, RunScope
from strata.migrations.state import AppliedMigration, StateStore
from strata.migrations.version import LATEST, ZERO, Version

__all__ = [
    "LATEST",
    "ZERO",
    "AggregateMigrationError",
    "AppliedMigration",
    "ConfigurationError",
    "ConfiguredConnectionProvider",
    "ConnectionProvider",
    "Direction",
    "DirectoryLocator",
    "DiscoveryError",
    "DiscoveryService",
    "DuplicateVersionError",
    "ExecutionError",
    "LockError",
    "Migration",
    "MigrationDescriptor",
    "MigrationError",
    "MigrationRunner",
    "NamespaceGroupSelector",
    "NamespaceOutcome",
    "RecordNotFoundError",
    "RunResult",
    "RunScope",
    "RunState",
    "ScriptLocator",
    "StateStore",
    "StaticConnectionProvider",
    "UnitRegistry",
    "UnknownVersionError",
    "Version",
]

"""
Exception classes for the migration system.

Provides specific exception types for different migration failure scenarios.
Every error carries the version, namespace and group it concerns when known,
so callers can report failures without parsing messages.
"""

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from strata.migrations.discovery import MigrationDescriptor


class MigrationError(Exception):
    """Base exception for migration-related errors."""

    def __init__(
        self,
        message: str,
        migration_version: str | None = None,
        namespace: str | None = None,
        group: str | None = None,
    ):
        self.migration_version = migration_version
        self.namespace = namespace
        self.group = group
        super().__init__(message)


class ConfigurationError(MigrationError):
    """Raised when migrations are disabled or an unknown namespace/group is requested."""

    pass


class DiscoveryError(MigrationError):
    """Raised when migration scripts cannot be discovered or resolved."""

    pass


class UnknownVersionError(MigrationError):
    """Raised when a requested target version is not among the discovered migrations."""

    pass


class ExecutionError(MigrationError):
    """Raised when a migration's up or down operation fails.

    The run stops at the failing step. ``completed`` lists the versions that
    were executed and recorded before the failure; they are not reverted.
    """

    def __init__(
        self,
        message: str,
        descriptor: "MigrationDescriptor",
        direction: str,
        group: str,
        completed: list[str] | None = None,
    ):
        self.descriptor = descriptor
        self.direction = direction
        self.completed = completed or []
        super().__init__(
            message,
            migration_version=str(descriptor.version),
            namespace=descriptor.namespace,
            group=group,
        )


class StateStoreError(MigrationError):
    """Base class for tracking table consistency violations."""

    pass


class DuplicateVersionError(StateStoreError):
    """Raised when a version is recorded twice for the same namespace and group."""

    pass


class RecordNotFoundError(StateStoreError):
    """Raised when reverting a version that has no tracking record."""

    pass


class LockError(MigrationError):
    """Raised when the migration lock cannot be acquired or released."""

    pass


class AggregateMigrationError(MigrationError):
    """Raised when a fan-out run fails for at least one namespace or group.

    ``outcomes`` holds every attempted (namespace, group) outcome, successful
    ones included.
    """

    def __init__(self, message: str, outcomes: list[Any]):
        self.outcomes = outcomes
        super().__init__(message)

    @property
    def failures(self) -> list[Any]:
        return [o for o in self.outcomes if o.error is not None]

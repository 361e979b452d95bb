"""
Run scope and namespace/group selection.

A :class:`RunScope` says which namespaces and groups an invocation targets and
where it should end up. It is an immutable value; the builder methods return
modified copies. :class:`NamespaceGroupSelector` turns a scope into concrete
(namespace, group) pairs using the configuration.
"""

from dataclasses import dataclass, replace

from strata.config.migrations_config import MigrationsConfig
from strata.migrations.exceptions import ConfigurationError
from strata.migrations.version import LATEST, Target, parse_target


@dataclass(frozen=True)
class RunScope:
    """What a migration invocation targets.

    Attributes:
        namespaces: Namespaces to migrate, or None for every configured namespace
        groups: Groups to migrate, or None for every configured group
        target: Target version or "latest"
    """

    namespaces: tuple[str, ...] | None = None
    groups: tuple[str, ...] | None = None
    target: Target = LATEST

    @classmethod
    def default(cls, config: MigrationsConfig) -> "RunScope":
        """Scope of the configured default namespace and group."""
        return cls(namespaces=(config.default_namespace,), groups=(config.default_group,))

    def for_namespaces(self, *namespaces: str) -> "RunScope":
        return replace(self, namespaces=tuple(namespaces))

    def all_namespaces(self) -> "RunScope":
        return replace(self, namespaces=None)

    def for_groups(self, *groups: str) -> "RunScope":
        return replace(self, groups=tuple(groups))

    def all_groups(self) -> "RunScope":
        return replace(self, groups=None)

    def to(self, target: "str | int | None") -> "RunScope":
        return replace(self, target=parse_target(target))


class NamespaceGroupSelector:
    """Resolves scopes against the configured namespaces and groups."""

    def __init__(self, config: MigrationsConfig):
        self._config = config

    def namespaces(self) -> list[str]:
        return list(self._config.namespaces)

    def groups(self) -> list[str]:
        return list(self._config.groups)

    def check(self, namespace: str, group: str) -> None:
        """Raise ConfigurationError if either name is not configured."""
        if namespace not in self._config.namespaces:
            raise ConfigurationError(
                f"Unknown namespace '{namespace}'. Configured: {', '.join(self.namespaces())}",
                namespace=namespace,
                group=group,
            )
        if group not in self._config.groups:
            raise ConfigurationError(
                f"Unknown database group '{group}'. Configured: {', '.join(self.groups())}",
                namespace=namespace,
                group=group,
            )

    def resolve(self, scope: RunScope) -> list[tuple[str, str]]:
        """Return the (namespace, group) pairs of ``scope`` in configuration order."""
        namespaces = self.namespaces() if scope.namespaces is None else list(dict.fromkeys(scope.namespaces))
        groups = self.groups() if scope.groups is None else list(dict.fromkeys(scope.groups))

        pairs = []
        for group in groups:
            for namespace in namespaces:
                self.check(namespace, group)
                pairs.append((namespace, group))
        return pairs

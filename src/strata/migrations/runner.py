"""
Migration runner for the strata migration system.

Provides the core MigrationRunner class that handles:
- Planning forward and backward runs against the applied state
- Sequential execution of migration units with per-step recording
- Per (namespace, group) locking through the state store
- Fan-out over every configured namespace and group
- Status reporting

A run moves through the states IDLE -> RESOLVING -> EXECUTING -> RECORDING
(repeated per step) -> COMPLETED, or stops in FAILED at the first step that
raises. Steps recorded before a failure stay recorded; nothing is reverted
automatically.
"""

import asyncio
import copy
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable

from strata.config.logging_config import get_logger
from strata.config.migrations_config import MigrationsConfig
from strata.migrations.base import Migration
from strata.migrations.connections import ConnectionProvider
from strata.migrations.discovery import (
    DirectoryLocator,
    DiscoveryService,
    MigrationDescriptor,
    UnitRegistry,
)
from strata.migrations.exceptions import (
    AggregateMigrationError,
    ConfigurationError,
    DiscoveryError,
    ExecutionError,
    MigrationError,
    UnknownVersionError,
)
from strata.migrations.scope import NamespaceGroupSelector, RunScope
from strata.migrations.state import StateStore
from strata.migrations.version import LATEST, ZERO, Target, Version, format_version, parse_target

log = get_logger(__name__)


class Direction(str, Enum):
    """Direction of a migration run."""

    FORWARD = "up"
    BACKWARD = "down"
    NONE = "none"


class RunState(str, Enum):
    """States of a single migration run."""

    IDLE = "idle"
    RESOLVING = "resolving"
    EXECUTING = "executing"
    RECORDING = "recording"
    COMPLETED = "completed"
    FAILED = "failed"


ProgressCallback = Callable[[RunState, str], None]


@dataclass
class MigrationPlan:
    """Ordered steps needed to move a (namespace, group) to a target.

    Attributes:
        direction: FORWARD, BACKWARD or NONE when already at the target
        target: Resolved target version (ZERO for a full rollback)
        current: Highest applied version before the run
        steps: Descriptors to execute, in execution order
    """

    direction: Direction
    target: Version
    current: Version | None
    steps: list[MigrationDescriptor]


@dataclass
class RunResult:
    """Outcome of a successful run."""

    namespace: str
    group: str
    direction: Direction
    target: Version
    previous_version: Version | None
    current_version: Version | None
    executed: list[Version] = field(default_factory=list)
    skipped: list[Version] = field(default_factory=list)
    state: RunState = RunState.COMPLETED

    @property
    def is_noop(self) -> bool:
        return not self.executed


@dataclass
class NamespaceOutcome:
    """Per (namespace, group) outcome of a fan-out run."""

    namespace: str
    group: str
    result: RunResult | None = None
    error: MigrationError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def plan_migration(
    descriptors: list[MigrationDescriptor],
    applied: set[Version],
    target: Target,
    namespace: str,
    group: str,
) -> MigrationPlan:
    """Compute the steps that move ``applied`` to ``target``.

    ``latest`` never moves backward. A concrete target at or above the
    current version applies every unapplied migration up to the target in
    ascending order; below the current version, every applied migration above
    the target is reverted in descending order.

    Raises:
        UnknownVersionError: If a concrete, non-zero target was not discovered.
        DiscoveryError: If a migration that must be reverted has no script.
    """
    current = max(applied) if applied else None
    discovered = {d.version: d for d in descriptors}

    if target == LATEST:
        resolved = descriptors[-1].version if descriptors else ZERO
    else:
        resolved = target
        if not resolved.is_zero and resolved not in discovered:
            raise UnknownVersionError(
                f"Migration version {resolved} not found in namespace {namespace}",
                migration_version=str(resolved),
                namespace=namespace,
                group=group,
            )

    if target == LATEST or resolved >= (current or ZERO):
        steps = [d for d in descriptors if d.version <= resolved and d.version not in applied]
        direction = Direction.FORWARD if steps else Direction.NONE
        return MigrationPlan(direction=direction, target=resolved, current=current, steps=steps)

    to_revert = sorted((v for v in applied if v > resolved), reverse=True)
    missing = [v for v in to_revert if v not in discovered]
    if missing:
        raise DiscoveryError(
            f"Cannot revert namespace {namespace} on group {group}: no migration script for applied "
            f"version(s) {', '.join(str(v) for v in missing)}",
            migration_version=str(missing[0]),
            namespace=namespace,
            group=group,
        )
    return MigrationPlan(
        direction=Direction.BACKWARD,
        target=resolved,
        current=current,
        steps=[discovered[v] for v in to_revert],
    )


class MigrationRunner:
    """Core migration runner.

    The runner is a plain object built from its collaborators; nothing about
    it is process-global. Default namespace and group come from its
    :class:`RunScope`; ``set_namespace`` and ``set_group`` return new runners
    with a different default scope and leave the original untouched.

    Example:
        config = load_migrations_config()
        async with ConfiguredConnectionProvider(config) as connections:
            runner = MigrationRunner(config, connections)
            await runner.latest()
            await runner.set_namespace("Blog").version(target="20121031100537")
            await runner.latest_all()
    """

    def __init__(
        self,
        config: MigrationsConfig,
        connections: ConnectionProvider,
        discovery: DiscoveryService | None = None,
        registry: UnitRegistry | None = None,
        scope: RunScope | None = None,
        lock_timeout: float = 30.0,
        on_progress: ProgressCallback | None = None,
    ):
        self._config = config
        self._connections = connections
        self._discovery = discovery or DiscoveryService(DirectoryLocator(config))
        self._registry = registry or UnitRegistry()
        self._selector = NamespaceGroupSelector(config)
        self._scope = scope or RunScope.default(config)
        self._lock_timeout = lock_timeout
        self._on_progress = on_progress
        self._stores: dict[str, StateStore] = {}

    @property
    def config(self) -> MigrationsConfig:
        return self._config

    @property
    def scope(self) -> RunScope:
        return self._scope

    @property
    def selector(self) -> NamespaceGroupSelector:
        return self._selector

    @property
    def registry(self) -> UnitRegistry:
        return self._registry

    # -------------------------------------------------------------------------
    # Scope
    # -------------------------------------------------------------------------

    def with_scope(self, scope: RunScope) -> "MigrationRunner":
        """Return a runner sharing this runner's collaborators with another default scope."""
        runner = copy.copy(self)
        runner._scope = scope
        return runner

    def set_namespace(self, namespace: str) -> "MigrationRunner":
        return self.with_scope(self._scope.for_namespaces(namespace))

    def set_group(self, group: str) -> "MigrationRunner":
        return self.with_scope(self._scope.for_groups(group))

    def _default_pair(self, namespace: str | None, group: str | None) -> tuple[str, str]:
        if namespace is None:
            namespace = self._scope.namespaces[0] if self._scope.namespaces else self._config.default_namespace
        if group is None:
            group = self._scope.groups[0] if self._scope.groups else self._config.default_group
        return namespace, group

    def _ensure_enabled(self) -> None:
        if not self._config.enabled:
            raise ConfigurationError("Migrations are disabled in the configuration")

    def _transition(self, state: RunState, message: str) -> None:
        log.debug(f"[{state.value}] {message}")
        if self._on_progress:
            self._on_progress(state, message)

    async def state_store(self, group: str) -> StateStore:
        """Return the state store of ``group``."""
        store = self._stores.get(group)
        if store is None:
            adapter = await self._connections.adapter_for(group)
            store = StateStore(adapter, table=self._config.table)
            self._stores[group] = store
        return store

    # -------------------------------------------------------------------------
    # Migration execution
    # -------------------------------------------------------------------------

    async def migrate_to(
        self,
        namespace: str | None = None,
        group: str | None = None,
        target: "str | int | Version | None" = LATEST,
    ) -> RunResult:
        """Move a (namespace, group) to ``target``.

        Args:
            namespace: Namespace to migrate (default from the runner's scope)
            group: Database group to migrate (default from the runner's scope)
            target: Version, "latest", or 0 for a full rollback

        Returns:
            RunResult describing the executed steps and the final version

        Raises:
            ConfigurationError: If migrations are disabled or names are unknown
            DiscoveryError: If scripts are ambiguous or cannot be loaded
            UnknownVersionError: If the target was not discovered
            ExecutionError: If a step fails; earlier steps stay recorded
            LockError: If another run holds the (namespace, group) lock
        """
        namespace, group = self._default_pair(namespace, group)
        target = parse_target(target)
        self._transition(RunState.IDLE, f"{namespace}/{group} -> {target}")

        self._ensure_enabled()
        self._selector.check(namespace, group)

        descriptors = self._discovery.find_migrations(namespace)
        store = await self.state_store(group)

        async with store.lock(namespace, group, timeout=self._lock_timeout):
            applied = await store.applied_versions(namespace, group)
            plan = plan_migration(descriptors, applied, target, namespace, group)
            log.debug(
                f"Plan for {namespace}/{group}: {plan.direction.value} "
                f"{format_version(plan.current)} -> {plan.target} ({len(plan.steps)} step(s))"
            )

            if not plan.steps:
                log.info(f"{namespace}/{group} is at {format_version(plan.current)}, nothing to migrate")
                self._transition(RunState.COMPLETED, f"{namespace}/{group} unchanged")
                return RunResult(
                    namespace=namespace,
                    group=group,
                    direction=Direction.NONE,
                    target=plan.target,
                    previous_version=plan.current,
                    current_version=plan.current,
                )

            # Resolve every unit up front so a bad script never leaves a partial run
            self._transition(RunState.RESOLVING, f"{len(plan.steps)} unit(s) for {namespace}/{group}")
            units = [(descriptor, self._registry.resolve(descriptor)) for descriptor in plan.steps]

            executed: list[Version] = []
            skipped: list[Version] = []
            for descriptor, unit_cls in units:
                if not unit_cls.runs_on(group):
                    log.warning(
                        f"Skipping migration {descriptor.label}: pinned to group {unit_cls.db_group}, running on {group}"
                    )
                    skipped.append(descriptor.version)
                    continue

                if plan.direction == Direction.FORWARD and plan.current is not None and descriptor.version < plan.current:
                    log.warning(
                        f"Applying migration {descriptor.label} out of order: "
                        f"{namespace}/{group} is already at {plan.current}"
                    )

                await self._execute_step(store, descriptor, unit_cls, plan.direction, group, executed)
                executed.append(descriptor.version)

            current = await store.current_version(namespace, group)

        self._transition(RunState.COMPLETED, f"{namespace}/{group} at {format_version(current)}")
        return RunResult(
            namespace=namespace,
            group=group,
            direction=plan.direction,
            target=plan.target,
            previous_version=plan.current,
            current_version=current,
            executed=executed,
            skipped=skipped,
        )

    async def _execute_step(
        self,
        store: StateStore,
        descriptor: MigrationDescriptor,
        unit_cls: type[Migration],
        direction: Direction,
        group: str,
        completed: list[Version],
    ) -> None:
        """Run one unit and record the result.

        Raises:
            ExecutionError: If the unit's up/down raises
        """
        namespace = descriptor.namespace
        adapter = await self._connections.adapter_for(group)
        verb = "Applying" if direction == Direction.FORWARD else "Reverting"
        self._transition(RunState.EXECUTING, f"{verb} {descriptor.label} on {namespace}/{group}")
        start_time = time.time()

        try:
            unit = unit_cls(adapter, namespace, group)
            if direction == Direction.FORWARD:
                await unit.up()
            else:
                await unit.down()
            await adapter.commit()
        except Exception as e:
            await adapter.rollback()
            self._transition(RunState.FAILED, f"{descriptor.label} on {namespace}/{group}: {e}")
            raise ExecutionError(
                f"Migration {descriptor.version} ({descriptor.name}) failed while running "
                f"{direction.value} on {namespace}/{group}: {e}",
                descriptor=descriptor,
                direction=direction.value,
                group=group,
                completed=[str(v) for v in completed],
            ) from e

        self._transition(RunState.RECORDING, f"{descriptor.label} on {namespace}/{group}")
        if direction == Direction.FORWARD:
            await store.record_applied(namespace, group, descriptor.version, descriptor.unit_name)
        else:
            await store.record_reverted(namespace, group, descriptor.version)

        execution_time_ms = int((time.time() - start_time) * 1000)
        done = "applied" if direction == Direction.FORWARD else "reverted"
        log.info(f"Migration {descriptor.label} {done} on {namespace}/{group} in {execution_time_ms}ms")

    async def latest(self, namespace: str | None = None, group: str | None = None) -> RunResult:
        """Apply every pending migration of a (namespace, group)."""
        return await self.migrate_to(namespace, group, LATEST)

    async def version(
        self,
        namespace: str | None = None,
        group: str | None = None,
        target: "str | int | Version | None" = None,
    ) -> RunResult:
        """Move a (namespace, group) forward or backward to ``target`` (0 = full rollback)."""
        if target is None:
            raise ValueError("version() needs an explicit target; use latest() or rollback()")
        return await self.migrate_to(namespace, group, target)

    async def rollback(self, namespace: str | None = None, group: str | None = None) -> RunResult:
        """Revert every applied migration of a (namespace, group)."""
        return await self.migrate_to(namespace, group, ZERO)

    async def refresh(
        self, namespace: str | None = None, group: str | None = None
    ) -> tuple[RunResult, RunResult]:
        """Roll back everything, then apply everything again."""
        down = await self.rollback(namespace, group)
        up = await self.latest(namespace, group)
        return down, up

    # -------------------------------------------------------------------------
    # Fan-out
    # -------------------------------------------------------------------------

    async def _run_namespaces(self, namespaces: list[str], group: str, target: Target) -> list[NamespaceOutcome]:
        outcomes = []
        for namespace in namespaces:
            try:
                result = await self.migrate_to(namespace, group, target)
                outcomes.append(NamespaceOutcome(namespace=namespace, group=group, result=result))
            except MigrationError as e:
                log.error(f"Migration of {namespace}/{group} failed: {e}")
                outcomes.append(NamespaceOutcome(namespace=namespace, group=group, error=e))
            except Exception as e:
                log.exception(f"Migration of {namespace}/{group} failed unexpectedly")
                error = MigrationError(f"{type(e).__name__}: {e}", namespace=namespace, group=group)
                error.__cause__ = e
                outcomes.append(NamespaceOutcome(namespace=namespace, group=group, error=error))
        return outcomes

    @staticmethod
    def _raise_on_failures(outcomes: list[NamespaceOutcome]) -> None:
        failed = [o for o in outcomes if not o.ok]
        if failed:
            names = ", ".join(f"{o.namespace}/{o.group}" for o in failed)
            raise AggregateMigrationError(
                f"{len(failed)} of {len(outcomes)} migration run(s) failed: {names}",
                outcomes=outcomes,
            )

    async def latest_all(self, group: str | None = None) -> list[NamespaceOutcome]:
        """Apply pending migrations of every configured namespace on one group.

        Each namespace is attempted even if an earlier one fails.

        Raises:
            AggregateMigrationError: If any namespace failed; lists every outcome
        """
        self._ensure_enabled()
        _, group = self._default_pair(None, group)
        outcomes = await self._run_namespaces(self._selector.namespaces(), group, LATEST)
        self._raise_on_failures(outcomes)
        return outcomes

    async def run(self, scope: RunScope) -> list[NamespaceOutcome]:
        """Migrate every (namespace, group) pair of ``scope`` to its target.

        Groups run concurrently, namespaces within a group sequentially.

        Raises:
            AggregateMigrationError: If any pair failed; lists every outcome
        """
        self._ensure_enabled()
        pairs = self._selector.resolve(scope)

        by_group: dict[str, list[str]] = {}
        for namespace, group in pairs:
            by_group.setdefault(group, []).append(namespace)

        results = await asyncio.gather(
            *(self._run_namespaces(namespaces, group, scope.target) for group, namespaces in by_group.items())
        )
        outcomes = [outcome for group_outcomes in results for outcome in group_outcomes]
        self._raise_on_failures(outcomes)
        return outcomes

    # -------------------------------------------------------------------------
    # Status and info
    # -------------------------------------------------------------------------

    async def current_version(self, namespace: str | None = None, group: str | None = None) -> Version | None:
        """Get the highest applied version of a (namespace, group)."""
        namespace, group = self._default_pair(namespace, group)
        self._selector.check(namespace, group)
        store = await self.state_store(group)
        return await store.current_version(namespace, group)

    async def status(self, namespace: str | None = None, group: str | None = None) -> dict[str, Any]:
        """Get the migration status of a (namespace, group).

        Returns:
            Dictionary with:
            - namespace, group
            - current_version: Latest applied version or None
            - migrations: Every discovered migration with its applied_at (None if pending)
            - missing: Applied versions whose script no longer exists
        """
        namespace, group = self._default_pair(namespace, group)
        self._selector.check(namespace, group)

        descriptors = self._discovery.find_migrations(namespace)
        store = await self.state_store(group)
        records = {r.version: r for r in await store.applied_records(namespace, group)}
        discovered = {d.version for d in descriptors}

        return {
            "namespace": namespace,
            "group": group,
            "current_version": str(max(records)) if records else None,
            "migrations": [
                {
                    "version": str(d.version),
                    "name": d.name,
                    "unit_name": d.unit_name,
                    "file": d.source.name,
                    "applied_at": records[d.version].applied_at.isoformat() if d.version in records else None,
                }
                for d in descriptors
            ],
            "missing": [
                {
                    "version": str(r.version),
                    "unit_name": r.unit_name,
                    "applied_at": r.applied_at.isoformat(),
                }
                for v, r in records.items()
                if v not in discovered
            ],
        }

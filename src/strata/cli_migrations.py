"""
CLI commands for database migrations.

Provides commands for managing database schema migrations including:
- migrate: Apply pending migrations
- migrate:version: Move to a specific version, forward or backward
- migrate:rollback: Revert every applied migration
- migrate:refresh: Roll back, then apply everything again
- migrate:status: Show migration status
- migrate:create: Create a new migration file

Every command accepts -g/--group, -n/--namespace and -all/--all to select the
database group and namespace(s) it works on.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from strata.migrations.exceptions import AggregateMigrationError, MigrationError
from strata.migrations.runner import MigrationRunner, NamespaceOutcome, RunResult
from strata.migrations.scope import RunScope
from strata.migrations.version import LATEST, format_version, parse_target

console = Console()


def _ensure_settings_loaded(config_path: Optional[str]):
    """Load .env files and the ``environment`` section before reading the configuration."""
    from strata.config.environment import Environment

    Environment.load_settings(config_path)


def _load_config(config_path: Optional[str]):
    from strata.config.migrations_config import load_migrations_config

    _ensure_settings_loaded(config_path)
    return load_migrations_config(config_path)


@asynccontextmanager
async def _open_runner(config_path: Optional[str]) -> AsyncIterator[MigrationRunner]:
    """Yield a runner whose group connections are closed on exit."""
    from strata.migrations.connections import ConfiguredConnectionProvider

    config = _load_config(config_path)
    async with ConfiguredConnectionProvider(config) as connections:
        yield MigrationRunner(config, connections)


def _scope_for(runner: MigrationRunner, group: Optional[str], namespace: Optional[str], all_namespaces: bool) -> RunScope:
    config = runner.config
    scope = RunScope.default(config).for_groups(group or config.default_group)
    if all_namespaces:
        return scope.all_namespaces()
    return scope.for_namespaces(namespace or config.default_namespace)


def _print_error_details(error: MigrationError) -> None:
    console.print(
        f"  version: {escape(error.migration_version or '-')}  "
        f"namespace: {escape(error.namespace or '-')}  "
        f"group: {escape(error.group or '-')}"
    )
    if error.__cause__ is not None:
        console.print(f"  cause: {escape(repr(error.__cause__))}")


def _print_failure(action: str, error: Exception) -> None:
    console.print(f"[red]❌ {action} failed: {escape(str(error))}[/]")
    if isinstance(error, AggregateMigrationError):
        for outcome in error.failures:
            console.print(f"[red]• {escape(outcome.namespace)}/{escape(outcome.group)}: {escape(str(outcome.error))}[/]")
            _print_error_details(outcome.error)
    elif isinstance(error, MigrationError):
        _print_error_details(error)


def _print_result(result: RunResult) -> None:
    where = f"{escape(result.namespace)}/{escape(result.group)}"
    if result.is_noop and not result.skipped:
        console.print(f"[yellow]{where} is up to date at version {format_version(result.current_version)}[/]")
        return

    verb = "Applied" if result.direction.value == "up" else "Rolled back"
    if result.executed:
        console.print(f"[green]✅ {verb} {len(result.executed)} migration(s) on {where}:[/]")
        for version in result.executed:
            console.print(f"  • {version}")
    for version in result.skipped:
        console.print(f"[yellow]  skipped {version} (pinned to another group)[/]")
    console.print(f"[cyan]{where} is now at version {format_version(result.current_version)}[/]")


def _print_outcomes(outcomes: list[NamespaceOutcome]) -> None:
    for outcome in outcomes:
        if outcome.result is not None:
            _print_result(outcome.result)


def scope_options(f):
    """Options shared by every migration command."""
    f = click.option(
        "--config",
        "config_path",
        type=click.Path(dir_okay=False),
        default=None,
        envvar="STRATA_CONFIG",
        help="Path to strata.yaml",
    )(f)
    f = click.option(
        "-all",
        "--all",
        "all_namespaces",
        is_flag=True,
        help="Run for every configured namespace",
    )(f)
    f = click.option("-n", "--namespace", type=str, default=None, help="Namespace (default from config)")(f)
    f = click.option("-g", "--group", type=str, default=None, help="Database group (default from config)")(f)
    return f


@click.command("migrate")
@scope_options
def migrate(group: Optional[str], namespace: Optional[str], all_namespaces: bool, config_path: Optional[str]):
    """Apply pending migrations.

    Examples:
        # Apply pending migrations of the default namespace
        strata migrate

        # Apply pending migrations of the Blog namespace on the tests group
        strata migrate -n Blog -g tests

        # Apply pending migrations of every namespace
        strata migrate -all
    """

    async def run_migrate():
        async with _open_runner(config_path) as runner:
            scope = _scope_for(runner, group, namespace, all_namespaces)
            if all_namespaces:
                _print_outcomes(await runner.run(scope.to(LATEST)))
            else:
                _print_result(await runner.latest(scope.namespaces[0], scope.groups[0]))

    try:
        asyncio.run(run_migrate())
    except Exception as e:
        _print_failure("Migration", e)
        raise SystemExit(1) from e


@click.command("migrate:version")
@click.argument("version", type=str)
@scope_options
def migrate_version(
    version: str, group: Optional[str], namespace: Optional[str], all_namespaces: bool, config_path: Optional[str]
):
    """Migrate forward or backward to VERSION.

    VERSION is a migration timestamp such as 2012-10-31-100537 or 20121031100537;
    0 reverts everything.

    Examples:
        strata migrate:version 20121031100537 -n Blog
        strata migrate:version 0
    """
    try:
        target = parse_target(version)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="VERSION") from e

    async def run_version():
        async with _open_runner(config_path) as runner:
            scope = _scope_for(runner, group, namespace, all_namespaces)
            if all_namespaces:
                _print_outcomes(await runner.run(scope.to(version)))
            else:
                _print_result(await runner.version(scope.namespaces[0], scope.groups[0], target))

    try:
        asyncio.run(run_version())
    except Exception as e:
        _print_failure("Migration", e)
        raise SystemExit(1) from e


@click.command("migrate:rollback")
@scope_options
@click.option("-f", "--force", is_flag=True, help="Skip confirmation prompt")
def migrate_rollback(
    group: Optional[str], namespace: Optional[str], all_namespaces: bool, config_path: Optional[str], force: bool
):
    """Revert every applied migration.

    Examples:
        strata migrate:rollback -n Blog
        strata migrate:rollback -all --force
    """
    if not force:
        if not click.confirm("Are you sure you want to roll back all migrations? This may cause data loss."):
            console.print("[yellow]Operation cancelled[/]")
            return

    async def run_rollback():
        async with _open_runner(config_path) as runner:
            scope = _scope_for(runner, group, namespace, all_namespaces)
            if all_namespaces:
                _print_outcomes(await runner.run(scope.to(0)))
            else:
                _print_result(await runner.rollback(scope.namespaces[0], scope.groups[0]))

    try:
        asyncio.run(run_rollback())
    except Exception as e:
        _print_failure("Rollback", e)
        raise SystemExit(1) from e


@click.command("migrate:refresh")
@scope_options
@click.option("-f", "--force", is_flag=True, help="Skip confirmation prompt")
def migrate_refresh(
    group: Optional[str], namespace: Optional[str], all_namespaces: bool, config_path: Optional[str], force: bool
):
    """Roll back every migration, then apply all of them again.

    Examples:
        strata migrate:refresh --force
    """
    if not force:
        if not click.confirm("Are you sure you want to roll back and re-apply all migrations? This may cause data loss."):
            console.print("[yellow]Operation cancelled[/]")
            return

    async def run_refresh():
        async with _open_runner(config_path) as runner:
            scope = _scope_for(runner, group, namespace, all_namespaces)
            if all_namespaces:
                _print_outcomes(await runner.run(scope.to(0)))
                _print_outcomes(await runner.run(scope.to(LATEST)))
            else:
                down, up = await runner.refresh(scope.namespaces[0], scope.groups[0])
                _print_result(down)
                _print_result(up)

    try:
        asyncio.run(run_refresh())
    except Exception as e:
        _print_failure("Refresh", e)
        raise SystemExit(1) from e


def _print_status(result: dict) -> None:
    where = f"{escape(result['namespace'])} on {escape(result['group'])}"
    console.print(f"[bold cyan]{where}[/] current version: {result['current_version'] or 'none'}")

    if result["migrations"]:
        table = Table(title=f"Migrations: {where}")
        table.add_column("Version", style="cyan")
        table.add_column("Name", style="green")
        table.add_column("Unit", style="magenta")
        table.add_column("Applied At", style="yellow")

        for m in result["migrations"]:
            table.add_row(m["version"], m["name"], m["unit_name"], m["applied_at"] or "pending")

        console.print(table)
    else:
        console.print("[yellow]No migrations found[/]")

    if result["missing"]:
        table = Table(title="Applied Without Script")
        table.add_column("Version", style="red")
        table.add_column("Unit", style="magenta")
        table.add_column("Applied At", style="yellow")
        for m in result["missing"]:
            table.add_row(m["version"], m["unit_name"], m["applied_at"])
        console.print(table)
    console.print()


@click.command("migrate:status")
@scope_options
def migrate_status(group: Optional[str], namespace: Optional[str], all_namespaces: bool, config_path: Optional[str]):
    """Show applied and pending migrations.

    Examples:
        strata migrate:status
        strata migrate:status -all -g reporting
    """

    async def run_status():
        async with _open_runner(config_path) as runner:
            scope = _scope_for(runner, group, namespace, all_namespaces)
            for ns, grp in runner.selector.resolve(scope):
                _print_status(await runner.status(ns, grp))

    try:
        asyncio.run(run_status())
    except Exception as e:
        _print_failure("Status", e)
        raise SystemExit(1) from e


@click.command("migrate:create")
@click.argument("name")
@scope_options
def migrate_create(
    name: str, group: Optional[str], namespace: Optional[str], all_namespaces: bool, config_path: Optional[str]
):
    """Create a new migration file.

    The file is named from the configured timestamp format and NAME and
    placed in the namespace's migration directory. With -g the generated
    unit is pinned to that database group.

    Examples:
        strata migrate:create add_blog -n Blog
    """
    from strata.migrations.scaffold import create_migration

    try:
        config = _load_config(config_path)
        namespaces = list(config.namespaces) if all_namespaces else [namespace or config.default_namespace]
        for ns in namespaces:
            filepath = create_migration(config, name, namespace=ns, group=group)
            console.print("[green]✅ Created migration file:[/]")
            console.print(f"  {escape(str(filepath))}")

        console.print()
        console.print("[cyan]Next steps:[/]")
        console.print("  1. Edit the migration file to add your schema changes")
        console.print("  2. Run: strata migrate")

    except Exception as e:
        _print_failure("Create", e)
        raise SystemExit(1) from e


COMMANDS = [migrate, migrate_version, migrate_rollback, migrate_refresh, migrate_status, migrate_create]

import textwrap
from pathlib import Path

import aiosqlite
import pytest
import pytest_asyncio

from strata.config.environment import Environment
from strata.config.logging_config import reset_log_level
from strata.config.migrations_config import MigrationsConfig, default_config

STRATA_ENV_KEYS = (
    "ENV",
    "STRATA_CONFIG",
    "STRATA_LOG_LEVEL",
    "STRATA_MIGRATIONS_ENABLED",
    "STRATA_MIGRATIONS_PATH",
    "STRATA_MIGRATIONS_TABLE",
    "STRATA_DATABASE_URL",
)


@pytest.fixture(scope="session", autouse=True)
def _silence_aiosqlite_logging():
    """Reduce noisy aiosqlite logs during tests."""
    import logging

    for name in (
        "aiosqlite",
        "aiosqlite.core",
        "aiosqlite.cursor",
        "aiosqlite.connection",
    ):
        logger = logging.getLogger(name)
        logger.setLevel(logging.ERROR)
        logger.propagate = False


@pytest.fixture(autouse=True)
def _isolated_environment(monkeypatch, tmp_path):
    """Run every test in an empty working directory without STRATA_* variables."""
    for key in STRATA_ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    monkeypatch.chdir(tmp_path)
    Environment.reset()
    yield
    Environment.reset()
    reset_log_level()


@pytest_asyncio.fixture
async def test_db():
    """Create an in-memory SQLite database for testing."""
    conn = await aiosqlite.connect(":memory:")
    try:
        yield conn
    finally:
        await conn.close()


@pytest.fixture
def config(tmp_path) -> MigrationsConfig:
    """Configuration with App and Blog namespaces and two groups."""
    return default_config(
        base_dir=tmp_path,
        namespaces={"App": "app", "Blog": "modules/Blog"},
        groups={
            "default": {"url": "sqlite:///default.sqlite3"},
            "tests": {"url": "sqlite:///tests.sqlite3"},
        },
    )


@pytest.fixture
def write_migration(config):
    """Return a helper writing a migration script into a namespace directory.

    ``up`` and ``down`` are method bodies; ``extra`` is placed at class level.
    """

    def _write(
        namespace: str,
        filename: str,
        up: str = "pass",
        down: str = "pass",
        extra: str = "",
        unit_name: str | None = None,
    ) -> Path:
        from strata.migrations.discovery import parse_migration_filename, unit_name_for

        directory = config.migrations_dir(namespace)
        directory.mkdir(parents=True, exist_ok=True)
        if unit_name is None:
            parsed = parse_migration_filename(filename)
            assert parsed is not None, filename
            unit_name = unit_name_for(parsed[1])

        source = (
            "from strata.migrations import Migration\n"
            "\n"
            "\n"
            f"class {unit_name}(Migration):\n"
            f"{textwrap.indent(extra, '    ')}\n"
            "    async def up(self):\n"
            f"{textwrap.indent(textwrap.dedent(up), '        ')}\n"
            "\n"
            "    async def down(self):\n"
            f"{textwrap.indent(textwrap.dedent(down), '        ')}\n"
        )
        path = directory / filename
        path.write_text(source)
        return path

    return _write

"""Tests for group connection providers and adapter selection."""

from pathlib import Path

import pytest

from strata.config.migrations_config import DatabaseGroupConfig, default_config
from strata.migrations.connections import (
    ConfiguredConnectionProvider,
    StaticConnectionProvider,
    sqlite_path_from_url,
)
from strata.migrations.db_adapter import SQLiteMigrationAdapter, create_migration_adapter
from strata.migrations.exceptions import ConfigurationError


class TestSqliteUrls:
    def test_relative_path(self, tmp_path):
        assert sqlite_path_from_url("sqlite:///writable/app.db", tmp_path) == str(tmp_path / "writable" / "app.db")

    def test_absolute_path(self, tmp_path):
        assert sqlite_path_from_url("sqlite:////var/lib/app.db", tmp_path) == "/var/lib/app.db"

    @pytest.mark.parametrize("url", ["sqlite://:memory:", "sqlite:///:memory:"])
    def test_memory(self, tmp_path, url):
        assert sqlite_path_from_url(url, tmp_path) == ":memory:"

    def test_invalid(self, tmp_path):
        with pytest.raises(ValueError):
            sqlite_path_from_url("sqlite://relative.db", tmp_path)


class TestAdapterSelection:
    @pytest.mark.asyncio
    async def test_aiosqlite_connection(self, test_db):
        adapter = create_migration_adapter(test_db)
        assert isinstance(adapter, SQLiteMigrationAdapter)
        assert adapter.db_type == "sqlite"

    @pytest.mark.asyncio
    async def test_adapter_passthrough(self, test_db):
        adapter = SQLiteMigrationAdapter(test_db)
        assert create_migration_adapter(adapter) is adapter

    def test_unsupported(self):
        with pytest.raises(TypeError):
            create_migration_adapter(object())


class TestStaticConnectionProvider:
    @pytest.mark.asyncio
    async def test_unknown_group(self, test_db):
        provider = StaticConnectionProvider({"default": test_db})

        assert (await provider.adapter_for("default")).db_type == "sqlite"
        with pytest.raises(ConfigurationError):
            await provider.adapter_for("tests")


class TestConfiguredConnectionProvider:
    @pytest.mark.asyncio
    async def test_opens_sqlite_file_lazily(self, config, tmp_path):
        groups = dict(config.groups)
        groups["default"] = DatabaseGroupConfig(url="sqlite:///data/app.db")
        config = config.model_copy(update={"groups": groups})

        async with ConfiguredConnectionProvider(config) as provider:
            adapter = await provider.adapter_for("default")
            assert await provider.adapter_for("default") is adapter
            await adapter.execute("CREATE TABLE t (id INTEGER)")
            await adapter.commit()

        assert Path(tmp_path / "data" / "app.db").exists()

    @pytest.mark.asyncio
    async def test_unknown_group(self, config):
        async with ConfiguredConnectionProvider(config) as provider:
            with pytest.raises(ConfigurationError):
                await provider.adapter_for("reporting")

    @pytest.mark.asyncio
    async def test_unsupported_scheme(self, tmp_path):
        config = default_config(base_dir=tmp_path, groups={"default": {"url": "mysql://localhost/app"}})

        async with ConfiguredConnectionProvider(config) as provider:
            with pytest.raises(ConfigurationError, match="Unsupported database URL"):
                await provider.adapter_for("default")

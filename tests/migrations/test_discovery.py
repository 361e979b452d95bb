"""
Tests for migration discovery and unit resolution.
"""

import sys

import pytest

from strata.migrations.base import Migration
from strata.migrations.discovery import (
    DirectoryLocator,
    DiscoveryService,
    UnitRegistry,
    parse_migration_filename,
    unit_name_for,
)
from strata.migrations.exceptions import DiscoveryError
from strata.migrations.version import Version


class TestFilenameParsing:
    @pytest.mark.parametrize(
        "filename, version, name",
        [
            ("2012-10-31-100537_add_blog.py", "20121031100537", "add_blog"),
            ("20121031100537_add_blog.py", "20121031100537", "add_blog"),
            ("20250428_212009_create_users.py", "20250428212009", "create_users"),
            ("001_init.py", "1", "init"),
        ],
    )
    def test_valid_names(self, filename, version, name):
        parsed = parse_migration_filename(filename)
        assert parsed == (Version(version), name)

    @pytest.mark.parametrize(
        "filename",
        ["__init__.py", "helpers.py", "add_blog_2012.py", "2012_add_blog.txt", "2012_.py", "2012_1blog.py"],
    )
    def test_non_migration_names(self, filename):
        assert parse_migration_filename(filename) is None

    def test_unit_name(self):
        assert unit_name_for("add_blog") == "AddBlog"
        assert unit_name_for("create_users_table") == "CreateUsersTable"
        assert unit_name_for("addIndex") == "AddIndex"


class TestDiscoveryService:
    def test_sorted_ascending(self, config, write_migration):
        write_migration("App", "20121101000000_add_comments.py")
        write_migration("App", "2012-10-31-100537_add_blog.py")
        write_migration("App", "900_early.py")

        service = DiscoveryService(DirectoryLocator(config))
        migrations = service.find_migrations("App")

        assert [str(m.version) for m in migrations] == ["900", "20121031100537", "20121101000000"]
        assert [m.unit_name for m in migrations] == ["Early", "AddBlog", "AddComments"]
        assert all(m.namespace == "App" for m in migrations)

    def test_ignores_other_files(self, config, write_migration):
        write_migration("App", "20121031100537_add_blog.py")
        directory = config.migrations_dir("App")
        (directory / "__init__.py").write_text("")
        (directory / "helpers.py").write_text("X = 1\n")
        (directory / "README.md").write_text("docs")

        migrations = DiscoveryService(DirectoryLocator(config)).find_migrations("App")

        assert [m.name for m in migrations] == ["add_blog"]

    def test_missing_directory_is_empty(self, config):
        assert DiscoveryService(DirectoryLocator(config)).find_migrations("Blog") == []

    def test_namespaces_are_separate(self, config, write_migration):
        write_migration("App", "20121031100537_add_blog.py")
        write_migration("Blog", "20130101000000_add_posts.py")

        service = DiscoveryService(DirectoryLocator(config))

        assert [m.name for m in service.find_migrations("App")] == ["add_blog"]
        assert [m.name for m in service.find_migrations("Blog")] == ["add_posts"]
        assert service.find_migrations("Blog")[0].source.parent == config.migrations_dir("Blog")

    def test_duplicate_versions_rejected(self, config, write_migration):
        write_migration("App", "2012-10-31-100537_add_blog.py")
        write_migration("App", "20121031100537_add_blog_again.py")

        with pytest.raises(DiscoveryError) as exc_info:
            DiscoveryService(DirectoryLocator(config)).find_migrations("App")

        assert exc_info.value.migration_version == "20121031100537"
        assert exc_info.value.namespace == "App"

    @pytest.mark.parametrize("filename", ["000_bootstrap.py", "0000-00-00-000000_bootstrap.py"])
    def test_zero_version_rejected(self, config, write_migration, filename):
        write_migration("App", filename, unit_name="Bootstrap")
        write_migration("App", "2012-10-31-100537_add_blog.py")

        with pytest.raises(DiscoveryError, match="reserved") as exc_info:
            DiscoveryService(DirectoryLocator(config)).find_migrations("App")

        assert exc_info.value.migration_version == "0"
        assert exc_info.value.namespace == "App"


class TestUnitRegistry:
    def _descriptor(self, config, write_migration, filename="20121031100537_add_blog.py", **kwargs):
        write_migration("App", filename, **kwargs)
        return DiscoveryService(DirectoryLocator(config)).find_migrations("App")[0]

    def test_resolve_from_source(self, config, write_migration):
        descriptor = self._descriptor(config, write_migration)

        unit = UnitRegistry().resolve(descriptor)

        assert issubclass(unit, Migration)
        assert unit.__name__ == "AddBlog"

    def test_registered_unit_wins(self, config, write_migration):
        descriptor = self._descriptor(config, write_migration)

        class AddBlog(Migration):
            async def up(self):
                pass

            async def down(self):
                pass

        registry = UnitRegistry()
        registry.register("App", AddBlog)

        assert registry.resolve(descriptor) is AddBlog

    def test_register_rejects_non_migrations(self):
        with pytest.raises(TypeError):
            UnitRegistry().register("App", object)

    def test_missing_class(self, config, write_migration):
        descriptor = self._descriptor(config, write_migration, unit_name="SomethingElse")

        with pytest.raises(DiscoveryError, match="does not define class AddBlog"):
            UnitRegistry().resolve(descriptor)

    def test_class_not_a_migration(self, config, write_migration):
        write_migration("App", "20121031100537_add_blog.py")
        descriptor = DiscoveryService(DirectoryLocator(config)).find_migrations("App")[0]
        descriptor.source.write_text("class AddBlog:\n    pass\n")

        with pytest.raises(DiscoveryError, match="not a Migration subclass"):
            UnitRegistry().resolve(descriptor)

    def test_broken_script(self, config, write_migration):
        write_migration("App", "20121031100537_add_blog.py")
        descriptor = DiscoveryService(DirectoryLocator(config)).find_migrations("App")[0]
        descriptor.source.write_text("raise RuntimeError('boom')\n")

        with pytest.raises(DiscoveryError) as exc_info:
            UnitRegistry().resolve(descriptor)

        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert exc_info.value.migration_version == "20121031100537"

    def test_script_module_is_importable_while_loading(self, config, write_migration):
        write_migration("App", "20121031100537_add_blog.py")
        descriptor = DiscoveryService(DirectoryLocator(config)).find_migrations("App")[0]
        descriptor.source.write_text(
            "from __future__ import annotations\n"
            "\n"
            "from dataclasses import dataclass\n"
            "\n"
            "from strata.migrations import Migration\n"
            "\n"
            "\n"
            "@dataclass\n"
            "class Column:\n"
            "    name: str\n"
            "    kind: str = 'TEXT'\n"
            "\n"
            "\n"
            "class AddBlog(Migration):\n"
            "    columns = [Column('title')]\n"
            "\n"
            "    async def up(self):\n"
            "        pass\n"
            "\n"
            "    async def down(self):\n"
            "        pass\n"
        )

        unit = UnitRegistry().resolve(descriptor)

        assert unit.columns[0].kind == "TEXT"
        assert sys.modules[unit.__module__].AddBlog is unit

    def test_broken_script_is_not_left_in_sys_modules(self, config, write_migration, monkeypatch):
        module_name = "strata_migration_app_20121031100537"
        monkeypatch.delitem(sys.modules, module_name, raising=False)
        write_migration("App", "20121031100537_add_blog.py")
        descriptor = DiscoveryService(DirectoryLocator(config)).find_migrations("App")[0]
        descriptor.source.write_text("raise RuntimeError('boom')\n")

        with pytest.raises(DiscoveryError):
            UnitRegistry().resolve(descriptor)

        assert module_name not in sys.modules

"""Tests for migration version identifiers."""

import pytest

from strata.migrations.version import LATEST, ZERO, Version, format_version, parse_target


class TestVersion:
    def test_separators_are_ignored(self):
        assert Version.parse("2012-10-31-100537") == Version.parse("20121031100537")
        assert Version.parse("20250101_000000") == Version.parse("20250101000000")

    def test_leading_zeros_normalised(self):
        assert Version.parse("0001") == Version.parse(1)
        assert str(Version.parse("0001")) == "1"

    def test_numeric_ordering(self):
        versions = [Version.parse(v) for v in ["20121101000000", "9", "20121031100537", "100"]]
        assert [str(v) for v in sorted(versions)] == ["9", "100", "20121031100537", "20121101000000"]

    def test_total_ordering(self):
        a = Version.parse("20121031100537")
        b = Version.parse("20121101000000")
        assert a < b
        assert b > a
        assert a <= a
        assert max([a, b]) == b

    @pytest.mark.parametrize("raw", ["", "abc", "2012-10-31x", "1.5", "v1"])
    def test_invalid_versions_rejected(self, raw):
        with pytest.raises(ValueError):
            Version.parse(raw)

    def test_negative_int_rejected(self):
        with pytest.raises(ValueError):
            Version.parse(-3)

    def test_is_zero(self):
        assert ZERO.is_zero
        assert Version.parse("000").is_zero
        assert not Version.parse("1").is_zero

    def test_hashable(self):
        assert {Version.parse("01"), Version.parse("1")} == {Version("1")}


class TestParseTarget:
    def test_latest(self):
        assert parse_target(None) == LATEST
        assert parse_target("latest") == LATEST
        assert parse_target(" LATEST ") == LATEST

    @pytest.mark.parametrize("raw", [0, "0", "zero", "none"])
    def test_zero(self, raw):
        assert parse_target(raw) == ZERO

    def test_concrete(self):
        assert parse_target("2012-10-31-100537") == Version("20121031100537")

    def test_version_passthrough(self):
        v = Version("42")
        assert parse_target(v) is v


def test_format_version():
    assert format_version(None) == "none"
    assert format_version(Version("42")) == "42"

"""
Version identifiers for migrations.

A version is the numeric value of a migration's timestamp prefix. Separators
are ignored, so ``2012-10-31-100537`` and ``20121031100537`` are the same
version. Versions order numerically, which keeps ordering correct even when
prefixes have different widths.
"""

import re
from dataclasses import dataclass
from functools import total_ordering
from typing import Literal, Union

LATEST: Literal["latest"] = "latest"

_SEPARATORS = re.compile(r"[-_\s]")
_ZERO_KEYWORDS = {"0", "zero", "none"}


@total_ordering
@dataclass(frozen=True)
class Version:
    """Totally ordered migration version.

    Attributes:
        value: Canonical digit string without separators or leading zeros.
    """

    value: str

    @classmethod
    def parse(cls, raw: "str | int | Version") -> "Version":
        """Build a version from a timestamp-like string or integer.

        Raises:
            ValueError: If ``raw`` contains anything but digits and separators.
        """
        if isinstance(raw, Version):
            return raw
        if isinstance(raw, int):
            if raw < 0:
                raise ValueError(f"Invalid migration version: {raw}")
            return cls(str(raw))

        digits = _SEPARATORS.sub("", str(raw).strip())
        if not digits.isdigit():
            raise ValueError(f"Invalid migration version: {raw!r}")
        return cls(str(int(digits)))

    def __int__(self) -> int:
        return int(self.value)

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, Version):
            return NotImplemented
        return int(self) < int(other)

    def __str__(self) -> str:
        return self.value

    @property
    def is_zero(self) -> bool:
        return self.value == "0"


ZERO = Version("0")

Target = Union[Version, Literal["latest"]]


def parse_target(raw: "str | int | Version | None") -> Target:
    """Parse a user-supplied migration target.

    ``None`` and ``"latest"`` mean the newest discovered version; ``0``,
    ``"zero"`` and ``"none"`` mean a full rollback.
    """
    if raw is None:
        return LATEST
    if isinstance(raw, str):
        text = raw.strip().lower()
        if text == LATEST:
            return LATEST
        if text in _ZERO_KEYWORDS:
            return ZERO
    return Version.parse(raw)


def format_version(version: "Version | None") -> str:
    """Render a version for display, with ``None`` as 'none'."""
    return "none" if version is None else str(version)

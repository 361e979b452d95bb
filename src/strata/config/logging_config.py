"""Logging setup shared by the runner, the CLI and tests.

The level comes from ``STRATA_LOG_LEVEL`` (via :class:`Environment`) unless
:func:`set_log_level` pinned one, e.g. from ``strata -v``.
"""

import logging
import os
import sys
from typing import ClassVar, Optional

_DEFAULT_FORMAT = os.getenv(
    "STRATA_LOG_FORMAT",
    "%(asctime)s | %(levelname)s | %(name)s | %(message)s",
)
_COLOR_FORMAT = "\x1b[90m%(asctime)s\x1b[0m | %(levelname_color)s | \x1b[36m%(name)s\x1b[0m | %(message)s"
_DEFAULT_DATEFMT = os.getenv("STRATA_LOG_DATEFMT", "%Y-%m-%d %H:%M:%S")
_DRIVER_LEVELS = {
    "aiosqlite": logging.INFO,
    "psycopg": logging.WARNING,
    "psycopg.pool": logging.WARNING,
}

_configured: Optional[str | int] = None
_pinned_level: Optional[str | int] = None


def _supports_color() -> bool:
    try:
        return sys.stdout.isatty() and os.getenv("NO_COLOR") is None
    except Exception:
        return False


class _LevelColorFormatter(logging.Formatter):
    COLORS: ClassVar[dict[str, str]] = {
        "DEBUG": "\x1b[37m",
        "INFO": "\x1b[32m",
        "WARNING": "\x1b[33m",
        "ERROR": "\x1b[31m",
        "CRITICAL": "\x1b[41m",
    }
    RESET: ClassVar[str] = "\x1b[0m"

    def __init__(self, fmt: str, datefmt: str, use_color: bool):
        super().__init__(fmt=fmt, datefmt=datefmt)
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        levelname = record.levelname
        color = self.COLORS.get(levelname, "") if self.use_color else ""
        record.levelname_color = f"{color}{levelname}{self.RESET}" if color else levelname
        return super().format(record)


def configure_logging(
    level: Optional[str | int] = None,
    fmt: Optional[str] = None,
    datefmt: Optional[str] = None,
    propagate_root: bool = False,
) -> str | int:
    """Configure root logging with a consistent format; repeated calls at the same level are no-ops.

    Environment overrides:
    - `STRATA_LOG_LEVEL`
    - `STRATA_LOG_FORMAT`
    - `STRATA_LOG_DATEFMT`
    """
    from strata.config.environment import Environment

    global _configured

    if level is None:
        level = _pinned_level if _pinned_level is not None else Environment.get_log_level()
    if isinstance(level, str):
        level = level.upper()

    if _configured is not None and _configured == level:
        return level
    _configured = level

    use_color = _supports_color()
    if fmt is None:
        fmt = _COLOR_FORMAT if os.getenv("STRATA_LOG_FORMAT") is None and use_color else _DEFAULT_FORMAT
    datefmt = datefmt if datefmt is not None else _DEFAULT_DATEFMT
    formatter = _LevelColorFormatter(fmt=fmt, datefmt=datefmt, use_color=use_color)

    root = logging.getLogger()
    if root.handlers:
        # Handlers installed by pytest or a host application are kept
        root.setLevel(level)
        for h in root.handlers:
            if isinstance(h, logging.StreamHandler):
                h.setLevel(level)
                h.setFormatter(formatter)
    else:
        logging.basicConfig(level=level, format=fmt, datefmt=datefmt)
        for h in root.handlers:
            h.setFormatter(formatter)
    root.propagate = propagate_root

    for name, driver_level in _DRIVER_LEVELS.items():
        logging.getLogger(name).setLevel(driver_level)
    return level


def get_logger(name: str) -> logging.Logger:
    """Return a module-scoped logger."""
    level = configure_logging()
    logger = logging.getLogger(name)
    logger.setLevel(level)
    return logger


def set_log_level(level: str | int, prefix: str = "strata") -> None:
    """Pin the log level, including loggers created earlier under ``prefix``.

    Loggers created afterwards through :func:`get_logger` use the pinned level
    instead of ``STRATA_LOG_LEVEL``.
    """
    global _pinned_level

    _pinned_level = level.upper() if isinstance(level, str) else level
    level = configure_logging(_pinned_level)
    for name, logger in logging.root.manager.loggerDict.items():
        if name.startswith(prefix) and isinstance(logger, logging.Logger):
            logger.setLevel(level)


def reset_log_level() -> None:
    """Drop a pinned level so ``STRATA_LOG_LEVEL`` applies again."""
    global _pinned_level

    _pinned_level = None

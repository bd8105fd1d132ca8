"""Logging helpers used by the Ephemera CLI and pytest plugin.

This module provides utilities for configuring console logging with Rich
and an in-memory "flight recorder" that buffers log records and writes them
to disk on flush. Records are annotated with a short prefix for third-party
loggers, and credentials embedded in connection URLs are masked before any
handler sees them.
"""

from __future__ import annotations

import logging
import os
import platform
import sys
from importlib import metadata
from logging.handlers import MemoryHandler
from pathlib import Path
from typing import TYPE_CHECKING, Literal, TypeAlias

import alembic
import sqlalchemy
from rich.console import Console
from rich.logging import RichHandler

from ephemera.adapters.redactor import Redactor
from ephemera.interfaces.redactor import RedactorMode

if TYPE_CHECKING:
    from logging import Logger

    from ephemera.interfaces.redactor import Redactor as RedactorPort

# pylint: disable=too-few-public-methods

PROJECT_PREFIX = "ephemera"
DIAGNOSED_DISTRIBUTIONS = ("docker", "testcontainers", "redis", "psycopg")


class ThirdPartyPrefixFilter(logging.Filter):
    """Annotate third-party log records with a short prefix.

    Records from loggers outside the project get `record.prefix` set to a
    bracketed token such as "[testcontainers]"; project records get an empty
    prefix. Never drops a record.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        if not record.name.startswith(PROJECT_PREFIX):
            # e.g. "testcontainers.core.container" -> "[testcontainers]"
            record.prefix = f"[{record.name.split('.')[0]}]"
        else:
            record.prefix = ""
        return True


class RedactingFilter(logging.Filter):
    """Mask credentials in connection URLs inside log messages.

    The message is rendered once with its arguments, sanitized, and stored
    back on the record so every handler (console and flight recorder) sees
    the redacted text. Third-party libraries log URLs too.
    """

    def __init__(self, redactor: RedactorPort | None = None) -> None:
        super().__init__()
        self.redactor = redactor or Redactor()

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        if "://" in message:
            record.msg = self.redactor.sanitize_url(message)
            record.args = None
        return True


def config_console_handler(
    level: int = logging.INFO, debug_mode: bool = False, color: bool = True
) -> RichHandler:
    """Build the stderr console handler.

    stdout is left alone: ``ephemera up`` prints endpoints there. Debug mode
    forces DEBUG, shows source paths and adds timestamps and thread names,
    since several scopes may be starting resources at once.

    Args:
        level: Console threshold; ignored when `debug_mode` is set.
        debug_mode: Verbose formatting for troubleshooting.
        color: False disables ANSI colours.

    Returns:
        RichHandler: Handler for the root logger.
    """

    # keep in line with click-extra's --color / --no-color option
    ColorSystem: TypeAlias = Literal["auto", "standard", "256", "truecolor", "windows"]
    color_system: ColorSystem | None = "auto" if color else None
    console = Console(color_system=color_system, stderr=True)

    if debug_mode:
        level = logging.DEBUG

    handler = RichHandler(
        level=level,
        console=console,
        rich_tracebacks=True,
        show_time=False,
        show_path=debug_mode,
        enable_link_path=debug_mode,
    )

    fmt = (
        "%(prefix)s %(message)s"
        if not debug_mode
        else "%(asctime)s %(threadName)s %(name)s: %(message)s"
    )
    handler.setFormatter(logging.Formatter(fmt=fmt))
    handler.addFilter(ThirdPartyPrefixFilter())
    return handler


def config_flight_recorder(
    path: Path,
    capacity: int = 2000,
    flush_level: int = logging.WARNING,
    flush_on_close: bool = False,
) -> MemoryHandler:
    """Buffer records in memory and dump them to `path` when things go wrong.

    Resource startup is chatty at DEBUG level; the buffer usually explains a
    `ReadinessTimeout` or a failed container launch after the fact. Records
    reach the file once one at `flush_level` arrives, or when the handler is
    closed with `flush_on_close` set.

    Args:
        path: Dump file; parent directories are created.
        capacity: Records kept before the buffer flushes on its own.
        flush_level: Level that triggers a dump.
        flush_on_close: Dump on close even without a triggering record.

    Returns:
        MemoryHandler: Handler wrapping a `FileHandler` on `path`.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    file_handler = logging.FileHandler(path, mode="w", encoding="utf-8")
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(
        logging.Formatter(
            "[%(asctime)s] [%(process)d:%(threadName)s] %(levelname)s %(name)s:%(lineno)d: %(message)s"
        )
    )

    return MemoryHandler(
        capacity=capacity,
        flushLevel=flush_level,
        target=file_handler,
        flushOnClose=flush_on_close,
    )


def install_redaction(
    handlers: list[logging.Handler], mode: RedactorMode = RedactorMode.LENIENT
) -> RedactingFilter:
    """Attach one `RedactingFilter` to every handler in `handlers`."""
    redacting = RedactingFilter(Redactor(mode))
    for handler in handlers:
        handler.addFilter(redacting)
    return redacting


def _distribution_version(name: str) -> str:
    try:
        return metadata.version(name)
    except metadata.PackageNotFoundError:
        return "<not installed>"


def log_startup(  # pylint: disable=too-many-arguments
    logger: Logger,
    *,
    app_version: str,
    level: int,
    handlers: list[logging.Handler],
    log_path: Path | None,
    flight_recorder: bool,
    flight_capacity: int | None,
    force_flush_fr: bool,
    logger_levels: dict[str, int],
    redactor_mode: str,
) -> None:
    """Log a one-line summary and detailed startup diagnostics.

    The summary names the version and which handlers are on. DEBUG-level
    diagnostics cover the interpreter, platform, process, and the versions
    of the libraries resources are driven with.

    Args:
        logger: Logger used to emit startup messages.
        app_version: Application version string to display.
        level: Effective console logging level (numeric).
        handlers: Active logging handlers attached to the root logger.
        log_path: Path to the flight-recorder output file, or None.
        flight_recorder: Whether the in-memory flight recorder is enabled.
        flight_capacity: Configured capacity of the flight recorder buffer, or None.
        force_flush_fr: Whether the flight recorder is configured to flush on close.
        logger_levels: Mapping of logger names to their configured numeric levels.
        redactor_mode: Active redaction mode.
    """
    logger.info(
        "EPHEMERA %s: console=%s, flight-recorder=%s",
        app_version,
        logging.getLevelName(level),
        "ON" if flight_recorder else "OFF",
    )

    logger.debug("Python: %s", sys.version.split()[0])
    logger.debug("Platform: %s %s", platform.system(), platform.release())
    logger.debug("PID: %s", os.getpid())
    logger.debug("CWD: %s", Path.cwd())
    logger.debug("Alembic: %s", alembic.__version__)
    logger.debug("SQLAlchemy: %s", sqlalchemy.__version__)
    for name in DIAGNOSED_DISTRIBUTIONS:
        logger.debug("%s: %s", name, _distribution_version(name))
    logger.debug("Handlers: %s", [type(h).__name__ for h in handlers])
    logger.debug("Redactor mode: %s", redactor_mode)
    if flight_recorder:
        logger.debug(
            "Flight recorder: path=%s, capacity=%s, flush_on_close=%s",
            str(log_path) if log_path else "<none>",
            flight_capacity,
            force_flush_fr,
        )
    if logger_levels:
        logger.debug(
            "Per-logger overrides: %s",
            {name: logging.getLevelName(lvl) for name, lvl in logger_levels.items()},
        )

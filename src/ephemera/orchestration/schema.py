"""Applying schema to a freshly provisioned database, once.

Two initializers share the latch in `SchemaInitializer`:

- `SqlScriptInitializer` runs hand-written DDL files in dependency order
  (parent tables before child and junction tables).
- `AlembicSchemaInitializer` upgrades the database to the head revision of
  an Alembic migration environment.

Scripts must be idempotent at the statement level (``CREATE TABLE IF NOT
EXISTS``, ``CREATE OR REPLACE FUNCTION``...) because a persistent resource
may be initialized again by a later test run.
"""

from __future__ import annotations

import io
import logging
import sqlite3
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from alembic import command
from sqlalchemy import text
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError

from ephemera import config
from ephemera.adapters.db.engine import Dialect, admin_url, make_engine
from ephemera.domain.errors import SchemaInitializationFailure, SchemaScriptMissing
from ephemera.interfaces.schema_initializer import SchemaInitializer

if TYPE_CHECKING:
    from sqlalchemy.engine import Engine

    from ephemera.orchestration.lifecycle import ResourceHandle

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SchemaScript:
    """One DDL file and its dependency rank.

    Attributes:
        path: Path of the script, relative to the initializer's directory.
        rank: Lower ranks run first (parents before children). Scripts with
            equal rank keep the order they were given in.
    """

    path: str
    rank: int = 0


def order_scripts(scripts: Iterable[str | SchemaScript]) -> list[SchemaScript]:
    """Normalize `scripts` to `SchemaScript`s sorted by rank (stable)."""
    normalized = [
        script if isinstance(script, SchemaScript) else SchemaScript(str(script))
        for script in scripts
    ]
    return sorted(normalized, key=lambda script: script.rank)


def ensure_database(url: str) -> bool:
    """Create the PostgreSQL database named in `url` if it does not exist.

    Container images create the database named in their environment, but a
    resource shared between suites may be asked for additional databases.
    SQLite databases are created on first connect, so this is a no-op there.

    Returns:
        bool: True if the database was created.
    """
    target = make_url(url)
    if target.get_backend_name() != Dialect.POSTGRES.value or not target.database:
        return False
    name = target.database
    admin = make_engine(admin_url(target), pooled=False)
    try:
        with admin.connect().execution_options(isolation_level="AUTOCOMMIT") as conn:
            exists = conn.execute(
                text("SELECT 1 FROM pg_database WHERE datname = :name"), {"name": name}
            ).scalar()
            if exists:
                return False
            quoted = admin.dialect.identifier_preparer.quote(name)
            conn.execute(text(f"CREATE DATABASE {quoted}"))
    finally:
        admin.dispose()
    logger.info("Created database %s", name)
    return True


def _run_script(engine: Engine, sql: str) -> None:
    if Dialect.of(engine) is Dialect.SQLITE:
        # sqlite3 refuses multi-statement strings outside executescript
        raw = engine.raw_connection()
        try:
            raw.driver_connection.executescript(sql)
            raw.commit()
        finally:
            raw.close()
        return
    with engine.begin() as conn:
        # no_parameters: one simple-protocol call, and "%" stays literal
        conn.execution_options(no_parameters=True).exec_driver_sql(sql)


class SqlScriptInitializer(SchemaInitializer):
    """Runs an ordered list of SQL files against a database resource.

    Args:
        script_dir: Directory the script paths are relative to. A missing
            directory is tolerated: nothing is applied.
        scripts: Script paths (or `SchemaScript`s with ranks), in dependency
            order.
        ensure_database: Create the target PostgreSQL database first if it
            does not exist.
    """

    def __init__(
        self,
        script_dir: str | Path,
        scripts: Sequence[str | SchemaScript],
        *,
        ensure_database: bool = False,
    ) -> None:
        super().__init__()
        self.script_dir = Path(script_dir)
        self.scripts = order_scripts(scripts)
        self.ensure_database = ensure_database

    def resolve(self) -> list[Path] | None:
        """Full paths of the scripts, in the order they will run.

        Returns:
            list[Path] | None: ``None`` when the script directory does not exist.

        Raises:
            SchemaScriptMissing: for the first named script that does not exist.
        """
        if not self.script_dir.is_dir():
            return None
        paths = [self.script_dir / script.path for script in self.scripts]
        for path in paths:
            if not path.is_file():
                raise SchemaScriptMissing(path)
        return paths

    def _apply(self, handle: ResourceHandle) -> None:
        self.run(handle.resource.connection_url, handle.name)

    def run(self, url: str, name: str = "database") -> int:
        """Apply the scripts to the database at `url`, without any latch.

        Args:
            url: SQLAlchemy URL of the target database.
            name: Resource name used in logs and errors.

        Returns:
            int: Number of scripts executed.

        Raises:
            SchemaScriptMissing: before anything runs, if a script is missing.
            SchemaInitializationFailure: if a script fails.
        """
        paths = self.resolve()
        if paths is None:
            logger.warning(
                "Schema script directory %s does not exist; skipping", self.script_dir
            )
            return 0

        engine = make_engine(url)
        try:
            if self.ensure_database:
                ensure_database(url)
            for path in paths:
                logger.info("Applying %s to %s", path.name, name)
                _run_script(engine, path.read_text(encoding="utf-8"))
        except (SQLAlchemyError, sqlite3.Error, OSError) as exc:
            raise SchemaInitializationFailure(name, str(exc)) from exc
        finally:
            engine.dispose()
        return len(paths)


class AlembicSchemaInitializer(SchemaInitializer):
    """Upgrades a database resource to the Alembic head revision.

    Args:
        script_location: Alembic environment (directory or ``package:dir``).
        revision: Target revision, ``"head"`` by default.
    """

    def __init__(self, script_location: str | Path, revision: str = "head") -> None:
        super().__init__()
        self.script_location = script_location
        self.revision = revision

    def _apply(self, handle: ResourceHandle) -> None:
        url = handle.resource.connection_url
        output = io.StringIO()
        cfg = config.build_alembic_config(url, self.script_location, stdout=output)
        logger.info("Upgrading %s to %s", handle.name, self.revision)
        try:
            command.upgrade(cfg, self.revision)
        except SQLAlchemyError as exc:
            raise SchemaInitializationFailure(handle.name, str(exc)) from exc
        if text_out := output.getvalue().strip():
            logger.debug("alembic: %s", text_out)

"""Database engine factory and URL helpers.

Every SQLAlchemy Engine the orchestration layer uses (health checks, schema
scripts, resets, the connection registry) comes from `make_engine` so that
connections are configured the same way everywhere:

- **SQLite**: foreign keys enforced, WAL journal, relaxed durability and
  in-memory temp storage.
- **PostgreSQL**: URLs handed out by Testcontainers use the psycopg2 driver
  name; `normalize_driver` rewrites them to psycopg (v3).
- **SQL Server**: reached through pymssql; resets reseed identity columns
  with ``DBCC CHECKIDENT``.
"""

from __future__ import annotations

import re
from enum import Enum
from typing import TYPE_CHECKING

from sqlalchemy import create_engine, event, pool
from sqlalchemy.engine import URL, make_url

if TYPE_CHECKING:
    from sqlite3 import Connection as SQLiteConnection

    from sqlalchemy.engine import Connection, Engine

SQLITE_NAMES = {"sqlite", "sqlite+pysqlite"}
PSYCOPG2_DRIVER = re.compile(r"\+psycopg2\b")


class UnsupportedDialect(Exception):
    """Raised when a reset or script runner meets a backend it cannot drive."""


class Dialect(str, Enum):
    """Database backends with dialect-specific reset/script behaviour."""

    POSTGRES = "postgresql"
    SQLITE = "sqlite"
    MSSQL = "mssql"

    @classmethod
    def of(cls, bind: Engine | Connection) -> Dialect:
        """Return the dialect of an Engine or Connection.

        Raises:
            UnsupportedDialect: for any other backend.
        """
        name = bind.dialect.name
        try:
            return cls(name)
        except ValueError as e:
            raise UnsupportedDialect(f"Unsupported dialect: {name!r}") from e


def is_sqlite(url: str | URL) -> bool:
    """Return True if the given SQLAlchemy URL or string corresponds to SQLite.

    Args:
        url: A database URL string or SQLAlchemy :class:`URL`.

    Returns:
        bool: True if the backend is SQLite, otherwise False.
    """
    u = make_url(str(url))
    return u.get_backend_name() in SQLITE_NAMES


def normalize_driver(url: str) -> str:
    """Rewrite ``+psycopg2`` driver names to ``+psycopg`` (psycopg v3)."""
    return PSYCOPG2_DRIVER.sub("+psycopg", url)


def admin_url(url: str | URL, admin_database: str = "postgres") -> URL:
    """Return the same server URL pointed at the maintenance database.

    Used to create the target database when it does not exist yet.
    """
    return make_url(str(url)).set(database=admin_database)


def make_engine(url: str | URL, *, echo: bool = False, pooled: bool = True) -> Engine:
    """Create a SQLAlchemy Engine for the given URL.

    If the backend is SQLite, applies a set of PRAGMAs on every connection:
        - ``foreign_keys=ON`` (enforce referential integrity, resets rely on it)
        - ``journal_mode=WAL`` (readers don't block the resetter)
        - ``synchronous=NORMAL``
        - ``temp_store=MEMORY``

    Args:
        url: Database connection URL (str or :class:`URL`).
        echo: If True, log SQL statements.
        pooled: If False, use ``NullPool`` so no connection outlives its use
            (health checks poll resources that may not be up yet).

    Returns:
        Engine: Configured SQLAlchemy Engine.
    """
    kwargs = {} if pooled else {"poolclass": pool.NullPool}
    engine = create_engine(url, echo=echo, future=True, **kwargs)

    if is_sqlite(url):

        @event.listens_for(engine, "connect")
        def _sqlite_pragmas(dbapi_conn: SQLiteConnection, conn_record):  # type: ignore #pylint: disable=W0613
            cur = dbapi_conn.cursor()
            cur.execute("PRAGMA foreign_keys=ON;")
            cur.execute("PRAGMA journal_mode=WAL;")
            cur.execute("PRAGMA synchronous=NORMAL;")
            cur.execute("PRAGMA temp_store=MEMORY;")
            cur.close()

    return engine

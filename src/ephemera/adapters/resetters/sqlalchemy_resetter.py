"""Emptying relational databases between tests.

The reset plan is resolved once per resource instance: the schema is
reflected, tables are filtered through the `ResetPolicy` and ordered by
their foreign keys so that children are emptied before their parents. Every
later reset replays the plan inside a single transaction. Schema objects
(views, triggers, functions, sequences) are never dropped.
"""

from __future__ import annotations

import logging
import threading
import warnings
from typing import TYPE_CHECKING
from weakref import WeakKeyDictionary

from sqlalchemy import MetaData, bindparam, text
from sqlalchemy.exc import SAWarning, SQLAlchemyError

from ephemera.adapters.db.engine import Dialect, UnsupportedDialect, make_engine
from ephemera.adapters.resetters.policy import ResetPlan, ResetPolicy, ResetStrategy
from ephemera.domain.errors import ResetFailure, ResetPolicyError
from ephemera.interfaces.state_resetter import StateResetter

if TYPE_CHECKING:
    from sqlalchemy import Table, TextClause
    from sqlalchemy.engine import Connection, Engine

    from ephemera.orchestration.lifecycle import ResourceHandle

logger = logging.getLogger(__name__)

# sequences owned by the given tables, through SERIAL or IDENTITY columns
PG_OWNED_SEQUENCES = text(
    """
    SELECT seq_ns.nspname, seq.relname
    FROM pg_class seq
    JOIN pg_namespace seq_ns ON seq_ns.oid = seq.relnamespace
    JOIN pg_depend dep ON dep.objid = seq.oid AND dep.deptype IN ('a', 'i')
    JOIN pg_class tbl ON tbl.oid = dep.refobjid
    JOIN pg_namespace tbl_ns ON tbl_ns.oid = tbl.relnamespace
    WHERE seq.relkind = 'S'
      AND tbl_ns.nspname = :schema
      AND tbl.relname IN :tables
    """
).bindparams(bindparam("tables", expanding=True))

MSSQL_IDENTITY_TABLES = text(
    """
    SELECT OBJECT_SCHEMA_NAME(object_id), OBJECT_NAME(object_id)
    FROM sys.identity_columns
    WHERE OBJECT_SCHEMA_NAME(object_id) = :schema
      AND OBJECT_NAME(object_id) IN :tables
    """
).bindparams(bindparam("tables", expanding=True))
# last_value stays NULL until the first insert
MSSQL_IDENTITY_STATE = text(
    """
    SELECT last_value, seed_value, increment_value
    FROM sys.identity_columns
    WHERE object_id = OBJECT_ID(:table)
    """
)

SQLITE_HAS_SEQUENCE = text(
    "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = 'sqlite_sequence'"
)
SQLITE_CLEAR_SEQUENCE = text(
    "DELETE FROM sqlite_sequence WHERE name IN :tables"
).bindparams(bindparam("tables", expanding=True))


class SqlAlchemyStateResetter(StateResetter):
    """Resets PostgreSQL, SQLite and SQL Server databases through SQLAlchemy.

    SQL Server cannot defer foreign keys, so tables in a foreign-key cycle
    must be excluded there or emptied by the test itself.

    Args:
        policy: What to reset; defaults to every table except
            ``alembic_version``.
        strategy: ``"delete"`` (default) or ``"truncate"`` (PostgreSQL only).
    """

    def __init__(
        self,
        policy: ResetPolicy | None = None,
        *,
        strategy: ResetStrategy | str = ResetStrategy.DELETE,
    ) -> None:
        self.policy = policy or ResetPolicy()
        self.strategy = (
            strategy
            if isinstance(strategy, ResetStrategy)
            else ResetStrategy.from_string(strategy)
        )
        self._lock = threading.Lock()
        self._plans: WeakKeyDictionary[ResourceHandle, ResetPlan] = WeakKeyDictionary()
        self._engines: dict[str, Engine] = {}

    def _engine(self, url: str) -> Engine:
        with self._lock:
            if url not in self._engines:
                self._engines[url] = make_engine(url)
            return self._engines[url]

    def plan_for(self, handle: ResourceHandle) -> ResetPlan | None:
        """The plan resolved for `handle`, if `prepare` ran already."""
        with self._lock:
            return self._plans.get(handle)

    def prepare(self, handle: ResourceHandle) -> None:
        self._resolve(handle)

    def _resolve(self, handle: ResourceHandle) -> ResetPlan:
        if (plan := self.plan_for(handle)) is not None:
            return plan
        engine = self._engine(handle.resource.connection_url)
        try:
            plan = self.resolve(engine)
        except SQLAlchemyError as exc:
            raise ResetFailure(handle.name, f"could not reflect schema: {exc}") from exc
        with self._lock:
            self._plans.setdefault(handle, plan)
            plan = self._plans[handle]
        logger.info(
            "Reset plan for %s: %s (skipping %s)",
            handle.name,
            ", ".join(plan.names) or "nothing",
            ", ".join(plan.skipped) or "nothing",
        )
        return plan

    def resolve(self, engine: Engine) -> ResetPlan:
        """Reflect `engine`'s schema and turn the policy into a plan.

        Raises:
            ResetPolicyError: if `include` names a table that does not exist,
                or the strategy is not supported by the dialect.
            UnsupportedDialect: for databases other than PostgreSQL, SQLite and
                SQL Server.
        """
        dialect = Dialect.of(engine)
        if self.strategy is ResetStrategy.TRUNCATE and dialect is not Dialect.POSTGRES:
            raise ResetPolicyError(
                f"The truncate strategy needs PostgreSQL, not {dialect.value}"
            )
        policy = self.policy
        metadata = MetaData()
        metadata.reflect(bind=engine, schema=policy.schema)

        with warnings.catch_warnings():
            # FK cycles: order is best effort, deferred constraints cover the rest
            warnings.simplefilter("ignore", category=SAWarning)
            ordered = list(metadata.sorted_tables)

        existing = {table.name for table in ordered}
        if policy.include is not None:
            missing = [name for name in policy.include if name not in existing]
            if missing:
                raise ResetPolicyError(
                    f"Reset policy includes unknown table(s): {', '.join(missing)}"
                )

        selected = [table for table in ordered if policy.selects(table.name)]
        skipped = tuple(table.name for table in ordered if not policy.selects(table.name))
        tables = tuple(reversed(selected))

        sequences: tuple[str, ...] = ()
        if (
            dialect is Dialect.POSTGRES
            and policy.restart_identity
            and self.strategy is ResetStrategy.DELETE
            and tables
        ):
            sequences = self._owned_sequences(engine, tables)
        identities: tuple[str, ...] = ()
        if (
            dialect is Dialect.MSSQL
            and policy.restart_identity
            and self.strategy is ResetStrategy.DELETE
            and tables
        ):
            identities = self._identity_tables(engine, tables)
        return ResetPlan(
            tables,
            sequences=sequences,
            identities=identities,
            dialect=dialect.value,
            skipped=skipped,
        )

    def _owned_sequences(self, engine: Engine, tables: tuple[Table, ...]) -> tuple[str, ...]:
        return self._qualified_names(
            engine, PG_OWNED_SEQUENCES, "SELECT current_schema()", tables
        )

    def _identity_tables(self, engine: Engine, tables: tuple[Table, ...]) -> tuple[str, ...]:
        return self._qualified_names(
            engine, MSSQL_IDENTITY_TABLES, "SELECT SCHEMA_NAME()", tables
        )

    def _qualified_names(
        self,
        engine: Engine,
        query: TextClause,
        current_schema: str,
        tables: tuple[Table, ...],
    ) -> tuple[str, ...]:
        """Run a (namespace, name) lookup for `tables` and quote the result."""
        preparer = engine.dialect.identifier_preparer
        with engine.connect() as conn:
            schema = self.policy.schema or conn.exec_driver_sql(current_schema).scalar()
            rows = conn.execute(
                query,
                {"schema": schema, "tables": [table.name for table in tables]},
            ).all()
        return tuple(
            f"{preparer.quote_schema(namespace)}.{preparer.quote(name)}"
            for namespace, name in rows
        )

    def reset(self, handle: ResourceHandle) -> None:
        plan = self._resolve(handle)
        self.apply_plan(self._engine(handle.resource.connection_url), plan, handle.name)

    def apply_plan(self, engine: Engine, plan: ResetPlan, name: str = "database") -> None:
        """Empty the tables of `plan` in one transaction.

        Raises:
            ResetFailure: if anything failed; nothing was changed.
        """
        if not plan.tables:
            return
        try:
            with engine.begin() as conn:
                self._execute(conn, plan)
        except (SQLAlchemyError, UnsupportedDialect) as exc:
            logger.error("Reset of %s failed: %s", name, exc)
            raise ResetFailure(name, str(exc)) from exc
        logger.debug("Reset %s (%d tables)", name, len(plan.tables))

    def _execute(self, conn: Connection, plan: ResetPlan) -> None:
        dialect = Dialect.of(conn)
        if self.strategy is ResetStrategy.TRUNCATE:
            preparer = conn.dialect.identifier_preparer
            statement = "TRUNCATE TABLE " + ", ".join(
                preparer.format_table(table) for table in plan.tables
            )
            if self.policy.restart_identity:
                statement += " RESTART IDENTITY"
            conn.exec_driver_sql(statement)
            return

        if dialect is Dialect.SQLITE:
            # switches itself off again at commit/rollback
            conn.exec_driver_sql("PRAGMA defer_foreign_keys = ON")
        for table in plan.tables:
            conn.execute(table.delete())

        if not self.policy.restart_identity:
            return
        if dialect is Dialect.SQLITE:
            if conn.execute(SQLITE_HAS_SEQUENCE).scalar():
                conn.execute(SQLITE_CLEAR_SEQUENCE, {"tables": plan.names})
        elif dialect is Dialect.MSSQL:
            for table in plan.identities:
                self._reseed(conn, table)
        else:
            for sequence in plan.sequences:
                conn.exec_driver_sql(f"ALTER SEQUENCE {sequence} RESTART")

    @staticmethod
    def _reseed(conn: Connection, table: str) -> None:
        state = conn.execute(MSSQL_IDENTITY_STATE, {"table": table}).first()
        if state is None or state.last_value is None:
            return
        # the next insert gets current + increment, i.e. the original seed
        reseed = int(state.seed_value) - int(state.increment_value)
        quoted = table.replace("'", "''")
        conn.exec_driver_sql(f"DBCC CHECKIDENT ('{quoted}', RESEED, {reseed})")

    def close(self) -> None:
        with self._lock:
            engines, self._engines = self._engines, {}
            self._plans.clear()
        for engine in engines.values():
            engine.dispose()

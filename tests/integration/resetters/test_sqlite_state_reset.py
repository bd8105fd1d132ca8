"""Resetting a scripted SQLite database between tests.

The fixture schema has parent/child foreign keys, an AFTER INSERT trigger, a
view and a reference table. A reset must empty the data tables (children
first), restart AUTOINCREMENT counters, keep every schema object, and leave
excluded tables alone.
"""

from __future__ import annotations

import pytest
from sqlalchemy import text

from ephemera.adapters.resetters import ResetPolicy, SqlAlchemyStateResetter
from ephemera.domain.errors import ResetFailure, ResetPolicyError
from ephemera.orchestration.schema import SqlScriptInitializer
from tests.fixtures.sqlite import ORDERED_SCRIPTS, SQLITE_SCRIPTS

# mypy: disable-error-code=no-untyped-def
## adjust pylint to deal with fixtures
# pylint: disable=redefined-outer-name


@pytest.fixture
def scripted_handle(sqlite_handle):
    """READY SQLite handle with the fixture schema applied."""
    SqlScriptInitializer(SQLITE_SCRIPTS, ORDERED_SCRIPTS).apply(sqlite_handle)
    return sqlite_handle


@pytest.fixture
def resetter():
    """Resetter keeping the reference data."""
    state_resetter = SqlAlchemyStateResetter(ResetPolicy(exclude=("currencies",)))
    yield state_resetter
    state_resetter.close()


def _populate(engine, items: int = 15) -> None:
    with engine.begin() as conn:
        conn.execute(text("INSERT INTO customers (name) VALUES ('Ada')"))
        conn.execute(
            text(
                "INSERT INTO orders (customer_id, placed_at) "
                "VALUES ((SELECT MAX(id) FROM customers), '2024-01-01')"
            )
        )
        for i in range(items):
            conn.execute(
                text(
                    "INSERT INTO order_items (order_id, sku, quantity) "
                    "VALUES ((SELECT MAX(id) FROM orders), :sku, 1)"
                ),
                {"sku": f"SKU-{i}"},
            )


def _count(engine, table: str) -> int:
    with engine.connect() as conn:
        return conn.execute(text(f"SELECT COUNT(*) FROM {table}")).scalar()


def test_reset_empties_data_and_keeps_schema(scripted_handle, resetter, sqlite_engine):
    """15 item rows and their parents are gone; trigger, view and reference data stay."""
    _populate(sqlite_engine)
    assert _count(sqlite_engine, "order_items") == 15
    assert _count(sqlite_engine, "order_audit") == 1  # written by the trigger

    resetter.prepare(scripted_handle)
    resetter.reset(scripted_handle)

    for table in ("order_items", "orders", "customers", "order_audit"):
        assert _count(sqlite_engine, table) == 0
    assert _count(sqlite_engine, "currencies") == 2

    # the trigger still fires and the view still answers
    _populate(sqlite_engine, items=2)
    assert _count(sqlite_engine, "order_audit") == 1
    with sqlite_engine.connect() as conn:
        assert conn.execute(text("SELECT items FROM order_sizes")).scalar() == 2


def test_reset_plan_orders_children_first(scripted_handle, resetter):
    """Children are deleted before the tables they reference."""
    resetter.prepare(scripted_handle)
    plan = resetter.plan_for(scripted_handle)
    assert plan is not None
    names = plan.names
    assert names.index("order_items") < names.index("orders") < names.index("customers")
    assert "currencies" not in names
    assert plan.skipped == ("currencies",)
    assert plan.dialect == "sqlite"


def test_reset_restarts_autoincrement(scripted_handle, resetter, sqlite_engine):
    """Ids start from 1 again after a reset."""
    _populate(sqlite_engine)
    resetter.reset(scripted_handle)
    _populate(sqlite_engine, items=1)
    with sqlite_engine.connect() as conn:
        assert conn.execute(text("SELECT MIN(id) FROM order_items")).scalar() == 1


def test_reset_can_keep_autoincrement(scripted_handle, sqlite_engine):
    """restart_identity=False leaves the counters where they were."""
    keeping = SqlAlchemyStateResetter(
        ResetPolicy(exclude=("currencies",), restart_identity=False)
    )
    try:
        _populate(sqlite_engine, items=3)
        keeping.reset(scripted_handle)
        _populate(sqlite_engine, items=1)
        with sqlite_engine.connect() as conn:
            assert conn.execute(text("SELECT MIN(id) FROM order_items")).scalar() == 4
    finally:
        keeping.close()


def test_reset_of_empty_database_is_a_noop(scripted_handle, resetter, sqlite_engine):
    """Resetting twice in a row is harmless."""
    resetter.reset(scripted_handle)
    resetter.reset(scripted_handle)
    assert _count(sqlite_engine, "customers") == 0


def test_include_limits_the_reset(scripted_handle, sqlite_engine):
    """Only included tables are emptied."""
    _populate(sqlite_engine)
    only_items = SqlAlchemyStateResetter(ResetPolicy(include=("order_items",)))
    try:
        only_items.reset(scripted_handle)
    finally:
        only_items.close()
    assert _count(sqlite_engine, "order_items") == 0
    assert _count(sqlite_engine, "orders") == 1


def test_unknown_include_is_rejected(scripted_handle):
    """Policies naming tables that do not exist fail at prepare time."""
    bad = SqlAlchemyStateResetter(ResetPolicy(include=("orders", "invoices")))
    try:
        with pytest.raises(ResetPolicyError, match="invoices"):
            bad.prepare(scripted_handle)
    finally:
        bad.close()


def test_truncate_needs_postgres(scripted_handle):
    """The truncate strategy is refused on SQLite."""
    truncating = SqlAlchemyStateResetter(strategy="truncate")
    try:
        with pytest.raises(ResetPolicyError, match="PostgreSQL"):
            truncating.prepare(scripted_handle)
    finally:
        truncating.close()


def test_failed_reset_changes_nothing(scripted_handle, resetter, sqlite_engine):
    """A reset that fails halfway is rolled back."""
    _populate(sqlite_engine)
    resetter.prepare(scripted_handle)
    with sqlite_engine.begin() as conn:
        conn.execute(text("DROP TABLE order_audit"))

    with pytest.raises(ResetFailure) as exc_info:
        resetter.reset(scripted_handle)

    assert exc_info.value.resource == "db"
    assert _count(sqlite_engine, "order_items") == 15
    assert _count(sqlite_engine, "customers") == 1

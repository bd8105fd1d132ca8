"""EPHEMERA DB CLI: schema scripts and resets against an existing database.

Useful when a database is provisioned outside of a test run (for example by
``ephemera up`` with a persistent lifetime) and needs its schema applied or
its data emptied by hand.

Behavior
- Both commands change data, so they prompt for confirmation unless
  ``--force`` is given. The prompt shows the target URL with credentials
  masked.
- Failures surface as ``ClickException`` with the underlying cause.
"""

from __future__ import annotations

from pathlib import Path

import click
import click_extra as clickx
from sqlalchemy import text
from sqlalchemy.exc import ArgumentError, OperationalError

from ephemera.adapters.db.engine import UnsupportedDialect, make_engine
from ephemera.adapters.resetters import (
    ResetPolicy,
    ResetStrategy,
    SqlAlchemyStateResetter,
)
from ephemera.domain.errors import OrchestrationError
from ephemera.orchestration.schema import SqlScriptInitializer

from .commands import get_redactor
from .helpers import success, warn

INVALID_URL_FORMAT_MSG = "URL is not a valid SQLAlchemy database URL."

CANNOT_CONNECT_MSG = (
    "The database is not reachable.\n"
    "Please ensure the database is running and the URL is correct."
)

APPLY_WARNING = "This will run schema scripts against the database."
RESET_WARNING = "This will DELETE all rows from the tables listed below."


def _check_connection(url: str) -> None:
    try:
        engine = make_engine(url, pooled=False)
    except ArgumentError as e:
        raise click.ClickException(INVALID_URL_FORMAT_MSG) from e
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))  # pragma: no mutate
    except OperationalError as e:
        raise click.ClickException(CANNOT_CONNECT_MSG) from e
    finally:
        engine.dispose()


def _confirm(ctx: click.Context, message: str, url: str, details: str = "") -> None:
    warn(message)
    shown = get_redactor(ctx).sanitize_url(url)
    click.secho(f"db: {click.style(shown, underline=True)}", err=True)
    if details:
        click.echo(details, err=True)
    click.confirm("Are you sure you want to proceed?", abort=True, err=True)


@click.group(cls=clickx.ExtraGroup)
def db() -> None:
    """Database maintenance commands."""


@db.command("apply-scripts")
@click.argument("url")
@click.argument(
    "directory", type=click.Path(file_okay=False, path_type=Path)
)
@click.argument("scripts", nargs=-1, required=True)
@click.option(
    "--ensure-database",
    is_flag=True,
    help="Create the PostgreSQL database first if it does not exist.",
)
@click.option("--force", is_flag=True, help="Apply without confirmation.")
@click.pass_context
def apply_scripts(  # pylint: disable=too-many-arguments, too-many-positional-arguments
    ctx: click.Context,
    url: str,
    directory: Path,
    scripts: tuple[str, ...],
    ensure_database: bool,
    force: bool,
) -> None:
    """Run SCRIPTS (relative to DIRECTORY, in the given order) against URL."""
    if not ensure_database:
        _check_connection(url)
    initializer = SqlScriptInitializer(
        directory, scripts, ensure_database=ensure_database
    )
    try:
        initializer.resolve()
    except OrchestrationError as e:
        raise click.ClickException(str(e)) from e
    if not force:
        _confirm(ctx, APPLY_WARNING, url)
    try:
        count = initializer.run(url)
    except OrchestrationError as e:
        raise click.ClickException(get_redactor(ctx).sanitize_url(str(e))) from e
    success(f"Applied {count} script(s)")


@db.command()
@click.argument("url")
@click.option(
    "--include",
    multiple=True,
    help="Table to empty (repeatable). Default: every table.",
)
@click.option(
    "--exclude",
    multiple=True,
    help="Table never to touch (repeatable). Default: alembic_version.",
)
@click.option("--schema", help="Database schema (namespace) to reset.")
@click.option(
    "--strategy",
    type=click.Choice([s.value for s in ResetStrategy], case_sensitive=False),
    default=ResetStrategy.DELETE.value,
    show_default=True,
)
@click.option(
    "--restart-identity/--keep-identity",
    default=True,
    show_default=True,
    help="Reset autoincrement/identity counters.",
)
@click.option("--force", is_flag=True, help="Reset without confirmation.")
@click.pass_context
def reset(  # pylint: disable=too-many-arguments, too-many-positional-arguments
    ctx: click.Context,
    url: str,
    include: tuple[str, ...],
    exclude: tuple[str, ...],
    schema: str | None,
    strategy: str,
    restart_identity: bool,
    force: bool,
) -> None:
    """Delete every row of the selected tables at URL, keeping the schema."""
    _check_connection(url)
    policy_args = {"exclude": exclude} if exclude else {}
    policy = ResetPolicy(
        include=include or None,
        schema=schema,
        restart_identity=restart_identity,
        **policy_args,
    )
    resetter = SqlAlchemyStateResetter(policy, strategy=strategy)
    engine = make_engine(url)
    try:
        try:
            plan = resetter.resolve(engine)
        except (OrchestrationError, UnsupportedDialect) as e:
            raise click.ClickException(str(e)) from e
        if not plan.tables:
            warn("Nothing to reset.")
            return
        if not force:
            _confirm(ctx, RESET_WARNING, url, "  " + ", ".join(plan.names))
        try:
            resetter.apply_plan(engine, plan)
        except OrchestrationError as e:
            raise click.ClickException(get_redactor(ctx).sanitize_url(str(e))) from e
    finally:
        engine.dispose()
    success(f"Reset {len(plan.tables)} table(s)")

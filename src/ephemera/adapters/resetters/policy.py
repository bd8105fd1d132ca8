"""What a reset touches, and the plan it resolves to."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from sqlalchemy import Table

DEFAULT_EXCLUDE = ("alembic_version",)


class ResetStrategy(str, Enum):
    """How rows are removed.

    Attributes:
        DELETE: ``DELETE FROM`` each table, children first. Works everywhere.
        TRUNCATE: one ``TRUNCATE ... RESTART IDENTITY`` over all included
            tables (PostgreSQL only).
    """

    DELETE = "delete"
    TRUNCATE = "truncate"

    @classmethod
    def from_string(cls, raw: str) -> ResetStrategy:
        """Parse a strategy token (case-insensitive).

        Raises:
            ValueError: if the token is not a known strategy.
        """
        token = (raw or "").strip().lower()
        for member in cls:
            if member.value == token:
                return member
        raise ValueError(
            f"Unknown reset strategy: {raw!r} (expected 'delete' or 'truncate')"
        )


def as_names(values: Iterable[str] | str | None) -> tuple[str, ...] | None:
    """Normalize table names or key patterns; a bare string is one name."""
    if values is None:
        return None
    if isinstance(values, str):
        return (values,)
    return tuple(values)


@dataclass(frozen=True)
class ResetPolicy:
    """Which tables (or key patterns) a reset empties.

    Attributes:
        include: Tables/patterns to empty; ``None`` means everything in the
            schema.
        exclude: Tables/patterns never touched, even if included. Defaults to
            the Alembic version table so migrations are not re-run.
        schema: Database schema (namespace) to reset; ``None`` is the default
            schema.
        restart_identity: Reset identity/autoincrement counters as well.
    """

    include: tuple[str, ...] | None = None
    exclude: tuple[str, ...] = DEFAULT_EXCLUDE
    schema: str | None = None
    restart_identity: bool = True

    def __post_init__(self) -> None:
        object.__setattr__(self, "include", as_names(self.include))
        object.__setattr__(self, "exclude", as_names(self.exclude) or ())

    def selects(self, name: str) -> bool:
        """True if the policy empties the table called `name`."""
        if name in self.exclude:
            return False
        return self.include is None or name in self.include


@dataclass(frozen=True)
class ResetPlan:
    """A policy resolved against one database.

    Attributes:
        tables: Tables to empty, children before parents.
        sequences: Qualified sequence names to restart (PostgreSQL, delete
            strategy only).
        identities: Quoted tables whose identity column is reseeded (SQL
            Server, delete strategy only).
        dialect: Name of the database dialect.
        skipped: Tables of the schema the policy leaves alone.
    """

    tables: tuple[Table, ...]
    sequences: tuple[str, ...] = ()
    identities: tuple[str, ...] = ()
    dialect: str = ""
    skipped: tuple[str, ...] = field(default=(), compare=False)

    @property
    def names(self) -> list[str]:
        """Table names in deletion order."""
        return [table.name for table in self.tables]
